"""
Payout request workflow.

A request is validated, the funds are reserved through the ledger engine, and
the payout record is written, all in one unit of work: either the request
exists and its funds sit in pending, or nothing happened. Paid/rejected
settlement is driven by back-office staff and goes through the same engine.

Combined payouts sweep the *entire* current balance of every included
account (the requesting admin and each named member) into pending. The
requested amount is only checked against the combined total; it does not cap
or apportion what each member contributes. A request for R450 over balances
of R200 + R300 + R0 therefore reserves R500.
"""
import logging
import uuid
from typing import List, Optional

from common.error_handling import NotFoundError, PermissionDenied, ValidationError
from common.kafka import TOPIC_EARNINGS_EVENTS
from common.schemas import BankingDetails, PayoutEvent, PayoutRequestCall
from common.settings import settings
from earnings_service.ledger import LedgerEngine, Reservation
from earnings_service.models import (
    EarningsAccount, OPEN_PAYOUT_STATUSES, PayoutMode, PayoutRequest, PayoutRequestMember, PayoutStatus, utcnow,
)
from earnings_service.money import format_amount, to_cents
from earnings_service.obligations import ObligationAggregator
from earnings_service.repository import EarningsRepository

logger = logging.getLogger(__name__)

REQUIRED_BANKING_FIELDS = ("account_holder", "bank_name", "account_number", "branch_code")

def validate_banking_details(details: Optional[BankingDetails]) -> BankingDetails:
    if details is None:
        raise ValidationError("Bank account details are required", field="banking_details")
    missing = [name for name in REQUIRED_BANKING_FIELDS if not (getattr(details, name) or "").strip()]
    if missing:
        raise ValidationError("Incomplete bank account details", field="banking_details",
                              context={"missing": missing})
    return details

class PayoutWorkflow:
    def __init__(self, engine: LedgerEngine, minimum_payout_cents: Optional[int] = None):
        self.engine = engine
        if minimum_payout_cents is None:
            minimum_payout_cents = to_cents(settings.minimum_payout_amount, "minimum_payout_amount")
        self.minimum_payout_cents = minimum_payout_cents

    def request_payout(self, call: PayoutRequestCall) -> PayoutRequest:
        requested = to_cents(call.requested_amount, "requested_amount")
        if requested <= 0:
            raise ValidationError("Requested amount must be positive", field="requested_amount")
        if call.mode == PayoutMode.INDIVIDUAL.value and requested < self.minimum_payout_cents:
            raise ValidationError(
                f"Minimum payout amount is {format_amount(self.minimum_payout_cents)}",
                field="requested_amount",
                context={"minimum": self.minimum_payout_cents, "requested": requested})
        validate_banking_details(call.banking_details)

        payout_id = uuid.uuid4().hex
        if call.mode == PayoutMode.INDIVIDUAL.value:
            step = self._individual
        else:
            step = self._combined
        payout = self.engine.run(lambda repo: step(repo, call, requested, payout_id))

        logger.info(f"Created {call.mode} payout request {payout.id} for {call.requester_account_id}: "
                    f"requested {format_amount(requested)}, reserved {format_amount(payout.reserved_total)}",
                    extra={"payout_request_id": payout.id, "group_id": call.group_id})
        return payout

    def _load_requester(self, repo: EarningsRepository, call: PayoutRequestCall) -> EarningsAccount:
        account = repo.lock_accounts([call.requester_account_id]).get(call.requester_account_id)
        if account is None:
            raise NotFoundError("Earnings record not found", context={"account_id": call.requester_account_id})
        if account.group_id != call.group_id:
            raise PermissionDenied("Earnings record does not belong to this group",
                                   context={"account_id": account.id, "group_id": call.group_id})
        return account

    def _individual(self, repo: EarningsRepository, call: PayoutRequestCall, requested: int,
                    payout_id: str) -> PayoutRequest:
        account = self._load_requester(repo, call)
        balance_before = account.current_balance

        breakdown = ObligationAggregator(repo).breakdown(call.group_id, requested)
        self.engine.reserve(
            [Reservation(account.id, requested)], requested, payout_id,
            description=f"Payout request #{payout_id[-6:]}", repo=repo)

        members = [PayoutRequestMember(account_id=account.id, position=0, role=account.role,
                                       amount=requested, balance_before=balance_before, reserved=True)]
        return self._record(repo, call, account, payout_id, requested, requested, breakdown, members)

    def _combined(self, repo: EarningsRepository, call: PayoutRequestCall, requested: int,
                  payout_id: str) -> PayoutRequest:
        admin = self._load_requester(repo, call)
        if not admin.is_group_admin:
            raise PermissionDenied("Only group admins can request combined payouts",
                                   context={"account_id": admin.id, "role": admin.role})
        if not call.member_account_ids:
            raise ValidationError("No members included in combined payout", field="member_account_ids")

        ordered_ids = [admin.id]
        for member_id in call.member_account_ids:
            if member_id not in ordered_ids:
                ordered_ids.append(member_id)

        accounts = repo.lock_accounts(ordered_ids)
        missing = [i for i in ordered_ids if i not in accounts]
        if missing:
            raise NotFoundError(f"Earnings record not found: {', '.join(missing)}", context={"account_ids": missing})
        foreign = [i for i in ordered_ids if accounts[i].group_id != call.group_id]
        if foreign:
            raise PermissionDenied("Members must belong to the requesting group", context={"account_ids": foreign})

        # each included account is swept to zero
        reservations = [Reservation(i, accounts[i].current_balance) for i in ordered_ids]
        total_available = sum(r.amount for r in reservations)

        breakdown = ObligationAggregator(repo).breakdown(call.group_id, total_available)
        self.engine.reserve(reservations, requested, payout_id,
                            description=f"Combined payout request #{payout_id[-6:]}", repo=repo)

        members = [
            PayoutRequestMember(account_id=r.account_id, position=pos, role=accounts[r.account_id].role,
                                amount=r.amount, balance_before=r.amount, reserved=r.amount > 0)
            for pos, r in enumerate(reservations)
        ]
        return self._record(repo, call, admin, payout_id, requested, total_available, breakdown, members)

    def _record(self, repo: EarningsRepository, call: PayoutRequestCall, requester: EarningsAccount,
                payout_id: str, requested: int, reserved_total: int, breakdown,
                members: List[PayoutRequestMember]) -> PayoutRequest:
        bank = call.banking_details
        payout = PayoutRequest(
            id=payout_id,
            mode=call.mode,
            group_id=call.group_id,
            requester_account_id=requester.id,
            requested_amount=requested,
            reserved_total=reserved_total,
            status=PayoutStatus.PENDING.value,
            sales_revenue=breakdown.sales_revenue,
            owed_to_drivers=breakdown.owed_to_drivers,
            owed_to_vendors=breakdown.owed_to_vendors,
            bank_account_holder=bank.account_holder,
            bank_name=bank.bank_name,
            bank_account_number=bank.account_number,
            bank_branch_code=bank.branch_code,
            bank_account_type=bank.account_type,
        )
        payout.members = members
        repo.add_payout_request(payout)

        # last-used destination is offered again on the next request
        requester.bank_account_holder = bank.account_holder
        requester.bank_name = bank.bank_name
        requester.bank_account_number = bank.account_number
        requester.bank_branch_code = bank.branch_code
        requester.bank_account_type = bank.account_type

        self._emit(repo, "PayoutRequested", payout)
        repo.session.flush()
        return payout

    # Back-office settlement
    def get(self, payout_request_id: str) -> PayoutRequest:
        with self.engine.transaction() as repo:
            payout = repo.get_payout_request(payout_request_id)
            if payout is None:
                raise NotFoundError("Payout request not found", context={"payout_request_id": payout_request_id})
            return payout

    def list_for_group(self, group_id: str, status: Optional[str] = None) -> List[PayoutRequest]:
        if status is not None:
            try:
                status = PayoutStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown payout status {status!r}", field="status")
        with self.engine.transaction() as repo:
            return repo.payout_requests_for_group(group_id, status)

    def list_for_account(self, account_id: str) -> List[PayoutRequest]:
        with self.engine.transaction() as repo:
            if repo.get_account(account_id) is None:
                raise NotFoundError("Earnings record not found", context={"account_id": account_id})
            return repo.payout_requests_for_account(account_id)

    def approve(self, payout_request_id: str, processed_by: str) -> PayoutRequest:
        def step(repo: EarningsRepository) -> PayoutRequest:
            payout = self._open_request(repo, payout_request_id)
            if payout.status != PayoutStatus.PENDING.value:
                raise ValidationError(f"Payout request is already {payout.status}")
            payout.status = PayoutStatus.APPROVED.value
            payout.processed_by = processed_by
            self._emit(repo, "PayoutApproved", payout)
            return payout
        return self.engine.run(step)

    def mark_paid(self, payout_request_id: str, processed_by: str, payment_reference: str) -> PayoutRequest:
        if not (payment_reference or "").strip():
            raise ValidationError("Payment reference is required", field="payment_reference")
        return self._settle(payout_request_id, processed_by, paid=True, note=payment_reference)

    def reject(self, payout_request_id: str, processed_by: str, reason: str) -> PayoutRequest:
        if not (reason or "").strip():
            raise ValidationError("Rejection reason is required", field="reason")
        return self._settle(payout_request_id, processed_by, paid=False, note=reason)

    def _settle(self, payout_request_id: str, processed_by: str, paid: bool, note: str) -> PayoutRequest:
        def step(repo: EarningsRepository) -> PayoutRequest:
            payout = self._open_request(repo, payout_request_id)
            releases = [Reservation(m.account_id, m.amount) for m in payout.members if m.reserved]
            suffix = payout.id[-6:]
            if paid:
                description = f"Payout #{suffix} paid, ref {note}"
                payout.status = PayoutStatus.PAID.value
                payout.payment_reference = note
            else:
                description = f"Payout #{suffix} rejected, funds returned"
                payout.status = PayoutStatus.REJECTED.value
                payout.rejection_reason = note
            self.engine.release(repo, releases, payout.id, paid=paid, description=description)
            payout.processed_by = processed_by
            payout.processed_at = utcnow()
            self._emit(repo, "PayoutPaid" if paid else "PayoutRejected", payout, reason=None if paid else note)
            return payout

        payout = self.engine.run(step)
        logger.info(f"Payout request {payout.id} marked {payout.status} by {processed_by}")
        return payout

    def _open_request(self, repo: EarningsRepository, payout_request_id: str) -> PayoutRequest:
        payout = repo.get_payout_request(payout_request_id, for_update=True)
        if payout is None:
            raise NotFoundError("Payout request not found", context={"payout_request_id": payout_request_id})
        if payout.status not in OPEN_PAYOUT_STATUSES:
            raise ValidationError(f"Payout request is already {payout.status}",
                                  context={"payout_request_id": payout.id})
        return payout

    def _emit(self, repo: EarningsRepository, event_type: str, payout: PayoutRequest, reason: str = None):
        event = PayoutEvent(
            type=event_type,
            payout_request_id=payout.id,
            group_id=payout.group_id,
            requester_account_id=payout.requester_account_id,
            amount=payout.reserved_total,
            currency=settings.currency,
            reason=reason,
        )
        repo.add_outbox(TOPIC_EARNINGS_EVENTS, event.model_dump_json())
