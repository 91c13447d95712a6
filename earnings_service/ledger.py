"""
Ledger engine: the only code that changes account balances.

Every mutation runs as one unit of work: the affected account rows are locked
(SELECT ... FOR UPDATE, in id order), balances are checked and changed, and
one ledger entry per account is appended, all inside a single database
transaction. Any exception rolls the whole unit back.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from sqlalchemy.orm import Session

from common.error_handling import (
    DuplicateEventError, InsufficientBalanceError, NotFoundError, ValidationError,
)
from common.retry import LEDGER_RETRY_CONFIG, RetryConfig, retry_call
from earnings_service.models import AccountRole, EarningsAccount, LedgerEntry, TransactionKind
from earnings_service.money import format_amount
from earnings_service.repository import EarningsRepository

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class Reservation:
    account_id: str
    amount: int  # cents

@dataclass(frozen=True)
class AuditResult:
    account_id: str
    current_balance: int
    pending_balance: int
    total_earned: int
    total_withdrawn: int
    consistent: bool

class LedgerEngine:
    def __init__(self, session_factory: Callable[[], Session], retry_config: RetryConfig = LEDGER_RETRY_CONFIG):
        self.session_factory = session_factory
        self.retry_config = retry_config

    @contextmanager
    def transaction(self) -> Iterator[EarningsRepository]:
        """Unit of work: commit on clean exit, roll back on any exception."""
        with self.session_factory() as session:
            try:
                yield EarningsRepository(session)
                session.commit()
            except Exception:
                session.rollback()
                raise

    def run(self, func: Callable[[EarningsRepository], object]):
        """Run func inside a fresh unit of work, retrying lock races and deadlocks."""
        def attempt():
            with self.transaction() as repo:
                return func(repo)
        return retry_call(attempt, self.retry_config)

    # Accrual
    def accrue(
        self,
        group_id: str,
        payee_account_id: str,
        amount: int,
        source_event_id: str,
        description: Optional[str] = None,
        role: str = AccountRole.GROUP_STAFF.value,
    ) -> Optional[LedgerEntry]:
        """Credit commission to an account once per source event.

        Returns the new ledger entry, or None when the event was already applied.
        """
        if not group_id:
            raise ValidationError("group_id is required for accrual", field="group_id")
        if not payee_account_id:
            raise ValidationError("payee account is required for accrual", field="payee_account_id")
        if not source_event_id:
            raise ValidationError("source_event_id is required for accrual", field="source_event_id")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Accrual amount must be a positive number of cents", field="amount",
                                  context={"amount": str(amount)})
        if role not in {r.value for r in AccountRole}:
            raise ValidationError(f"Unknown account role {role!r}", field="role")

        description = description or f"Commission from order #{source_event_id}"
        try:
            entry = self.run(lambda repo: self._apply_accrual(
                repo, group_id, payee_account_id, amount, source_event_id, description, role))
        except DuplicateEventError:
            logger.info(f"Duplicate accrual ignored for {source_event_id}", extra={
                "account_id": payee_account_id, "source_event_id": source_event_id})
            return None

        logger.info(f"Recorded {format_amount(amount)} earnings for {payee_account_id} in group {group_id}", extra={
            "account_id": payee_account_id, "group_id": group_id, "source_event_id": source_event_id})
        return entry

    def _apply_accrual(self, repo: EarningsRepository, group_id, account_id, amount, source_event_id,
                       description, role) -> LedgerEntry:
        kind = TransactionKind.ORDER_COMMISSION.value
        if repo.find_entry(account_id, source_event_id, kind) is not None:
            raise DuplicateEventError(f"Event {source_event_id} already credited to {account_id}")

        account = repo.lock_accounts([account_id]).get(account_id)
        if account is None:
            account = repo.add_account(EarningsAccount(
                id=account_id,
                group_id=group_id,
                role=role,
                current_balance=amount,
                pending_balance=0,
                total_earned=amount,
                total_withdrawn=0,
            ))
        else:
            if account.group_id != group_id:
                logger.warning(f"Accrual for {account_id} names group {group_id}, account belongs to {account.group_id}")
            if account.role != role:
                logger.warning(f"Accrual for {account_id} names role {role}, account keeps {account.role}")
            account.current_balance += amount
            account.total_earned += amount

        entry = LedgerEntry(
            account_id=account_id,
            group_id=group_id,
            source_event_id=source_event_id,
            kind=kind,
            amount=amount,
            pending_amount=0,
            balance_after=account.current_balance,
            description=description,
        )
        repo.add_entry(entry)
        repo.session.flush()
        return entry

    # Reservation
    def reserve(
        self,
        reservations: Sequence[Reservation],
        requested_total: int,
        source_event_id: str,
        description: str = "",
        repo: Optional[EarningsRepository] = None,
    ) -> List[LedgerEntry]:
        """Move funds from current to pending across a batch of accounts, all or nothing.

        Balance sufficiency is checked on the locked rows, inside the same
        transaction as the mutation. Pass ``repo`` to join a caller's unit of
        work (so the payout record commits with the reservation); otherwise a
        unit of work is opened and committed here.
        """
        if repo is None:
            return self.run(lambda r: self.reserve(reservations, requested_total, source_event_id, description, r))

        if not reservations:
            raise ValidationError("Nothing to reserve")
        if requested_total <= 0:
            raise ValidationError("Requested total must be positive", field="requested_amount")
        seen = set()
        for res in reservations:
            if res.account_id in seen:
                raise ValidationError(f"Account {res.account_id} appears twice in one reservation")
            seen.add(res.account_id)
            if res.amount < 0:
                raise ValidationError(f"Reservation for {res.account_id} is negative", field="amount")

        accounts = repo.lock_accounts(seen)
        missing = sorted(seen - set(accounts))
        if missing:
            raise NotFoundError(f"Earnings record not found: {', '.join(missing)}", context={"account_ids": missing})

        for res in reservations:
            account = accounts[res.account_id]
            if res.amount > account.current_balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Available: {format_amount(account.current_balance)}",
                    context={"account_id": res.account_id,
                             "available": account.current_balance,
                             "requested": res.amount})

        reserved = sum(res.amount for res in reservations)
        if reserved < requested_total:
            raise InsufficientBalanceError(
                f"Insufficient combined balance. Available: {format_amount(reserved)}, "
                f"Requested: {format_amount(requested_total)}",
                context={"available": reserved, "requested": requested_total})

        entries = []
        for res in reservations:
            if res.amount == 0:
                continue
            account = accounts[res.account_id]
            account.current_balance -= res.amount
            account.pending_balance += res.amount
            entries.append(repo.add_entry(LedgerEntry(
                account_id=account.id,
                group_id=account.group_id,
                source_event_id=source_event_id,
                kind=TransactionKind.PAYOUT.value,
                amount=-res.amount,
                pending_amount=res.amount,
                balance_after=account.current_balance,
                description=description,
            )))
        repo.session.flush()

        logger.info(f"Reserved {format_amount(reserved)} across {len(entries)} account(s) for {source_event_id}")
        return entries

    # Settlement of reserved funds
    def release(
        self,
        repo: EarningsRepository,
        releases: Sequence[Reservation],
        source_event_id: str,
        paid: bool,
        description: str = "",
    ) -> List[LedgerEntry]:
        """Take reserved funds out of pending: paid out, or returned to current."""
        accounts = repo.lock_accounts(r.account_id for r in releases)
        for res in releases:
            account = accounts.get(res.account_id)
            if account is None:
                raise NotFoundError(f"Earnings record not found: {res.account_id}")
            if res.amount > account.pending_balance:
                raise InsufficientBalanceError(
                    f"Pending balance of {res.account_id} is below the reserved amount",
                    context={"account_id": res.account_id,
                             "pending": account.pending_balance,
                             "amount": res.amount})

        entries = []
        for res in releases:
            if res.amount == 0:
                continue
            account = accounts[res.account_id]
            account.pending_balance -= res.amount
            if paid:
                account.total_withdrawn += res.amount
                kind, amount = TransactionKind.PAYOUT_PAID.value, 0
            else:
                account.current_balance += res.amount
                kind, amount = TransactionKind.REFUND.value, res.amount
            entries.append(repo.add_entry(LedgerEntry(
                account_id=account.id,
                group_id=account.group_id,
                source_event_id=source_event_id,
                kind=kind,
                amount=amount,
                pending_amount=-res.amount,
                balance_after=account.current_balance,
                description=description,
            )))
        repo.session.flush()
        return entries

    # Reads
    def get_account(self, account_id: str) -> EarningsAccount:
        with self.transaction() as repo:
            account = repo.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Earnings record not found: {account_id}")
            return account

    def history(self, account_id: str) -> List[LedgerEntry]:
        with self.transaction() as repo:
            if repo.get_account(account_id) is None:
                raise NotFoundError(f"Earnings record not found: {account_id}")
            return repo.entries_for_account(account_id)

    def audit(self, account_id: str) -> AuditResult:
        """Replay an account's ledger entries and compare with its stored balances."""
        with self.transaction() as repo:
            account = repo.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Earnings record not found: {account_id}")
            entries = repo.entries_for_account(account_id)

            current = sum(e.amount for e in entries)
            pending = sum(e.pending_amount for e in entries)
            earned = sum(e.amount for e in entries if e.kind == TransactionKind.ORDER_COMMISSION.value)
            withdrawn = -sum(e.pending_amount for e in entries if e.kind == TransactionKind.PAYOUT_PAID.value)

            consistent = (current, pending, earned, withdrawn) == (
                account.current_balance, account.pending_balance, account.total_earned, account.total_withdrawn)
            if not consistent:
                logger.error(f"Ledger replay for {account_id} does not match stored balances", extra={
                    "account_id": account_id,
                    "replayed": {"current": current, "pending": pending, "earned": earned, "withdrawn": withdrawn},
                })
            return AuditResult(account_id, current, pending, earned, withdrawn, consistent)
