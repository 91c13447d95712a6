from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from earnings_service.models import (
    EarningsAccount, LedgerEntry, Obligation, Outbox, PayeeProfile, PayoutRequest, PayoutRequestMember,
)

class EarningsRepository:
    """All reads and writes the earnings core performs, bound to one session.

    Every method runs inside the caller's transaction; nothing here commits.
    """

    def __init__(self, session: Session):
        self.session = session

    # Accounts
    def get_account(self, account_id: str) -> Optional[EarningsAccount]:
        return self.session.get(EarningsAccount, account_id)

    def lock_accounts(self, account_ids: Iterable[str]) -> Dict[str, EarningsAccount]:
        """SELECT ... FOR UPDATE the given accounts in id order.

        A fixed lock order keeps two overlapping batches from deadlocking.
        Missing ids are simply absent from the result.
        """
        ids = sorted(set(account_ids))
        if not ids:
            return {}
        stmt = (select(EarningsAccount)
                .where(EarningsAccount.id.in_(ids))
                .order_by(EarningsAccount.id)
                .with_for_update()
                .execution_options(populate_existing=True))
        return {acc.id: acc for acc in self.session.execute(stmt).scalars()}

    def add_account(self, account: EarningsAccount) -> EarningsAccount:
        self.session.add(account)
        self.session.flush()
        return account

    # Ledger entries
    def find_entry(self, account_id: str, source_event_id: str, kind: str) -> Optional[LedgerEntry]:
        stmt = select(LedgerEntry).where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.source_event_id == source_event_id,
            LedgerEntry.kind == kind,
        )
        return self.session.execute(stmt).scalars().first()

    def add_entry(self, entry: LedgerEntry) -> LedgerEntry:
        self.session.add(entry)
        return entry

    def entries_for_account(self, account_id: str) -> List[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id).order_by(LedgerEntry.id)
        return list(self.session.execute(stmt).scalars())

    # Obligations and payee profiles (read-only)
    def obligations_for_group(self, group_id: str, kind: str, statuses: Sequence[str]) -> List[Obligation]:
        stmt = (select(Obligation)
                .where(Obligation.group_id == group_id,
                       Obligation.kind == kind,
                       Obligation.status.in_(list(statuses)))
                .order_by(Obligation.id))
        return list(self.session.execute(stmt).scalars())

    def get_profile(self, user_id: str) -> Optional[PayeeProfile]:
        return self.session.get(PayeeProfile, user_id)

    def profiles_by_ids(self, user_ids: Iterable[str]) -> Dict[str, PayeeProfile]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        stmt = select(PayeeProfile).where(PayeeProfile.user_id.in_(ids))
        return {p.user_id: p for p in self.session.execute(stmt).scalars()}

    # Payout requests
    def get_payout_request(self, payout_request_id: str, for_update: bool = False) -> Optional[PayoutRequest]:
        if not for_update:
            return self.session.get(PayoutRequest, payout_request_id)
        stmt = (select(PayoutRequest)
                .where(PayoutRequest.id == payout_request_id)
                .with_for_update()
                .execution_options(populate_existing=True))
        return self.session.execute(stmt).scalars().first()

    def payout_requests_for_group(self, group_id: str, status: Optional[str] = None) -> List[PayoutRequest]:
        stmt = select(PayoutRequest).where(PayoutRequest.group_id == group_id)
        if status is not None:
            stmt = stmt.where(PayoutRequest.status == status)
        stmt = stmt.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id)
        return list(self.session.execute(stmt).scalars())

    def payout_requests_for_account(self, account_id: str) -> List[PayoutRequest]:
        """Requests the account filed or is swept into as a combined-payout member."""
        member_of = select(PayoutRequestMember.payout_request_id).where(PayoutRequestMember.account_id == account_id)
        stmt = (select(PayoutRequest)
                .where(or_(PayoutRequest.requester_account_id == account_id, PayoutRequest.id.in_(member_of)))
                .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id))
        return list(self.session.execute(stmt).scalars())

    def add_payout_request(self, payout: PayoutRequest) -> PayoutRequest:
        self.session.add(payout)
        return payout

    # Outbox
    def add_outbox(self, topic: str, payload: str) -> Outbox:
        row = Outbox(topic=topic, payload=payload)
        self.session.add(row)
        return row
