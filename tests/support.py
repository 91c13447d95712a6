"""Shared fixtures: an in-memory database and seed helpers for the earnings tests."""
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from common.retry import RetryConfig
from common.schemas import BankingDetails, PayoutRequestCall
from earnings_service.ledger import LedgerEngine
from earnings_service.models import AccountRole, Base, EarningsAccount, Obligation, PayeeProfile

GROUP = "grp-1"
OTHER_GROUP = "grp-2"

NO_RETRY = RetryConfig(max_attempts=1, base_delay=0, jitter=False, retryable_exceptions=[OperationalError])

def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)

def make_engine(session_factory=None) -> LedgerEngine:
    return LedgerEngine(session_factory or make_session_factory(), retry_config=NO_RETRY)

def seed_account(session_factory, account_id, current=0, group_id=GROUP,
                 role=AccountRole.GROUP_ADMIN.value, pending=0):
    """Insert an account directly, bypassing the ledger (no entries are written)."""
    with session_factory() as session:
        session.add(EarningsAccount(
            id=account_id,
            group_id=group_id,
            role=role,
            current_balance=current,
            pending_balance=pending,
            total_earned=current + pending,
            total_withdrawn=0,
        ))
        session.commit()

def seed_profile(session_factory, user_id, role="dispensary-staff", sub_role=None, group_id=GROUP):
    with session_factory() as session:
        session.add(PayeeProfile(user_id=user_id, group_id=group_id, role=role, sub_role=sub_role))
        session.commit()

def seed_obligation(session_factory, obligation_id, payee_id, kind, amount, status="pending", group_id=GROUP):
    with session_factory() as session:
        session.add(Obligation(id=obligation_id, group_id=group_id, payee_id=payee_id,
                               kind=kind, status=status, amount=amount))
        session.commit()

def banking_details(**overrides) -> BankingDetails:
    values = dict(
        account_holder="Green Leaf Co-op",
        bank_name="First National Bank",
        account_number="62812345678",
        branch_code="250655",
        account_type="current",
    )
    values.update(overrides)
    return BankingDetails(**values)

def payout_call(mode, requester, amount, members=(), group_id=GROUP, **bank) -> PayoutRequestCall:
    return PayoutRequestCall(
        mode=mode,
        requester_account_id=requester,
        group_id=group_id,
        requested_amount=Decimal(amount),
        banking_details=banking_details(**bank),
        member_account_ids=list(members),
    )
