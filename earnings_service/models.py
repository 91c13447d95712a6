import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, BigInteger, DateTime, Boolean, func, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

class AccountRole(str, enum.Enum):
    GROUP_ADMIN = "dispensary-admin"
    GROUP_STAFF = "dispensary-staff"

class TransactionKind(str, enum.Enum):
    ORDER_COMMISSION = "order_commission"
    PAYOUT = "payout"               # reservation: current -> pending
    PAYOUT_PAID = "payout_paid"     # pending leaves the ledger
    REFUND = "refund"               # rejected payout: pending -> current

class PayoutMode(str, enum.Enum):
    INDIVIDUAL = "individual"
    COMBINED = "combined"

class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"

OPEN_PAYOUT_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value)

class ObligationKind(str, enum.Enum):
    DRIVER = "driver"
    VENDOR = "vendor"

class ObligationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"

class EarningsAccount(Base):
    __tablename__ = "earnings_accounts"
    id = Column(String(64), primary_key=True)
    group_id = Column(String(64), nullable=False, index=True)
    role = Column(String(32), nullable=False, default=AccountRole.GROUP_ADMIN.value)
    # all money columns are integer cents
    current_balance = Column(BigInteger, nullable=False, default=0)
    pending_balance = Column(BigInteger, nullable=False, default=0)
    total_earned = Column(BigInteger, nullable=False, default=0)
    total_withdrawn = Column(BigInteger, nullable=False, default=0)
    bank_account_holder = Column(String(128))
    bank_name = Column(String(128))
    bank_account_number = Column(String(64))
    bank_branch_code = Column(String(32))
    bank_account_type = Column(String(16))
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow)

    @property
    def is_group_admin(self) -> bool:
        return self.role == AccountRole.GROUP_ADMIN.value

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("account_id", "source_event_id", "kind", name="uq_ledger_entry_event"),
    )
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id = Column(String(64), ForeignKey("earnings_accounts.id"), nullable=False, index=True)
    group_id = Column(String(64), nullable=False)
    source_event_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    amount = Column(BigInteger, nullable=False)           # signed change to current_balance
    pending_amount = Column(BigInteger, nullable=False, default=0)  # signed change to pending_balance
    balance_after = Column(BigInteger, nullable=False)
    description = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

class PayeeProfile(Base):
    """Role record for drivers and vendors, maintained outside the ledger."""
    __tablename__ = "payee_profiles"
    user_id = Column(String(64), primary_key=True)
    group_id = Column(String(64), index=True)
    role = Column(String(32), nullable=False)
    # legacy profiles pre-date the sub-role field
    sub_role = Column(String(32), nullable=True)
    display_name = Column(String(128))

class Obligation(Base):
    __tablename__ = "obligations"
    __table_args__ = (
        Index("ix_obligations_group_kind_status", "group_id", "kind", "status"),
    )
    id = Column(String(64), primary_key=True)
    group_id = Column(String(64), nullable=False)
    payee_id = Column(String(64), nullable=False)
    kind = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=ObligationStatus.PENDING.value)
    amount = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

class PayoutRequest(Base):
    __tablename__ = "payout_requests"
    id = Column(String(64), primary_key=True)
    mode = Column(String(16), nullable=False)
    group_id = Column(String(64), nullable=False, index=True)
    requester_account_id = Column(String(64), ForeignKey("earnings_accounts.id"), nullable=False)
    requested_amount = Column(BigInteger, nullable=False)
    reserved_total = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default=PayoutStatus.PENDING.value)
    sales_revenue = Column(BigInteger, nullable=False, default=0)
    owed_to_drivers = Column(BigInteger, nullable=False, default=0)
    owed_to_vendors = Column(BigInteger, nullable=False, default=0)
    bank_account_holder = Column(String(128), nullable=False)
    bank_name = Column(String(128), nullable=False)
    bank_account_number = Column(String(64), nullable=False)
    bank_branch_code = Column(String(32), nullable=False)
    bank_account_type = Column(String(16), nullable=False)
    payment_reference = Column(String(128))
    rejection_reason = Column(String(255))
    processed_by = Column(String(64))
    processed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow)

    members = relationship("PayoutRequestMember", back_populates="payout_request",
                           order_by="PayoutRequestMember.position", lazy="selectin")

class PayoutRequestMember(Base):
    __tablename__ = "payout_request_members"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    payout_request_id = Column(String(64), ForeignKey("payout_requests.id"), nullable=False, index=True)
    account_id = Column(String(64), ForeignKey("earnings_accounts.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    role = Column(String(32), nullable=False)
    amount = Column(BigInteger, nullable=False)
    balance_before = Column(BigInteger, nullable=False)
    reserved = Column(Boolean, nullable=False, default=True)

    payout_request = relationship("PayoutRequest", back_populates="members")

class Outbox(Base):
    __tablename__ = "outbox"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    topic = Column(String(64), nullable=False)
    payload = Column(String(4000), nullable=False)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    status = Column(String(16), default="new")  # new|sent|failed
