from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Money = Decimal

class CamelModel(BaseModel):
    """API model exchanged as camelCase JSON; snake_case keys are accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class OrderDeliveredEvent(CamelModel):
    """Order state change as published by the storefront."""

    source_event_id: str = Field(min_length=1)
    group_id: Optional[str] = None
    payee_account_id: str = Field(min_length=1)
    # role of a payee whose account this event creates; never changes an existing account
    payee_role: Literal["dispensary-admin", "dispensary-staff"] = "dispensary-staff"
    order_total: Money
    pre_computed_commission: Optional[Money] = None
    commission_rate: Optional[Decimal] = None
    fulfillment_channel: str = "group"
    status: str = "delivered"
    previous_status: Optional[str] = None
    order_number: Optional[str] = None

class AccrualResponse(CamelModel):
    status: Literal["accrued", "skipped", "duplicate"]
    source_event_id: str
    amount: Optional[Money] = None
    reason: Optional[str] = None

class BankingDetails(CamelModel):
    account_holder: str = ""
    bank_name: str = ""
    account_number: str = ""
    branch_code: str = ""
    account_type: Literal["savings", "current", "cheque"] = "savings"

class PayoutRequestCall(CamelModel):
    mode: Literal["individual", "combined"]
    requester_account_id: str = Field(min_length=1)
    group_id: str = Field(min_length=1)
    requested_amount: Money
    banking_details: BankingDetails
    member_account_ids: List[str] = []

class PayoutBreakdown(CamelModel):
    sales_revenue: Money
    obligations_owed_to_drivers: Money
    obligations_owed_to_vendors: Money

class MemberBreakdown(CamelModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    account_id: str
    role: str
    amount: Money
    balance_before: Money

class PayoutResponse(CamelModel):
    success: bool = True
    payout_request_id: str
    status: str
    reserved_total: Money
    breakdown: PayoutBreakdown

class PayoutRequestOut(CamelModel):
    id: str
    mode: str
    group_id: str
    requester_account_id: str
    requested_amount: Money
    reserved_total: Money
    status: str
    breakdown: PayoutBreakdown
    banking_details: BankingDetails
    members: List[MemberBreakdown]
    payment_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    processed_by: Optional[str] = None
    created_at: Optional[datetime] = None

class SettlePayout(CamelModel):
    processed_by: str = Field(min_length=1)
    payment_reference: Optional[str] = None
    reason: Optional[str] = None

class AccountSnapshot(CamelModel):
    account_id: str
    group_id: str
    role: str
    current_balance: Money
    pending_balance: Money
    total_earned: Money
    total_withdrawn: Money
    currency: str
    banking_details: Optional[BankingDetails] = None

class TransactionOut(CamelModel):
    id: int
    account_id: str
    group_id: str
    source_event_id: str
    kind: str
    amount: Money
    pending_amount: Money
    balance_after: Money
    description: str
    created_at: Optional[datetime] = None

class ObligationSummaryOut(CamelModel):
    group_id: str
    kind: Literal["driver", "vendor"]
    total: Money
    counted: int
    excluded: int
    flagged_for_review: List[str]

class PayoutEvent(BaseModel):
    type: Literal["PayoutRequested", "PayoutApproved", "PayoutPaid", "PayoutRejected"]
    payout_request_id: str
    group_id: str
    requester_account_id: str
    amount: int
    currency: str
    reason: Optional[str] = None
