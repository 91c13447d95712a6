import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Depends, Request
from sqlalchemy.orm import sessionmaker
from common.error_handling import add_error_handlers
from common.schemas import (
    AccountSnapshot, AccrualResponse, BankingDetails, MemberBreakdown, ObligationSummaryOut,
    OrderDeliveredEvent, PayoutBreakdown, PayoutRequestCall, PayoutRequestOut, PayoutResponse,
    SettlePayout, TransactionOut,
)
from common.settings import settings
from common.tracing import earnings_tracer, tracing_middleware
from earnings_service.accrual import OrderEventHandler
from earnings_service.db import get_session_factory, init_db
from earnings_service.ledger import LedgerEngine
from earnings_service.models import EarningsAccount, LedgerEntry, ObligationKind, PayoutRequest, PayoutStatus
from earnings_service.money import from_cents
from earnings_service.obligations import ObligationAggregator
from earnings_service.payouts import PayoutWorkflow

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Earnings service started")
    yield

app = FastAPI(title="Earnings Service", version="1.0.0", lifespan=lifespan)
add_error_handlers(app)

@app.middleware("http")
async def add_tracing(request: Request, call_next):
    return await tracing_middleware(request, call_next, earnings_tracer)

def get_engine(session_factory: sessionmaker = Depends(get_session_factory)) -> LedgerEngine:
    return LedgerEngine(session_factory)

def get_workflow(engine: LedgerEngine = Depends(get_engine)) -> PayoutWorkflow:
    return PayoutWorkflow(engine)

def account_snapshot(account: EarningsAccount) -> AccountSnapshot:
    banking = None
    if account.bank_account_number:
        banking = BankingDetails(
            account_holder=account.bank_account_holder or "",
            bank_name=account.bank_name or "",
            account_number=account.bank_account_number,
            branch_code=account.bank_branch_code or "",
            account_type=account.bank_account_type or "savings",
        )
    return AccountSnapshot(
        account_id=account.id,
        group_id=account.group_id,
        role=account.role,
        current_balance=from_cents(account.current_balance),
        pending_balance=from_cents(account.pending_balance),
        total_earned=from_cents(account.total_earned),
        total_withdrawn=from_cents(account.total_withdrawn),
        currency=settings.currency,
        banking_details=banking,
    )

def transaction_out(entry: LedgerEntry) -> TransactionOut:
    return TransactionOut(
        id=entry.id,
        account_id=entry.account_id,
        group_id=entry.group_id,
        source_event_id=entry.source_event_id,
        kind=entry.kind,
        amount=from_cents(entry.amount),
        pending_amount=from_cents(entry.pending_amount),
        balance_after=from_cents(entry.balance_after),
        description=entry.description,
        created_at=entry.created_at,
    )

def breakdown_out(payout: PayoutRequest) -> PayoutBreakdown:
    return PayoutBreakdown(
        sales_revenue=from_cents(payout.sales_revenue),
        obligations_owed_to_drivers=from_cents(payout.owed_to_drivers),
        obligations_owed_to_vendors=from_cents(payout.owed_to_vendors),
    )

def payout_out(payout: PayoutRequest) -> PayoutRequestOut:
    return PayoutRequestOut(
        id=payout.id,
        mode=payout.mode,
        group_id=payout.group_id,
        requester_account_id=payout.requester_account_id,
        requested_amount=from_cents(payout.requested_amount),
        reserved_total=from_cents(payout.reserved_total),
        status=payout.status,
        breakdown=breakdown_out(payout),
        banking_details=BankingDetails(
            account_holder=payout.bank_account_holder,
            bank_name=payout.bank_name,
            account_number=payout.bank_account_number,
            branch_code=payout.bank_branch_code,
            account_type=payout.bank_account_type,
        ),
        members=[
            MemberBreakdown(account_id=m.account_id, role=m.role, amount=from_cents(m.amount),
                            balance_before=from_cents(m.balance_before))
            for m in payout.members
        ],
        payment_reference=payout.payment_reference,
        rejection_reason=payout.rejection_reason,
        processed_by=payout.processed_by,
        created_at=payout.created_at,
    )

@app.post("/events/order-delivered", response_model=AccrualResponse)
def order_delivered(event: OrderDeliveredEvent, engine: LedgerEngine = Depends(get_engine)):
    """Synchronous entry point for the same accrual the Kafka consumer performs."""
    return OrderEventHandler(engine).handle(event)

@app.post("/payouts", response_model=PayoutResponse)
def create_payout(call: PayoutRequestCall, workflow: PayoutWorkflow = Depends(get_workflow)):
    payout = workflow.request_payout(call)
    return PayoutResponse(
        payout_request_id=payout.id,
        status=payout.status,
        reserved_total=from_cents(payout.reserved_total),
        breakdown=breakdown_out(payout),
    )

@app.get("/payouts/{payout_request_id}", response_model=PayoutRequestOut)
def get_payout(payout_request_id: str, workflow: PayoutWorkflow = Depends(get_workflow)):
    return payout_out(workflow.get(payout_request_id))

@app.post("/payouts/{payout_request_id}/approve", response_model=PayoutRequestOut)
def approve_payout(payout_request_id: str, body: SettlePayout, workflow: PayoutWorkflow = Depends(get_workflow)):
    return payout_out(workflow.approve(payout_request_id, body.processed_by))

@app.post("/payouts/{payout_request_id}/paid", response_model=PayoutRequestOut)
def mark_payout_paid(payout_request_id: str, body: SettlePayout, workflow: PayoutWorkflow = Depends(get_workflow)):
    return payout_out(workflow.mark_paid(payout_request_id, body.processed_by, body.payment_reference))

@app.post("/payouts/{payout_request_id}/reject", response_model=PayoutRequestOut)
def reject_payout(payout_request_id: str, body: SettlePayout, workflow: PayoutWorkflow = Depends(get_workflow)):
    return payout_out(workflow.reject(payout_request_id, body.processed_by, body.reason))

@app.get("/groups/{group_id}/payouts", response_model=list[PayoutRequestOut])
def list_group_payouts(group_id: str, status: Optional[PayoutStatus] = None,
                       workflow: PayoutWorkflow = Depends(get_workflow)):
    """Back-office queue: a group's payout requests, newest first."""
    return [payout_out(p) for p in workflow.list_for_group(group_id, status.value if status else None)]

@app.get("/accounts/{account_id}/payouts", response_model=list[PayoutRequestOut])
def list_account_payouts(account_id: str, workflow: PayoutWorkflow = Depends(get_workflow)):
    return [payout_out(p) for p in workflow.list_for_account(account_id)]

@app.get("/accounts/{account_id}", response_model=AccountSnapshot)
def get_account(account_id: str, engine: LedgerEngine = Depends(get_engine)):
    return account_snapshot(engine.get_account(account_id))

@app.get("/accounts/{account_id}/transactions", response_model=list[TransactionOut])
def get_transactions(account_id: str, engine: LedgerEngine = Depends(get_engine)):
    return [transaction_out(e) for e in engine.history(account_id)]

@app.get("/groups/{group_id}/obligations", response_model=ObligationSummaryOut)
def get_obligations(group_id: str, kind: ObligationKind, engine: LedgerEngine = Depends(get_engine)):
    with engine.transaction() as repo:
        summary = ObligationAggregator(repo).summarize(group_id, kind.value)
    return ObligationSummaryOut(
        group_id=summary.group_id,
        kind=summary.kind,
        total=from_cents(summary.total),
        counted=summary.counted,
        excluded=summary.excluded,
        flagged_for_review=summary.flagged_for_review,
    )

@app.get("/health")
async def health():
    return {"ok": True, "service": "earnings"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8002)
