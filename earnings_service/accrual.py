import logging
from typing import Optional

from common.schemas import AccrualResponse, OrderDeliveredEvent
from earnings_service.commission import resolve_commission
from earnings_service.ledger import LedgerEngine
from earnings_service.money import from_cents, to_cents

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
GROUP_FULFILLED = "group"

def skip_reason(event: OrderDeliveredEvent) -> Optional[str]:
    """Why an order event earns no commission, or None when it qualifies."""
    if event.status != DELIVERED:
        return "not_delivered"
    if event.previous_status == DELIVERED:
        return "already_delivered"
    if event.fulfillment_channel != GROUP_FULFILLED:
        return "platform_fulfilled"
    if not event.group_id:
        return "missing_group"
    return None

class OrderEventHandler:
    """Turns order-delivered events into ledger accruals."""

    def __init__(self, engine: LedgerEngine):
        self.engine = engine

    def handle(self, event: OrderDeliveredEvent) -> AccrualResponse:
        reason = skip_reason(event)
        if reason:
            logger.info(f"Order {event.source_event_id} skipped: {reason}")
            return AccrualResponse(status="skipped", source_event_id=event.source_event_id, reason=reason)

        total = to_cents(event.order_total, "order_total")
        if total <= 0:
            logger.info(f"Order {event.source_event_id} skipped: non-positive total")
            return AccrualResponse(status="skipped", source_event_id=event.source_event_id, reason="invalid_total")

        pre_computed = None
        if event.pre_computed_commission is not None:
            pre_computed = to_cents(event.pre_computed_commission, "pre_computed_commission")
        commission = resolve_commission(total, pre_computed, event.commission_rate)

        entry = self.engine.accrue(
            event.group_id,
            event.payee_account_id,
            commission,
            event.source_event_id,
            description=f"Commission from order #{event.order_number or event.source_event_id}",
            role=event.payee_role,
        )
        if entry is None:
            return AccrualResponse(status="duplicate", source_event_id=event.source_event_id)
        return AccrualResponse(status="accrued", source_event_id=event.source_event_id,
                               amount=from_cents(commission))
