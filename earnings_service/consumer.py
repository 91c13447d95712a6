"""
Kafka consumer for order events.

Offsets are committed only after an event has been applied (or deliberately
skipped), so delivery is at-least-once; the ledger de-duplicates replays on
the order's source event id.
"""
import json
import logging
import threading

from pydantic import ValidationError as SchemaValidationError

from common.error_handling import BusinessLogicError
from common.kafka import get_consumer, TOPIC_ORDER_EVENTS
from common.schemas import OrderDeliveredEvent
from common.tracing import earnings_tracer
from earnings_service.accrual import OrderEventHandler
from earnings_service.db import get_session_factory
from earnings_service.ledger import LedgerEngine

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "earnings-service"

def process_message(handler: OrderEventHandler, raw: bytes):
    """Apply one raw message. Returns the accrual result, or None for unusable payloads."""
    try:
        event = OrderDeliveredEvent.model_validate(json.loads(raw))
    except (ValueError, SchemaValidationError) as e:
        logger.error(f"Discarding malformed order event: {e}")
        return None

    with earnings_tracer.start_span("accrue_order") as span:
        span.add_tag("source_event_id", event.source_event_id)
        try:
            result = handler.handle(event)
        except BusinessLogicError as e:
            # retrying cannot fix bad input; skip so the partition keeps moving
            logger.error(f"Order event {event.source_event_id} rejected: {e.code} - {e.message}")
            return None
        span.add_tag("result", result.status)
        return result

def consume(handler: OrderEventHandler = None, stop: threading.Event = None):
    handler = handler or OrderEventHandler(LedgerEngine(get_session_factory()))
    stop = stop or threading.Event()
    c = get_consumer(CONSUMER_GROUP, [TOPIC_ORDER_EVENTS])
    logger.info(f"Consuming order events from {TOPIC_ORDER_EVENTS}")
    try:
        while not stop.is_set():
            msg = c.poll(1.0)
            if not msg or msg.error():
                continue
            process_message(handler, msg.value())
            c.commit(message=msg, asynchronous=False)
    finally:
        c.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    consume()
