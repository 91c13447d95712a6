import logging
import time
from sqlalchemy import select, update
from confluent_kafka import KafkaException
from common.kafka import get_producer
from common.retry import KAFKA_RETRY_CONFIG, retry_call
from earnings_service.db import get_session_factory
from earnings_service.models import Outbox

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5
BATCH_SIZE = 50

def _send(producer, row: Outbox):
    producer.produce(row.topic, value=row.payload.encode("utf-8"))
    producer.flush()

def publish_pending(session_factory, producer) -> int:
    """Publish one batch of new outbox rows. Returns how many were sent."""
    sent = 0
    with session_factory() as db:
        rows = db.execute(select(Outbox).where(Outbox.status == "new").order_by(Outbox.id).limit(BATCH_SIZE)).scalars().all()
        for row in rows:
            try:
                retry_call(_send, KAFKA_RETRY_CONFIG, producer, row)
                db.execute(update(Outbox).where(Outbox.id == row.id).values(status="sent"))
                sent += 1
            except KafkaException as e:
                logger.error(f"Failed to publish outbox row {row.id}: {e}")
                db.execute(update(Outbox).where(Outbox.id == row.id).values(status="failed"))
            db.commit()
    return sent

def run():
    session_factory = get_session_factory()
    producer = get_producer()
    while True:
        try:
            publish_pending(session_factory, producer)
        except Exception:
            logger.exception("Outbox publishing pass failed")
        time.sleep(POLL_INTERVAL)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
