from confluent_kafka import Producer, Consumer
from common.settings import settings

TOPIC_ORDER_EVENTS    = settings.order_events_topic
TOPIC_EARNINGS_EVENTS = settings.earnings_events_topic

_producer = None

def get_producer() -> Producer:
    global _producer
    if _producer is None:
        _producer = Producer({"bootstrap.servers": settings.kafka_bootstrap, "enable.idempotence": True})
    return _producer

def get_consumer(group_id: str, topics: list[str]):
    c = Consumer({
        "bootstrap.servers": settings.kafka_bootstrap,
        "group.id": group_id,
        "auto.offset.reset": "earliest",
        "enable.auto.commit": False,
    })
    c.subscribe(topics)
    return c
