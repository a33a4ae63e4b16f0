import json
import logging

from kafka import KafkaProducer

from judge_gateway.config import get_settings

logger = logging.getLogger(__name__)

EXECUTION_TOPIC = "code_executed"

_producer = None


def get_producer():
    """Create the producer on first use; brokers are contacted only when events are enabled."""
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=get_settings().kafka_broker_url,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        )
    return _producer


def send_event(topic: str, event: dict):
    """Publish one event and block until the broker acknowledges it."""
    producer = get_producer()
    producer.send(topic, value=event)
    producer.flush()
    logger.debug("Event sent to %s", topic)
