import json
import logging

from django.conf import settings
from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError

logger = logging.getLogger(__name__)


def get_producer():
    try:
        producer = KafkaProducer(
            bootstrap_servers=settings.KAFKA_BROKER.split(","),
            key_serializer=lambda k: k.encode("utf-8"),
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            acks="all",  # Ждать подтверждения от всех реплик
            retries=3,
        )
        return producer
    except KafkaError as e:
        logger.error(f"Failed to create Kafka producer: {e}")
        return None


def get_consumer(*topics, group_id, ack_wait_ms):
    """Консьюмер durable-подписки с ручным подтверждением.

    Offset коммитит вызывающий код после обработки сообщения. Значения
    остаются сырыми байтами, чтобы битый JSON доходил до обработчика, а не
    ронял цикл чтения.
    """
    try:
        consumer = KafkaConsumer(
            bootstrap_servers=settings.KAFKA_BROKER.split(","),
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=False,
            max_poll_interval_ms=ack_wait_ms,
        )
        if topics:
            consumer.subscribe(topics=list(topics))
        return consumer
    except KafkaError as e:
        logger.error(f"Failed to create Kafka consumer: {e}")
        return None
