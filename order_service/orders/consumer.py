import enum
import logging
import threading

from django.db import close_old_connections, connection
from kafka.errors import KafkaError
from kafka.structs import OffsetAndMetadata, TopicPartition

from orders.exceptions import MalformedMessage, PersistenceError, StartupConnectionError
from orders.kafka_client.client import get_consumer
from orders.serializers import parse_order

logger = logging.getLogger(__name__)


class ConsumerState(enum.Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    DRAINING = "DRAINING"
    CLOSED = "CLOSED"


class OrderConsumer:
    """Читает заказы из топика и пишет их сначала в БД, потом в кэш.

    Сообщение подтверждается (коммит offset) только после успешной записи в
    БД и кэш. Если запись в БД упала, сообщение не подтверждается и будет
    доставлено повторно. Битые сообщения подтверждаются и отбрасываются.
    """

    def __init__(
        self,
        store,
        cache,
        topic,
        durable_name,
        ack_wait_seconds=30,
        poll_timeout_ms=1000,
        redelivery_delay=1.0,
    ):
        self.store = store
        self.cache = cache
        self.topic = topic
        self.durable_name = durable_name
        self.ack_wait_seconds = ack_wait_seconds
        self.poll_timeout_ms = poll_timeout_ms
        self.redelivery_delay = redelivery_delay
        self.state = ConsumerState.DISCONNECTED
        self._consumer = None
        self._stop = threading.Event()
        self._thread = None
        self._close_lock = threading.Lock()

    def connect(self):
        self.state = ConsumerState.CONNECTING
        consumer = get_consumer(
            self.topic,
            group_id=self.durable_name,
            ack_wait_ms=int(self.ack_wait_seconds * 1000),
        )
        if consumer is None:
            self.state = ConsumerState.DISCONNECTED
            raise StartupConnectionError(
                f"Could not subscribe to topic '{self.topic}' as '{self.durable_name}'"
            )
        self._consumer = consumer
        self.state = ConsumerState.SUBSCRIBED
        logger.info(
            f"Subscribed to topic '{self.topic}' with durable name '{self.durable_name}'"
        )

    def handle_message(self, message):
        """Обрабатывает одно сообщение. Возвращает True, если оно подтверждено."""
        try:
            order = parse_order(message.value)
        except MalformedMessage as e:
            logger.warning(
                f"Dropping malformed message at {message.topic}[{message.partition}]"
                f"@{message.offset}: {e} {e.errors}"
            )
            self._ack(message)
            return True

        try:
            self.store.save(order)
        except PersistenceError as e:
            logger.error(
                f"Order {order.order_uid} not persisted, leaving message "
                f"{message.topic}[{message.partition}]@{message.offset} "
                f"for redelivery: {e}"
            )
            return False

        self.cache.upsert(order)
        self._ack(message)
        logger.info(f"Order {order.order_uid} processed")
        return True

    def _ack(self, message):
        tp = TopicPartition(message.topic, message.partition)
        self._consumer.commit({tp: OffsetAndMetadata(message.offset + 1, "", -1)})

    def _rewind(self, message):
        tp = TopicPartition(message.topic, message.partition)
        self._consumer.seek(tp, message.offset)

    def poll_once(self):
        batch = self._consumer.poll(timeout_ms=self.poll_timeout_ms)
        for messages in batch.values():
            for message in messages:
                if self._stop.is_set():
                    # Не начатые сообщения будут доставлены после рестарта.
                    self._rewind(message)
                    break
                # Соединение с БД могло умереть между сообщениями.
                close_old_connections()
                try:
                    acked = self.handle_message(message)
                except KafkaError as e:
                    logger.error(
                        f"Failed to acknowledge {message.topic}[{message.partition}]"
                        f"@{message.offset}: {e}"
                    )
                    acked = False
                except Exception:
                    logger.exception(
                        f"Unexpected error handling {message.topic}[{message.partition}]"
                        f"@{message.offset}"
                    )
                    acked = False
                if not acked:
                    # Остаток партиции придёт заново вместе с этим сообщением.
                    self._rewind(message)
                    self._stop.wait(self.redelivery_delay)
                    break

    def run(self, stop_event=None):
        if stop_event is not None:
            self._stop = stop_event
        if self._consumer is None:
            self.connect()
        try:
            while not self._stop.is_set():
                try:
                    self.poll_once()
                except KafkaError as e:
                    logger.error(f"Kafka error in consume loop: {e}")
                    self._stop.wait(self.redelivery_delay)
            self.state = ConsumerState.DRAINING
        finally:
            self.close()

    def close(self):
        with self._close_lock:
            if self.state is ConsumerState.CLOSED:
                return
            if self._consumer is not None:
                try:
                    self._consumer.unsubscribe()
                finally:
                    self._consumer.close()
            self.state = ConsumerState.CLOSED
            logger.info("Kafka consumer closed")

    def start(self, stop_event=None):
        """Запускает цикл чтения в отдельном потоке."""
        if stop_event is not None:
            self._stop = stop_event
        self._thread = threading.Thread(
            target=self._run_in_thread, name="order-consumer", daemon=True
        )
        self._thread.start()
        return self._thread

    def _run_in_thread(self):
        try:
            self.run()
        except Exception:
            logger.exception("Kafka consumer thread crashed")
            raise
        finally:
            connection.close()

    def stop(self, timeout=None):
        """Останавливает чтение; текущее сообщение дообрабатывается."""
        if self.state is ConsumerState.SUBSCRIBED:
            self.state = ConsumerState.DRAINING
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"Kafka consumer did not stop within {timeout}s")
                return False
        elif self.state is not ConsumerState.CLOSED:
            self.close()
        return True
