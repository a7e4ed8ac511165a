import logging
import random
import uuid

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from kafka.errors import KafkaError

from orders.kafka_client.client import get_producer

logger = logging.getLogger(__name__)


def _token(prefix=""):
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def generate_order_payload():
    now = timezone.now()
    track_number = _token("WB").upper()
    price = random.randint(100, 10000)
    sale = random.randint(0, 90)
    total_price = price * (100 - sale) // 100
    delivery_cost = random.randint(100, 1500)
    return {
        "order_uid": uuid.uuid4().hex,
        "track_number": track_number,
        "entry": "WBIL",
        "delivery": {
            "name": f"Customer {_token()}",
            "phone": f"+7900{random.randint(1000000, 9999999)}",
            "zip": str(random.randint(100000, 999999)),
            "city": random.choice(["Moscow", "Kazan", "Novosibirsk", "Tver"]),
            "address": f"Street {random.randint(1, 200)}",
            "region": "Central",
            "email": f"{_token()}@example.com",
        },
        "payment": {
            "transaction": _token(),
            "request_id": "",
            "currency": "RUB",
            "provider": "wbpay",
            "amount": total_price + delivery_cost,
            "payment_dt": int(now.timestamp()),
            "bank": random.choice(["alpha", "sber", "tinkoff"]),
            "delivery_cost": delivery_cost,
            "goods_total": total_price,
            "custom_fee": 0,
        },
        "items": [
            {
                "chrt_id": random.randint(1000000, 9999999),
                "track_number": track_number,
                "price": price,
                "rid": _token(),
                "name": random.choice(["Mascaras", "Sneakers", "Backpack"]),
                "sale": sale,
                "size": "0",
                "total_price": total_price,
                "nm_id": random.randint(1000000, 9999999),
                "brand": f"Brand {_token()}",
                "status": 202,
            }
        ],
        "locale": "en",
        "internal_signature": "",
        "customer_id": _token("customer-"),
        "delivery_service": "meest",
        "shardkey": str(random.randint(1, 10)),
        "sm_id": random.randint(1, 100),
        "date_created": now.isoformat().replace("+00:00", "Z"),
        "oof_shard": "1",
    }


class Command(BaseCommand):
    help = "Publishes randomly generated orders to the orders topic"

    def add_arguments(self, parser):
        parser.add_argument("--count", type=int, default=20)
        parser.add_argument("--topic", default=settings.ORDERS_TOPIC)

    def handle(self, *args, **options):
        producer = get_producer()
        if not producer:
            raise CommandError("Could not get Kafka producer.")

        topic = options["topic"]
        try:
            for _ in range(options["count"]):
                payload = generate_order_payload()
                producer.send(topic, key=payload["order_uid"], value=payload)
                logger.info(f"Order {payload['order_uid']} published to '{topic}'")
            producer.flush()  # Отправляем и ждём подтверждения
        except KafkaError as e:
            raise CommandError(f"Failed to publish orders: {e}")
        finally:
            producer.close()

        self.stdout.write(
            self.style.SUCCESS(f"Published {options['count']} orders to '{topic}'.")
        )
