import json
import threading
from datetime import datetime, timezone
from io import StringIO
from unittest.mock import MagicMock, call, patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, InterfaceError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from orders import models
from orders.cache import OrderCache
from orders.consumer import ConsumerState, OrderConsumer
from orders.domain import Order
from orders.exceptions import (
    MalformedMessage,
    OrderNotFound,
    PersistenceError,
    StartupConnectionError,
)
from orders.locks import ReadWriteLock
from orders.management.commands.publish_orders import generate_order_payload
from orders.management.commands.run_order_service import Command as RunServiceCommand
from orders.serializers import build_order, order_to_dict, parse_order
from orders.services import OrderService
from orders.store import OrderStore


def make_payload(order_uid="b563feb7b2b84b6test", **overrides):
    payload = {
        "order_uid": order_uid,
        "track_number": "WBILMTESTTRACK",
        "entry": "WBIL",
        "delivery": {
            "name": "Test Testov",
            "phone": "+9720000000",
            "zip": "2639809",
            "city": "Kiryat Mozkin",
            "address": "Ploshad Mira 15",
            "region": "Kraiot",
            "email": "test@gmail.com",
        },
        "payment": {
            "transaction": order_uid,
            "request_id": "",
            "currency": "USD",
            "provider": "wbpay",
            "amount": 1817,
            "payment_dt": 1637907727,
            "bank": "alpha",
            "delivery_cost": 1500,
            "goods_total": 317,
            "custom_fee": 0,
        },
        "items": [
            {
                "chrt_id": 9934930,
                "track_number": "WBILMTESTTRACK",
                "price": 453,
                "rid": "ab4219087a764ae0btest",
                "name": "Mascaras",
                "sale": 30,
                "size": "0",
                "total_price": 317,
                "nm_id": 2389212,
                "brand": "Vivienne Sabo",
                "status": 202,
            },
            {
                "chrt_id": 9934931,
                "track_number": "WBILMTESTTRACK",
                "price": 120,
                "rid": "ab4219087a764ae0btest2",
                "name": "Brush",
                "sale": 0,
                "size": "0",
                "total_price": 120,
                "nm_id": 2389213,
                "brand": "Vivienne Sabo",
                "status": 202,
            },
        ],
        "locale": "en",
        "internal_signature": "",
        "customer_id": "test",
        "delivery_service": "meest",
        "shardkey": "9",
        "sm_id": 99,
        "date_created": "2021-11-26T06:22:19Z",
        "oof_shard": "1",
    }
    payload.update(overrides)
    return payload


def make_order(order_uid="b563feb7b2b84b6test", **overrides):
    return build_order(make_payload(order_uid, **overrides))


def create_mock_kafka_message(payload, offset=0, partition=0, topic="orders"):
    """Вспомогательная функция для создания мок-сообщения Kafka."""
    message = MagicMock()
    message.topic = topic
    message.partition = partition
    message.offset = offset
    if isinstance(payload, (bytes, str)):
        message.value = payload if isinstance(payload, bytes) else payload.encode()
    else:
        message.value = json.dumps(payload).encode("utf-8")
    return message


def message_uid(message):
    return json.loads(message.value)["order_uid"]


class OrderSerializerTests(SimpleTestCase):
    """Тесты разбора и валидации входящих сообщений."""

    def test_parses_full_payload(self):
        order = parse_order(json.dumps(make_payload()).encode("utf-8"))

        self.assertEqual(order.order_uid, "b563feb7b2b84b6test")
        self.assertEqual(
            order.date_created, datetime(2021, 11, 26, 6, 22, 19, tzinfo=timezone.utc)
        )
        self.assertEqual(order.delivery.city, "Kiryat Mozkin")
        self.assertEqual(order.payment.amount, 1817)
        self.assertEqual([item.chrt_id for item in order.items], [9934930, 9934931])

    def test_minimal_payload(self):
        """Тест: сценарий A, заказ без доставки, оплаты и товаров."""
        order = parse_order(
            b'{"order_uid":"abc123","date_created":"2024-01-01T00:00:00Z","items":[]}'
        )

        self.assertEqual(order.order_uid, "abc123")
        self.assertIsNone(order.delivery)
        self.assertIsNone(order.payment)
        self.assertEqual(order.items, ())

    def test_items_default_to_empty(self):
        order = build_order({"order_uid": "x1", "date_created": "2024-01-01T00:00:00Z"})
        self.assertEqual(order.items, ())

    def test_missing_order_uid_is_malformed(self):
        payload = make_payload()
        del payload["order_uid"]

        with self.assertRaises(MalformedMessage) as ctx:
            build_order(payload)
        self.assertIn("order_uid", ctx.exception.errors)

    def test_blank_order_uid_is_malformed(self):
        with self.assertRaises(MalformedMessage):
            build_order(make_payload(order_uid="  "))

    def test_missing_date_created_is_malformed(self):
        payload = make_payload()
        del payload["date_created"]

        with self.assertRaises(MalformedMessage) as ctx:
            build_order(payload)
        self.assertIn("date_created", ctx.exception.errors)

    def test_invalid_json_is_malformed(self):
        with self.assertRaises(MalformedMessage):
            parse_order(b"{not json")

    def test_non_utf8_is_malformed(self):
        with self.assertRaises(MalformedMessage):
            parse_order(b"\xff\xfe\x00")

    def test_non_object_is_malformed(self):
        with self.assertRaises(MalformedMessage):
            parse_order(b'["abc123"]')

    def test_number_wider_than_column_is_malformed(self):
        with self.assertRaises(MalformedMessage) as ctx:
            build_order(make_payload(sm_id=10**20))
        self.assertIn("sm_id", ctx.exception.errors)

        payload = make_payload()
        payload["items"][0]["sale"] = 2**31
        with self.assertRaises(MalformedMessage):
            build_order(payload)

    def test_string_longer_than_column_is_malformed(self):
        with self.assertRaises(MalformedMessage) as ctx:
            build_order(make_payload(locale="x" * 40))
        self.assertIn("locale", ctx.exception.errors)

    def test_column_bounds_are_accepted(self):
        order = build_order(make_payload(sm_id=2**63 - 1, locale="x" * 32))

        self.assertEqual(order.sm_id, 2**63 - 1)
        self.assertEqual(order.locale, "x" * 32)

    def test_explicit_empty_and_zero_are_kept(self):
        order = make_order()

        self.assertEqual(order.internal_signature, "")
        self.assertEqual(order.payment.request_id, "")
        self.assertEqual(order.payment.custom_fee, 0)

    def test_representation_omits_absent_fields(self):
        order = build_order({"order_uid": "x1", "date_created": "2024-01-01T00:00:00Z"})

        self.assertEqual(
            order_to_dict(order),
            {"order_uid": "x1", "items": [], "date_created": "2024-01-01T00:00:00Z"},
        )

    def test_representation_round_trips(self):
        payload = make_payload()
        order = build_order(payload)
        self.assertEqual(build_order(order_to_dict(order)), order)
        self.assertEqual(json.loads(json.dumps(order_to_dict(make_order()))), payload)


class ReadWriteLockTests(SimpleTestCase):
    def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        barrier = threading.Barrier(2, timeout=2)
        errors = []

        def reader():
            with lock.reading():
                try:
                    barrier.wait()
                except threading.BrokenBarrierError as e:
                    errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])

    def test_writer_waits_for_reader(self):
        lock = ReadWriteLock()
        acquired = threading.Event()

        def writer():
            with lock.writing():
                acquired.set()

        lock.acquire_read()
        thread = threading.Thread(target=writer)
        thread.start()

        self.assertFalse(acquired.wait(0.1))
        lock.release_read()
        self.assertTrue(acquired.wait(2))
        thread.join()


class OrderCacheTests(SimpleTestCase):
    """Тесты кэша заказов в памяти."""

    def setUp(self):
        self.cache = OrderCache()

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.cache.get("missing-id"))

    def test_upsert_replaces_entry(self):
        self.cache.upsert(make_order("o1", entry="FIRST"))
        self.cache.upsert(make_order("o1", entry="SECOND"))

        self.assertEqual(len(self.cache), 1)
        self.assertEqual(self.cache.get("o1").entry, "SECOND")

    def test_delete(self):
        self.cache.upsert(make_order("o1"))

        self.assertTrue(self.cache.delete("o1"))
        self.assertFalse(self.cache.delete("o1"))
        self.assertNotIn("o1", self.cache)

    def test_list_and_all_ids_are_snapshots(self):
        self.cache.upsert(make_order("o1"))
        ids = self.cache.all_ids()
        orders = self.cache.list()

        self.cache.upsert(make_order("o2"))

        self.assertEqual(ids, ["o1"])
        self.assertEqual([o.order_uid for o in orders], ["o1"])
        self.assertEqual(sorted(self.cache.all_ids()), ["o1", "o2"])

    def test_warmup_propagates_store_errors(self):
        store = MagicMock()
        store.list.side_effect = PersistenceError("db down")

        with self.assertRaises(PersistenceError):
            self.cache.warmup(store)
        self.assertEqual(len(self.cache), 0)

    def test_concurrent_upserts_and_gets(self):
        """Тест: параллельные записи и чтения не теряют данные."""
        template = make_order("template")
        writers, readers, per_writer = 8, 8, 50
        errors = []

        def write(n):
            try:
                for i in range(per_writer):
                    uid = f"w{n}-{i}"
                    self.cache.upsert(
                        Order(order_uid=uid, date_created=template.date_created)
                    )
                    if self.cache.get(uid) is None:
                        errors.append(f"{uid} not visible after upsert")
            except Exception as e:
                errors.append(e)

        def read():
            try:
                for i in range(per_writer):
                    order = self.cache.get(f"w0-{i}")
                    if order is not None and order.order_uid != f"w0-{i}":
                        errors.append(f"wrong order for w0-{i}")
                    self.cache.all_ids()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(writers)]
        threads += [threading.Thread(target=read) for _ in range(readers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(set(self.cache.all_ids())), writers * per_writer)


class OrderStoreTests(TestCase):
    """Тесты записи агрегата заказа в БД."""

    def setUp(self):
        self.store = OrderStore()

    def test_save_and_get_round_trip(self):
        order = make_order()
        self.store.save(order)

        self.assertEqual(self.store.get(order.order_uid), order)

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get("missing-id"))

    def test_save_is_idempotent(self):
        """Тест: повторная запись того же заказа не дублирует строки."""
        order = make_order()
        self.store.save(order)
        self.store.save(order)

        self.assertEqual(models.Order.objects.count(), 1)
        self.assertEqual(models.Delivery.objects.count(), 1)
        self.assertEqual(models.Payment.objects.count(), 1)
        self.assertEqual(models.Item.objects.count(), 2)

    def test_last_write_wins(self):
        self.store.save(make_order())
        updated = make_order(
            entry="UPDATED",
            delivery=None,
            items=[make_payload()["items"][1]],
        )
        self.store.save(updated)

        stored = self.store.get(updated.order_uid)
        self.assertEqual(stored, updated)
        self.assertIsNone(stored.delivery)
        self.assertEqual(models.Delivery.objects.count(), 0)
        self.assertEqual(models.Item.objects.count(), 1)

    def test_items_keep_wire_order(self):
        items = make_payload()["items"]
        order = make_order(items=list(reversed(items)))
        self.store.save(order)

        stored = self.store.get(order.order_uid)
        self.assertEqual([i.chrt_id for i in stored.items], [9934931, 9934930])

    def test_failed_save_rolls_back_whole_aggregate(self):
        """Тест: ошибка при записи товаров откатывает всю транзакцию."""
        with patch.object(
            models.Item.objects, "bulk_create", side_effect=DatabaseError("boom")
        ):
            with self.assertRaises(PersistenceError):
                self.store.save(make_order())

        self.assertFalse(models.Order.objects.exists())
        self.assertFalse(models.Delivery.objects.exists())
        self.assertFalse(models.Payment.objects.exists())

    def test_list(self):
        self.store.save(make_order("o2"))
        self.store.save(make_order("o1"))

        self.assertEqual([o.order_uid for o in self.store.list()], ["o1", "o2"])

    def test_delete_removes_child_rows(self):
        self.store.save(make_order())

        self.assertTrue(self.store.delete("b563feb7b2b84b6test"))
        self.assertFalse(self.store.delete("b563feb7b2b84b6test"))
        self.assertFalse(models.Item.objects.exists())
        self.assertFalse(models.Delivery.objects.exists())

    def test_save_wraps_lost_connection(self):
        """Тест: обрыв соединения с БД тоже превращается в PersistenceError."""
        with patch.object(
            models.Item.objects,
            "bulk_create",
            side_effect=InterfaceError("connection already closed"),
        ):
            with self.assertRaises(PersistenceError):
                self.store.save(make_order())

        self.assertFalse(models.Order.objects.exists())

    def test_get_wraps_database_errors(self):
        with patch.object(OrderStore, "_queryset", side_effect=DatabaseError("down")):
            with self.assertRaises(PersistenceError):
                self.store.get("o1")

    def test_ping(self):
        self.store.ping()


class CacheWarmupTests(TestCase):
    def test_warmup_loads_every_persisted_order(self):
        store = OrderStore()
        uids = [f"order-{i}" for i in range(5)]
        for uid in uids:
            store.save(make_order(uid))

        cache = OrderCache()
        loaded = cache.warmup(store)

        self.assertEqual(loaded, 5)
        self.assertEqual(sorted(cache.all_ids()), uids)
        self.assertEqual(cache.get("order-3"), store.get("order-3"))


class OrderServiceTests(TestCase):
    """Тесты чтения заказа: кэш, затем БД с дозаполнением кэша."""

    def setUp(self):
        self.cache = OrderCache()
        self.store = OrderStore()
        self.service = OrderService(self.cache, self.store)

    def test_cache_hit_does_not_touch_store(self):
        order = make_order()
        self.cache.upsert(order)

        with patch.object(self.store, "get") as store_get:
            self.assertEqual(self.service.get_by_uid(order.order_uid), order)
        store_get.assert_not_called()

    def test_cache_miss_backfills(self):
        """Тест: после промаха кэша второй запрос не обращается к БД."""
        order = make_order()
        self.store.save(order)

        with patch.object(self.store, "get", wraps=self.store.get) as store_get:
            self.assertEqual(self.service.get_by_uid(order.order_uid), order)
            self.assertEqual(self.service.get_by_uid(order.order_uid), order)

        self.assertEqual(store_get.call_count, 1)
        self.assertIn(order.order_uid, self.cache)

    def test_missing_order_raises_not_found(self):
        """Тест: сценарий B."""
        with self.assertRaises(OrderNotFound):
            self.service.get_by_uid("missing-id")
        self.assertNotIn("missing-id", self.cache)

    def test_save_writes_store_then_cache(self):
        order = make_order()
        self.service.save(order)

        self.assertEqual(self.store.get(order.order_uid), order)
        self.assertEqual(self.cache.get(order.order_uid), order)

    def test_failed_save_leaves_cache_untouched(self):
        with patch.object(self.store, "save", side_effect=PersistenceError("down")):
            with self.assertRaises(PersistenceError):
                self.service.save(make_order())
        self.assertEqual(len(self.cache), 0)

    def test_update_requires_existing_order(self):
        with self.assertRaises(OrderNotFound):
            self.service.update(make_order())

        self.service.save(make_order())
        updated = self.service.update(make_order(entry="NEW"))
        self.assertEqual(self.service.get_by_uid(updated.order_uid).entry, "NEW")

    def test_delete_removes_from_store_and_cache(self):
        order = make_order()
        self.service.save(order)
        self.service.delete(order.order_uid)

        self.assertNotIn(order.order_uid, self.cache)
        self.assertIsNone(self.store.get(order.order_uid))
        with self.assertRaises(OrderNotFound):
            self.service.delete(order.order_uid)

    def test_direct_store_write_leaves_cache_stale(self):
        self.service.save(make_order(entry="OLD"))
        self.store.save(make_order(entry="NEW"))

        self.assertEqual(self.service.get_by_uid("b563feb7b2b84b6test").entry, "OLD")


class OrderConsumerTests(TestCase):
    """Тесты Kafka-консьюмера заказов."""

    def setUp(self):
        self.cache = OrderCache()
        self.store = OrderStore()
        self.kafka_consumer = MagicMock()
        patcher = patch("orders.consumer.get_consumer", return_value=self.kafka_consumer)
        self.mock_get_consumer = patcher.start()
        self.addCleanup(patcher.stop)
        # Внутри транзакции теста закрывать соединение нельзя.
        patcher = patch("orders.consumer.close_old_connections")
        self.mock_close_old_connections = patcher.start()
        self.addCleanup(patcher.stop)
        self.consumer = OrderConsumer(
            self.store,
            self.cache,
            topic="orders",
            durable_name="order-cache-durable",
            ack_wait_seconds=30,
            redelivery_delay=0,
        )
        self.consumer.connect()

    def assert_acked(self, message):
        self.kafka_consumer.commit.assert_called_once()
        offsets = self.kafka_consumer.commit.call_args[0][0]
        ((tp, meta),) = offsets.items()
        self.assertEqual((tp.topic, tp.partition), (message.topic, message.partition))
        self.assertEqual(meta.offset, message.offset + 1)

    def test_connect_uses_durable_name_and_manual_ack(self):
        self.mock_get_consumer.assert_called_once_with(
            "orders", group_id="order-cache-durable", ack_wait_ms=30000
        )
        self.assertEqual(self.consumer.state, ConsumerState.SUBSCRIBED)

    def test_connect_failure_is_fatal(self):
        self.mock_get_consumer.return_value = None
        consumer = OrderConsumer(self.store, self.cache, "orders", "durable")

        with self.assertRaises(StartupConnectionError):
            consumer.connect()
        self.assertEqual(consumer.state, ConsumerState.DISCONNECTED)

    def test_scenario_a_persists_caches_and_acks(self):
        message = create_mock_kafka_message(
            {"order_uid": "abc123", "date_created": "2024-01-01T00:00:00Z", "items": []},
            offset=7,
        )

        self.assertTrue(self.consumer.handle_message(message))

        self.assertTrue(models.Order.objects.filter(pk="abc123").exists())
        service = OrderService(self.cache, self.store)
        self.assertEqual(service.get_by_uid("abc123").order_uid, "abc123")
        self.assert_acked(message)

    def test_round_trip_through_store(self):
        payload = make_payload()
        self.consumer.handle_message(create_mock_kafka_message(payload))

        service = OrderService(OrderCache(), self.store)
        self.assertEqual(service.get_by_uid(payload["order_uid"]), build_order(payload))
        self.assertEqual(self.cache.get(payload["order_uid"]), build_order(payload))

    def test_scenario_c_missing_uid_is_acked_and_dropped(self):
        """Тест: сообщение без order_uid подтверждается и ничего не пишет в БД."""
        payload = make_payload()
        del payload["order_uid"]
        message = create_mock_kafka_message(payload, offset=3)

        with self.assertLogs("orders.consumer", level="WARNING"):
            self.assertTrue(self.consumer.handle_message(message))

        self.assertFalse(models.Order.objects.exists())
        self.assertEqual(len(self.cache), 0)
        self.assert_acked(message)

    def test_invalid_json_is_acked_and_dropped(self):
        message = create_mock_kafka_message(b"not json at all")

        self.assertTrue(self.consumer.handle_message(message))

        self.assertFalse(models.Order.objects.exists())
        self.assert_acked(message)

    def test_save_failure_is_not_acked(self):
        """Тест: при ошибке БД сообщение не подтверждается, кэш не меняется."""
        message = create_mock_kafka_message(make_payload())

        with patch.object(self.store, "save", side_effect=PersistenceError("down")):
            with self.assertLogs("orders.consumer", level="ERROR"):
                self.assertFalse(self.consumer.handle_message(message))

        self.kafka_consumer.commit.assert_not_called()
        self.assertEqual(len(self.cache), 0)

    def test_consumer_is_idempotent(self):
        """Тест: одно и то же сообщение дважды даёт один заказ без дублей товаров."""
        message = create_mock_kafka_message(make_payload())

        self.consumer.handle_message(message)
        self.consumer.handle_message(message)

        self.assertEqual(models.Order.objects.count(), 1)
        self.assertEqual(models.Item.objects.count(), 2)
        self.assertEqual(self.cache.all_ids(), ["b563feb7b2b84b6test"])

    def test_reingestion_updates_cache(self):
        self.consumer.handle_message(create_mock_kafka_message(make_payload()))
        self.consumer.handle_message(
            create_mock_kafka_message(make_payload(entry="LAST"), offset=1)
        )

        self.assertEqual(self.cache.get("b563feb7b2b84b6test").entry, "LAST")
        self.assertEqual(self.store.get("b563feb7b2b84b6test").entry, "LAST")

    def test_poll_rewinds_partition_after_failed_save(self):
        first = create_mock_kafka_message(make_payload("o1"), offset=10)
        second = create_mock_kafka_message(make_payload("o2"), offset=11)
        self.kafka_consumer.poll.return_value = {MagicMock(): [first, second]}

        with patch.object(self.store, "save", side_effect=PersistenceError("down")):
            self.consumer.poll_once()

        self.kafka_consumer.seek.assert_called_once()
        tp, offset = self.kafka_consumer.seek.call_args[0]
        self.assertEqual((tp.topic, tp.partition, offset), ("orders", 0, 10))
        self.kafka_consumer.commit.assert_not_called()

    def test_value_too_large_for_column_is_acked_and_dropped(self):
        message = create_mock_kafka_message(
            {
                "order_uid": "big",
                "date_created": "2024-01-01T00:00:00Z",
                "sm_id": 10**20,
                "items": [],
            },
            offset=4,
        )

        with self.assertLogs("orders.consumer", level="WARNING"):
            self.assertTrue(self.consumer.handle_message(message))

        self.assertFalse(models.Order.objects.exists())
        self.assertNotIn("big", self.cache)
        self.assert_acked(message)

    def test_string_too_long_for_column_is_acked_and_dropped(self):
        message = create_mock_kafka_message(make_payload(locale="x" * 40), offset=5)

        self.assertTrue(self.consumer.handle_message(message))

        self.assertFalse(models.Order.objects.exists())
        self.assert_acked(message)

    def test_lost_db_connection_is_left_for_redelivery(self):
        """Тест: обрыв соединения с БД не подтверждает сообщение."""
        message = create_mock_kafka_message(make_payload())

        with patch.object(
            models.Item.objects,
            "bulk_create",
            side_effect=InterfaceError("connection already closed"),
        ):
            with self.assertLogs("orders.consumer", level="ERROR"):
                self.assertFalse(self.consumer.handle_message(message))

        self.kafka_consumer.commit.assert_not_called()
        self.assertEqual(len(self.cache), 0)

    def test_poll_refreshes_db_connection_before_each_message(self):
        messages = [
            create_mock_kafka_message(make_payload("o1"), offset=0),
            create_mock_kafka_message(make_payload("o2"), offset=1),
        ]
        self.kafka_consumer.poll.return_value = {MagicMock(): messages}

        self.consumer.poll_once()

        self.assertEqual(self.mock_close_old_connections.call_count, 2)
        self.assertEqual(sorted(self.cache.all_ids()), ["o1", "o2"])

    def test_poll_survives_unexpected_error(self):
        """Тест: непредвиденная ошибка не роняет цикл, партиция перематывается."""
        first = create_mock_kafka_message(make_payload("o1"), offset=10)
        second = create_mock_kafka_message(make_payload("o2"), offset=11)
        self.kafka_consumer.poll.return_value = {MagicMock(): [first, second]}

        with patch.object(self.store, "save", side_effect=RuntimeError("boom")):
            with self.assertLogs("orders.consumer", level="ERROR"):
                self.consumer.poll_once()

        tp, offset = self.kafka_consumer.seek.call_args[0]
        self.assertEqual((tp.topic, tp.partition, offset), ("orders", 0, 10))
        self.kafka_consumer.commit.assert_not_called()
        self.assertEqual(len(self.cache), 0)

    def test_run_processes_until_stopped_then_unsubscribes_and_closes(self):
        stop = threading.Event()
        message = create_mock_kafka_message(make_payload())

        def poll(timeout_ms):
            if self.kafka_consumer.poll.call_count == 1:
                return {MagicMock(): [message]}
            stop.set()
            return {}

        self.kafka_consumer.poll.side_effect = poll

        self.consumer.run(stop)

        self.assertIn("b563feb7b2b84b6test", self.cache)
        self.assertEqual(self.consumer.state, ConsumerState.CLOSED)
        calls = [c[0] for c in self.kafka_consumer.method_calls]
        self.assertEqual(calls[-2:], ["unsubscribe", "close"])

    def test_close_is_idempotent(self):
        self.consumer.close()
        self.consumer.close()

        self.kafka_consumer.unsubscribe.assert_called_once()
        self.kafka_consumer.close.assert_called_once()


class ConsumerShutdownTests(SimpleTestCase):
    """Тесты остановки консьюмера в отдельном потоке."""

    @patch("orders.consumer.get_consumer")
    def test_shutdown_waits_for_in_flight_message(self, mock_get_consumer):
        kafka_consumer = MagicMock()
        mock_get_consumer.return_value = kafka_consumer
        message = create_mock_kafka_message(make_payload())
        kafka_consumer.poll.side_effect = lambda timeout_ms: (
            {MagicMock(): [message]} if kafka_consumer.poll.call_count == 1 else {}
        )

        started = threading.Event()
        release = threading.Event()
        store = MagicMock()

        def slow_save(order):
            started.set()
            release.wait(5)

        store.save.side_effect = slow_save
        cache = OrderCache()
        consumer = OrderConsumer(store, cache, "orders", "durable", poll_timeout_ms=10)
        consumer.connect()
        consumer.start()
        self.assertTrue(started.wait(5))

        stopper = threading.Thread(target=consumer.stop, kwargs={"timeout": 5})
        stopper.start()
        stopper.join(0.1)

        self.assertTrue(stopper.is_alive())
        kafka_consumer.close.assert_not_called()

        release.set()
        stopper.join(5)

        self.assertFalse(stopper.is_alive())
        self.assertIn(message_uid(message), cache)
        calls = [c[0] for c in kafka_consumer.method_calls]
        self.assertLess(calls.index("commit"), calls.index("unsubscribe"))
        self.assertEqual(calls[-2:], ["unsubscribe", "close"])
        self.assertEqual(consumer.state, ConsumerState.CLOSED)


class OrderAPITests(APITestCase):
    """Тесты REST API чтения заказов."""

    def setUp(self):
        self.cache = OrderCache()
        self.store = OrderStore()
        self.service = OrderService(self.cache, self.store)
        patcher = patch("orders.views.get_order_service", return_value=self.service)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_get_order_success(self):
        payload = make_payload()
        self.store.save(build_order(payload))

        url = reverse("order-detail", kwargs={"order_uid": payload["order_uid"]})
        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json(), payload)
        self.assertIn(payload["order_uid"], self.cache)

    def test_get_order_not_found(self):
        url = reverse("order-detail", kwargs={"order_uid": "missing-id"})
        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertIn("missing-id", response.json()["detail"])

    def test_list_returns_cached_ids(self):
        self.cache.upsert(make_order("o2"))
        self.cache.upsert(make_order("o1"))

        response = self.client.get(reverse("order-list"))

        self.assertEqual(response.json(), {"order_uids": ["o1", "o2"]})

    def test_put_writes_through(self):
        payload = make_payload()
        url = reverse("order-detail", kwargs={"order_uid": payload["order_uid"]})
        response = self.client.put(url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.store.get(payload["order_uid"]), build_order(payload))
        self.assertEqual(self.cache.get(payload["order_uid"]), build_order(payload))

    def test_put_rejects_invalid_order(self):
        payload = make_payload()
        del payload["date_created"]
        url = reverse("order-detail", kwargs={"order_uid": payload["order_uid"]})
        response = self.client.put(url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("date_created", response.json())

    def test_put_rejects_mismatched_id(self):
        url = reverse("order-detail", kwargs={"order_uid": "other"})
        response = self.client.put(url, make_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(models.Order.objects.exists())

    def test_delete(self):
        self.service.save(make_order())
        url = reverse("order-detail", kwargs={"order_uid": "b563feb7b2b84b6test"})

        self.assertEqual(self.client.delete(url).status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(len(self.cache), 0)


class PublishOrdersCommandTests(SimpleTestCase):
    def test_generated_payload_is_valid(self):
        order = build_order(generate_order_payload())
        self.assertEqual(len(order.items), 1)
        self.assertIsNotNone(order.delivery)

    @patch("orders.management.commands.publish_orders.get_producer")
    def test_publishes_requested_number_of_orders(self, mock_get_producer):
        mock_producer = MagicMock()
        mock_get_producer.return_value = mock_producer

        call_command("publish_orders", count=3, topic="orders", stdout=StringIO())

        self.assertEqual(mock_producer.send.call_count, 3)
        args, kwargs = mock_producer.send.call_args
        self.assertEqual(args[0], "orders")
        self.assertEqual(kwargs["key"], kwargs["value"]["order_uid"])
        mock_producer.flush.assert_called_once()
        mock_producer.close.assert_called_once()

    @patch("orders.management.commands.publish_orders.get_producer", return_value=None)
    def test_fails_without_producer(self, mock_get_producer):
        with self.assertRaises(CommandError):
            call_command("publish_orders", count=1, stdout=StringIO())


class RunOrderServiceCommandTests(TestCase):
    @patch("orders.management.commands.run_order_service.OrderConsumer")
    def test_broker_unavailable_aborts_startup(self, mock_consumer_cls):
        mock_consumer_cls.return_value.connect.side_effect = StartupConnectionError(
            "no brokers"
        )

        with self.assertRaises(CommandError):
            call_command("run_order_service", skip_migrate=True, stdout=StringIO())
        mock_consumer_cls.return_value.start.assert_not_called()

    def test_database_unavailable_aborts_startup(self):
        from django.apps import apps

        store = apps.get_app_config("orders").store
        with patch.object(
            store, "ping", side_effect=StartupConnectionError("db down")
        ):
            with self.assertRaises(CommandError):
                call_command("run_order_service", skip_migrate=True, stdout=StringIO())


class RunOrderServiceShutdownTests(SimpleTestCase):
    def test_shutdown_stops_consumer_before_http(self):
        parent = MagicMock()
        parent.consumer.stop.return_value = True

        command = RunServiceCommand(stdout=StringIO(), stderr=StringIO())
        command.shutdown(parent.consumer, parent.httpd, parent.thread)

        self.assertEqual(
            parent.mock_calls[:3],
            [
                call.consumer.stop(timeout=10.0),
                call.httpd.shutdown(),
                call.httpd.server_close(),
            ],
        )
