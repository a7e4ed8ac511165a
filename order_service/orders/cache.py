"""
Кэш заказов в памяти процесса.

Кэш повторяет БД и источником истины не является. Записи не вытесняются:
количество заказов ограничено объёмом бизнеса, а не числом запросов. Запись
в хранилище в обход upsert оставляет в кэше старую копию до повторного
прихода заказа или до прогрева после рестарта.

Словарь защищён одной блокировкой читатель/писатель, под ней выполняется
только операция со словарём, без I/O. При гораздо большем потоке записи
следующий шаг: шардированный словарь.
"""

import logging

from orders.locks import ReadWriteLock

logger = logging.getLogger(__name__)


class OrderCache:
    def __init__(self):
        self._orders = {}
        self._lock = ReadWriteLock()

    def get(self, order_uid):
        with self._lock.reading():
            return self._orders.get(order_uid)

    def upsert(self, order):
        with self._lock.writing():
            self._orders[order.order_uid] = order

    def delete(self, order_uid):
        with self._lock.writing():
            return self._orders.pop(order_uid, None) is not None

    def list(self):
        with self._lock.reading():
            return list(self._orders.values())

    def all_ids(self):
        with self._lock.reading():
            return list(self._orders)

    def warmup(self, store):
        """Загружает в кэш все заказы из БД. Вызывается один раз до приёма трафика."""
        orders = store.list()
        for order in orders:
            self.upsert(order)
        logger.info(f"Cache warmed up with {len(orders)} orders")
        return len(orders)

    def __len__(self):
        with self._lock.reading():
            return len(self._orders)

    def __contains__(self, order_uid):
        with self._lock.reading():
            return order_uid in self._orders
