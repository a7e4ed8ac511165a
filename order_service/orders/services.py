import logging

from orders.exceptions import OrderNotFound

logger = logging.getLogger(__name__)


class OrderService:
    """Чтение заказов: сначала кэш, при промахе БД с дозаполнением кэша.

    Административная запись идёт в БД, и только после коммита в кэш.
    """

    def __init__(self, cache, store):
        self.cache = cache
        self.store = store

    def get_by_uid(self, order_uid):
        order = self.cache.get(order_uid)
        if order is not None:
            return order

        # Параллельные промахи по одному id идут в БД каждый сам по себе.
        order = self.store.get(order_uid)
        if order is None:
            logger.debug(f"Order {order_uid} not found")
            raise OrderNotFound(order_uid)

        self.cache.upsert(order)
        logger.info(f"Order {order_uid} backfilled into cache")
        return order

    def list_ids(self):
        return sorted(self.cache.all_ids())

    def save(self, order):
        self.store.save(order)
        self.cache.upsert(order)
        return order

    def update(self, order):
        if self.store.get(order.order_uid) is None:
            raise OrderNotFound(order.order_uid)
        return self.save(order)

    def delete(self, order_uid):
        deleted = self.store.delete(order_uid)
        self.cache.delete(order_uid)
        if not deleted:
            raise OrderNotFound(order_uid)
