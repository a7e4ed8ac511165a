import logging
from dataclasses import asdict, fields

from django.core.exceptions import ObjectDoesNotExist
from django.db import Error, connection, transaction

from orders import domain, models
from orders.exceptions import PersistenceError, StartupConnectionError

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = [
    f.name for f in fields(domain.Order) if f.name not in ("delivery", "payment", "items")
]
_DELIVERY_COLUMNS = [f.name for f in fields(domain.Delivery)]
_PAYMENT_COLUMNS = [f.name for f in fields(domain.Payment)]
_ITEM_COLUMNS = [f.name for f in fields(domain.Item)]


def _related_or_none(row, name):
    try:
        return getattr(row, name)
    except ObjectDoesNotExist:
        return None


def _to_domain(row):
    delivery = _related_or_none(row, "delivery")
    payment = _related_or_none(row, "payment")
    return domain.Order(
        delivery=(
            domain.Delivery(**{c: getattr(delivery, c) for c in _DELIVERY_COLUMNS})
            if delivery is not None
            else None
        ),
        payment=(
            domain.Payment(**{c: getattr(payment, c) for c in _PAYMENT_COLUMNS})
            if payment is not None
            else None
        ),
        items=tuple(
            domain.Item(**{c: getattr(item, c) for c in _ITEM_COLUMNS})
            for item in row.items.all()
        ),
        **{c: getattr(row, c) for c in _ORDER_COLUMNS},
    )


class OrderStore:
    """Хранение агрегатов заказа в реляционной БД.

    Ошибки БД пробрасываются как PersistenceError, повторов здесь нет:
    решение о повторе принимает вызывающий код.
    """

    def _queryset(self):
        return models.Order.objects.select_related(
            "delivery", "payment"
        ).prefetch_related("items")

    def save(self, order):
        """Вставляет или заменяет агрегат целиком в одной транзакции."""
        row = models.Order(**{c: getattr(order, c) for c in _ORDER_COLUMNS})
        try:
            with transaction.atomic():
                models.Order.objects.bulk_create(
                    [row],
                    update_conflicts=True,
                    unique_fields=["order_uid"],
                    update_fields=models.Order.UPSERT_FIELDS,
                )

                # Дочерние строки прошлой версии заменяются, а не сливаются.
                models.Delivery.objects.filter(order_id=order.order_uid).delete()
                models.Payment.objects.filter(order_id=order.order_uid).delete()
                models.Item.objects.filter(order_id=order.order_uid).delete()

                if order.delivery is not None:
                    models.Delivery.objects.create(
                        order_id=order.order_uid, **asdict(order.delivery)
                    )
                if order.payment is not None:
                    models.Payment.objects.create(
                        order_id=order.order_uid, **asdict(order.payment)
                    )
                models.Item.objects.bulk_create(
                    [
                        models.Item(
                            order_id=order.order_uid, position=position, **asdict(item)
                        )
                        for position, item in enumerate(order.items)
                    ]
                )
        except Error as e:
            logger.error(f"Failed to save order {order.order_uid}: {e}")
            raise PersistenceError(f"Failed to save order {order.order_uid}") from e

        logger.info(f"Order {order.order_uid} saved with {len(order.items)} items")

    def get(self, order_uid):
        try:
            row = self._queryset().filter(pk=order_uid).first()
        except Error as e:
            raise PersistenceError(f"Failed to load order {order_uid}") from e
        if row is None:
            return None
        return _to_domain(row)

    def list(self):
        try:
            return [_to_domain(row) for row in self._queryset().order_by("order_uid")]
        except Error as e:
            raise PersistenceError("Failed to list orders") from e

    def delete(self, order_uid):
        try:
            with transaction.atomic():
                deleted, _ = models.Order.objects.filter(pk=order_uid).delete()
        except Error as e:
            raise PersistenceError(f"Failed to delete order {order_uid}") from e
        if deleted:
            logger.info(f"Order {order_uid} deleted")
        return bool(deleted)

    def ping(self):
        try:
            connection.ensure_connection()
        except Error as e:
            raise StartupConnectionError(f"Database is unreachable: {e}") from e
