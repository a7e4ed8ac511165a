"""
Агрегат заказа в том виде, в котором он ходит по сервису.

Типы не зависят от ORM: консьюмер строит их из сообщения, хранилище
раскладывает по таблицам, кэш держит как есть. Экземпляры неизменяемые,
поэтому один и тот же объект из кэша можно отдавать разным потокам.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class Delivery:
    name: Optional[str] = None
    phone: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Payment:
    transaction: Optional[str] = None
    request_id: Optional[str] = None
    currency: Optional[str] = None
    provider: Optional[str] = None
    amount: Optional[int] = None
    payment_dt: Optional[int] = None  # unix-время в секундах
    bank: Optional[str] = None
    delivery_cost: Optional[int] = None
    goods_total: Optional[int] = None
    custom_fee: Optional[int] = None


@dataclass(frozen=True)
class Item:
    chrt_id: Optional[int] = None
    track_number: Optional[str] = None
    price: Optional[int] = None
    rid: Optional[str] = None
    name: Optional[str] = None
    sale: Optional[int] = None
    size: Optional[str] = None
    total_price: Optional[int] = None
    nm_id: Optional[int] = None
    brand: Optional[str] = None
    status: Optional[int] = None


@dataclass(frozen=True)
class Order:
    """Корень агрегата, идентифицируется по ``order_uid``."""

    order_uid: str
    date_created: datetime
    track_number: Optional[str] = None
    entry: Optional[str] = None
    delivery: Optional[Delivery] = None
    payment: Optional[Payment] = None
    items: Tuple[Item, ...] = field(default_factory=tuple)
    locale: Optional[str] = None
    internal_signature: Optional[str] = None
    customer_id: Optional[str] = None
    delivery_service: Optional[str] = None
    shardkey: Optional[str] = None
    sm_id: Optional[int] = None
    oof_shard: Optional[str] = None

    def __str__(self):
        return f"Order {self.order_uid} ({len(self.items)} items)"
