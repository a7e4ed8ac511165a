import json

from rest_framework import serializers

from orders.domain import Delivery, Item, Order, Payment
from orders.exceptions import MalformedMessage

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1


# Границы совпадают с колонками в models.py: что прошло валидацию, влезает в БД.
def _text(**kwargs):
    kwargs.setdefault("max_length", 255)
    kwargs.setdefault("required", False)
    kwargs.setdefault("allow_null", True)
    kwargs.setdefault("allow_blank", True)
    kwargs.setdefault("trim_whitespace", False)
    return serializers.CharField(**kwargs)


def _number(**kwargs):
    kwargs.setdefault("min_value", INT64_MIN)
    kwargs.setdefault("max_value", INT64_MAX)
    kwargs.setdefault("required", False)
    kwargs.setdefault("allow_null", True)
    return serializers.IntegerField(**kwargs)


class OmitNoneMixin:
    """Не выводит поля со значением None (omitempty, как у продюсеров)."""

    def to_representation(self, instance):
        data = super().to_representation(instance)
        return {key: value for key, value in data.items() if value is not None}


class DeliverySerializer(OmitNoneMixin, serializers.Serializer):
    name = _text()
    phone = _text(max_length=64)
    zip = _text(max_length=64)
    city = _text()
    address = _text(max_length=512)
    region = _text()
    email = _text()


class PaymentSerializer(OmitNoneMixin, serializers.Serializer):
    transaction = _text()
    request_id = _text()
    currency = _text(max_length=16)
    provider = _text()
    amount = _number()
    payment_dt = _number()
    bank = _text()
    delivery_cost = _number()
    goods_total = _number()
    custom_fee = _number()


class ItemSerializer(OmitNoneMixin, serializers.Serializer):
    chrt_id = _number()
    track_number = _text()
    price = _number()
    rid = _text()
    name = _text()
    sale = _number(min_value=INT32_MIN, max_value=INT32_MAX)
    size = _text(max_length=64)
    total_price = _number()
    nm_id = _number()
    brand = _text()
    status = _number(min_value=INT32_MIN, max_value=INT32_MAX)


class OrderSerializer(OmitNoneMixin, serializers.Serializer):
    order_uid = serializers.CharField(max_length=255)
    track_number = _text()
    entry = _text()
    delivery = DeliverySerializer(required=False, allow_null=True)
    payment = PaymentSerializer(required=False, allow_null=True)
    items = ItemSerializer(many=True, required=False)
    locale = _text(max_length=32)
    internal_signature = _text()
    customer_id = _text()
    delivery_service = _text()
    shardkey = _text()
    sm_id = _number()
    date_created = serializers.DateTimeField()
    oof_shard = _text()

    def create(self, validated_data):
        delivery = validated_data.pop("delivery", None)
        payment = validated_data.pop("payment", None)
        items = validated_data.pop("items", [])
        return Order(
            delivery=Delivery(**delivery) if delivery is not None else None,
            payment=Payment(**payment) if payment is not None else None,
            items=tuple(Item(**item) for item in items),
            **validated_data,
        )


def build_order(payload):
    """Валидирует уже декодированный payload и возвращает Order.

    Если это не объект или нет ``order_uid`` / ``date_created``, бросает
    MalformedMessage с ошибками сериализатора.
    """
    if not isinstance(payload, dict):
        raise MalformedMessage(
            f"Order payload must be a JSON object, got {type(payload).__name__}"
        )
    serializer = OrderSerializer(data=payload)
    if not serializer.is_valid():
        raise MalformedMessage("Order payload failed validation", serializer.errors)
    return serializer.save()


def parse_order(raw):
    """Декодирует сырое значение сообщения (bytes или str) в Order."""
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (TypeError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(f"Order payload is not valid JSON: {e}") from e
    return build_order(payload)


def order_to_dict(order):
    return OrderSerializer(order).data
