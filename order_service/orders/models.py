from django.db import models


class Order(models.Model):
    order_uid = models.CharField(max_length=255, primary_key=True)
    track_number = models.CharField(max_length=255, null=True, blank=True)
    entry = models.CharField(max_length=255, null=True, blank=True)
    locale = models.CharField(max_length=32, null=True, blank=True)
    internal_signature = models.CharField(max_length=255, null=True, blank=True)
    customer_id = models.CharField(max_length=255, null=True, blank=True)
    delivery_service = models.CharField(max_length=255, null=True, blank=True)
    shardkey = models.CharField(max_length=255, null=True, blank=True)
    sm_id = models.BigIntegerField(null=True, blank=True)
    date_created = models.DateTimeField()
    oof_shard = models.CharField(max_length=255, null=True, blank=True)

    # Колонки, перезаписываемые при повторном приходе того же order_uid.
    UPSERT_FIELDS = [
        "track_number",
        "entry",
        "locale",
        "internal_signature",
        "customer_id",
        "delivery_service",
        "shardkey",
        "sm_id",
        "date_created",
        "oof_shard",
    ]

    class Meta:
        db_table = "orders"

    def __str__(self):
        return f"Order {self.order_uid}"


class Delivery(models.Model):
    order = models.OneToOneField(
        Order, primary_key=True, on_delete=models.CASCADE, related_name="delivery"
    )
    name = models.CharField(max_length=255, null=True, blank=True)
    phone = models.CharField(max_length=64, null=True, blank=True)
    zip = models.CharField(max_length=64, null=True, blank=True)
    city = models.CharField(max_length=255, null=True, blank=True)
    address = models.CharField(max_length=512, null=True, blank=True)
    region = models.CharField(max_length=255, null=True, blank=True)
    email = models.CharField(max_length=255, null=True, blank=True)

    class Meta:
        db_table = "deliveries"


class Payment(models.Model):
    order = models.OneToOneField(
        Order, primary_key=True, on_delete=models.CASCADE, related_name="payment"
    )
    transaction = models.CharField(max_length=255, null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    currency = models.CharField(max_length=16, null=True, blank=True)
    provider = models.CharField(max_length=255, null=True, blank=True)
    amount = models.BigIntegerField(null=True, blank=True)
    payment_dt = models.BigIntegerField(null=True, blank=True)
    bank = models.CharField(max_length=255, null=True, blank=True)
    delivery_cost = models.BigIntegerField(null=True, blank=True)
    goods_total = models.BigIntegerField(null=True, blank=True)
    custom_fee = models.BigIntegerField(null=True, blank=True)

    class Meta:
        db_table = "payments"


class Item(models.Model):
    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField()
    chrt_id = models.BigIntegerField(null=True, blank=True)
    track_number = models.CharField(max_length=255, null=True, blank=True)
    price = models.BigIntegerField(null=True, blank=True)
    rid = models.CharField(max_length=255, null=True, blank=True)
    name = models.CharField(max_length=255, null=True, blank=True)
    sale = models.IntegerField(null=True, blank=True)
    size = models.CharField(max_length=64, null=True, blank=True)
    total_price = models.BigIntegerField(null=True, blank=True)
    nm_id = models.BigIntegerField(null=True, blank=True)
    brand = models.CharField(max_length=255, null=True, blank=True)
    status = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "items"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "position"], name="items_order_position_uniq"
            )
        ]

    def __str__(self):
        return f"Item {self.position} of order {self.order_id}"
