import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "order_uid",
                    models.CharField(max_length=255, primary_key=True, serialize=False),
                ),
                ("track_number", models.CharField(blank=True, max_length=255, null=True)),
                ("entry", models.CharField(blank=True, max_length=255, null=True)),
                ("locale", models.CharField(blank=True, max_length=32, null=True)),
                (
                    "internal_signature",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                ("customer_id", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "delivery_service",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                ("shardkey", models.CharField(blank=True, max_length=255, null=True)),
                ("sm_id", models.BigIntegerField(blank=True, null=True)),
                ("date_created", models.DateTimeField()),
                ("oof_shard", models.CharField(blank=True, max_length=255, null=True)),
            ],
            options={
                "db_table": "orders",
            },
        ),
        migrations.CreateModel(
            name="Delivery",
            fields=[
                (
                    "order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="delivery",
                        serialize=False,
                        to="orders.order",
                    ),
                ),
                ("name", models.CharField(blank=True, max_length=255, null=True)),
                ("phone", models.CharField(blank=True, max_length=64, null=True)),
                ("zip", models.CharField(blank=True, max_length=64, null=True)),
                ("city", models.CharField(blank=True, max_length=255, null=True)),
                ("address", models.CharField(blank=True, max_length=512, null=True)),
                ("region", models.CharField(blank=True, max_length=255, null=True)),
                ("email", models.CharField(blank=True, max_length=255, null=True)),
            ],
            options={
                "db_table": "deliveries",
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="payment",
                        serialize=False,
                        to="orders.order",
                    ),
                ),
                ("transaction", models.CharField(blank=True, max_length=255, null=True)),
                ("request_id", models.CharField(blank=True, max_length=255, null=True)),
                ("currency", models.CharField(blank=True, max_length=16, null=True)),
                ("provider", models.CharField(blank=True, max_length=255, null=True)),
                ("amount", models.BigIntegerField(blank=True, null=True)),
                ("payment_dt", models.BigIntegerField(blank=True, null=True)),
                ("bank", models.CharField(blank=True, max_length=255, null=True)),
                ("delivery_cost", models.BigIntegerField(blank=True, null=True)),
                ("goods_total", models.BigIntegerField(blank=True, null=True)),
                ("custom_fee", models.BigIntegerField(blank=True, null=True)),
            ],
            options={
                "db_table": "payments",
            },
        ),
        migrations.CreateModel(
            name="Item",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("position", models.PositiveIntegerField()),
                ("chrt_id", models.BigIntegerField(blank=True, null=True)),
                ("track_number", models.CharField(blank=True, max_length=255, null=True)),
                ("price", models.BigIntegerField(blank=True, null=True)),
                ("rid", models.CharField(blank=True, max_length=255, null=True)),
                ("name", models.CharField(blank=True, max_length=255, null=True)),
                ("sale", models.IntegerField(blank=True, null=True)),
                ("size", models.CharField(blank=True, max_length=64, null=True)),
                ("total_price", models.BigIntegerField(blank=True, null=True)),
                ("nm_id", models.BigIntegerField(blank=True, null=True)),
                ("brand", models.CharField(blank=True, max_length=255, null=True)),
                ("status", models.IntegerField(blank=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "db_table": "items",
                "ordering": ["position"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("order", "position"), name="items_order_position_uniq"
                    )
                ],
            },
        ),
    ]
