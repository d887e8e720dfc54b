import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("catalog", "0001_initial"),
        ("accounts", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="StockItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=255, unique=True)),
                ("is_used", models.BooleanField(default=False)),
                ("assigned_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "assigned_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_items",
                        to="accounts.account",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_items",
                        to="catalog.product",
                    ),
                ),
                (
                    "variant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_items",
                        to="catalog.variant",
                    ),
                ),
            ],
            options={
                "db_table": "stock_items",
                "indexes": [
                    models.Index(fields=["product", "variant", "is_used"], name="stock_pair_unused_idx"),
                    models.Index(fields=["assigned_to"], name="stock_assigned_to_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("is_used", True), ("assigned_to__isnull", False))
                        | models.Q(("is_used", False), ("assigned_to__isnull", True)),
                        name="stock_used_iff_assigned",
                    )
                ],
            },
        ),
    ]
