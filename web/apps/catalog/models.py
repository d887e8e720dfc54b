import uuid
from django.conf import settings
from django.db import models
from django.db.models import Q


class DeliveryType(models.TextChoices):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class Product(models.Model):
    """Sellable product.

    ``stock`` is the visible counter for products without variants. For
    automatic delivery it mirrors the number of unused stock items (NULL
    once empty); for manual delivery it is pinned to the sentinel.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    price_cents = models.PositiveIntegerField(default=0)
    stock = models.IntegerField(null=True, blank=True)
    delivery_type = models.CharField(
        max_length=16, choices=DeliveryType.choices, default=DeliveryType.AUTOMATIC
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"

    def save(self, *args, **kwargs):
        if self.delivery_type == DeliveryType.MANUAL:
            self.stock = settings.MANUAL_STOCK_SENTINEL
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.name


class Variant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="variants")
    name = models.CharField(max_length=200)
    price_cents = models.PositiveIntegerField(default=0)
    stock = models.IntegerField(null=True, blank=True, default=0)
    delivery_type = models.CharField(
        max_length=16, choices=DeliveryType.choices, default=DeliveryType.AUTOMATIC
    )

    class Meta:
        db_table = "product_variants"

    def save(self, *args, **kwargs):
        if self.delivery_type == DeliveryType.MANUAL:
            self.stock = settings.MANUAL_STOCK_SENTINEL
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product_id}/{self.name}"


class StockItem(models.Model):
    """A single uniquely-coded unit, consumable at most once.

    ``variant`` is NULL for products without variants. ``is_used`` and
    ``assigned_to`` always move together; the check constraint rejects any
    write that separates them.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_items")
    variant = models.ForeignKey(
        Variant, on_delete=models.PROTECT, related_name="stock_items", null=True, blank=True
    )
    code = models.CharField(max_length=255, unique=True)
    is_used = models.BooleanField(default=False)
    assigned_to = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="stock_items",
        null=True,
        blank=True,
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "stock_items"
        indexes = [
            models.Index(fields=["product", "variant", "is_used"], name="stock_pair_unused_idx"),
            models.Index(fields=["assigned_to"], name="stock_assigned_to_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(is_used=True, assigned_to__isnull=False)
                | Q(is_used=False, assigned_to__isnull=True),
                name="stock_used_iff_assigned",
            ),
        ]

    def __str__(self) -> str:
        return f"StockItem({self.id})"
