import uuid
from django.db import models, transaction
from django.db.models import Q

from .domain import FulfillmentState, OrderStatus, PaymentMethod


class OrderModel(models.Model):
    # UUID PK exposed through the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    buyer = models.ForeignKey("accounts.Account", on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.PIX)
    transaction_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    total_cents = models.PositiveIntegerField(default=0)

    product_assigned = models.BooleanField(default=False)
    fulfillment_state = models.CharField(
        max_length=24, choices=FulfillmentState.choices, default=FulfillmentState.NOT_STARTED
    )

    expires_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [
            models.Index(fields=["status", "expires_at"], name="orders_status_expiry_idx"),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1

        super().save(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        if self.status == OrderStatus.PAID:
            return self.fulfillment_state == FulfillmentState.COMPLETED
        return self.status != OrderStatus.PENDING


class OrderLine(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="order_lines")
    variant = models.ForeignKey(
        "catalog.Variant", on_delete=models.PROTECT, related_name="order_lines", null=True, blank=True
    )
    name = models.CharField(max_length=200)
    unit_price_cents = models.PositiveIntegerField(default=0)
    quantity = models.PositiveIntegerField(default=1)
    # Only meaningful for manual-delivery lines
    delivered = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "order_lines"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gte=1), name="order_line_quantity_positive"),
        ]


class AppendOnlyModel(models.Model):
    """Rows that may be inserted but never rewritten or removed."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise RuntimeError(f"{type(self).__name__} rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError(f"{type(self).__name__} rows are append-only")


class OrderStatusEvent(AppendOnlyModel):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="history")
    status = models.CharField(max_length=32)
    changed_by = models.CharField(max_length=200)
    changed_at = models.DateTimeField(auto_now_add=True)
    reason = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["changed_at", "id"]


class OrderNote(AppendOnlyModel):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="notes")
    content = models.TextField()
    added_by = models.CharField(max_length=200)
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_notes"
        ordering = ["added_at", "id"]


class IdempotencyKey(models.Model):
    """Stored checkout response for an ``Idempotency-Key``, scoped per buyer."""

    scope = models.CharField(max_length=64)
    key = models.CharField(max_length=128)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict, blank=True)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
        constraints = [
            models.UniqueConstraint(fields=["scope", "key"], name="idempotency_scope_key_uniq"),
        ]
