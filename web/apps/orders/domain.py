"""Domain vocabulary, result objects and ports for order fulfillment.

This module holds the enumerations shared by the models and services, the
plain dataclasses the services return, the provider status mapping, and the
``PaymentProviderPort`` protocol implemented by the in-process stub and the
HTTP client.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol, List

from django.db.models import TextChoices


# ---- Enums ----
class OrderStatus(TextChoices):
    """Payment status of an order (``paymentInfo.status``)."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"
    EXPIRED = "expired"


class FulfillmentState(TextChoices):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"


class PaymentMethod(TextChoices):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    CARD = "card"


class PaymentOutcome(TextChoices):
    """Payment status reported to the storefront."""

    PAID = "paid"
    CANCELED = "canceled"
    PENDING = "pending"
    EXPIRED = "expired"


# Provider statuses that close the payment without funds.
CANCELED_PROVIDER_STATUSES = frozenset({"cancelled", "canceled", "refunded", "charged_back"})


def map_provider_status(raw: Optional[str]) -> PaymentOutcome:
    """Map the provider's status vocabulary onto ``PaymentOutcome``.

    ``approved`` is the only status that confirms a payment. Everything the
    provider may still move forward (``in_process``, ``rejected`` card
    attempts, ``not_found`` while the payment propagates) stays pending.
    """
    status = (raw or "").strip().lower()
    if status == "approved":
        return PaymentOutcome.PAID
    if status in CANCELED_PROVIDER_STATUSES:
        return PaymentOutcome.CANCELED
    return PaymentOutcome.PENDING


# ---- Result objects ----
@dataclass
class LineAllocation:
    """Outcome of allocating stock for one order line.

    Attributes:
        product_id: Product the items were drawn from.
        variant_id: Variant, or None for products without variants.
        requested: Quantity requested by the line.
        stock_item_ids: Items bound to the buyer by this allocation.
        manual_pending: True when the line is left for staff to deliver.
        visible_stock: Value displayed for the pair after allocation.
        lost_races: Conditional updates that matched zero rows.
    """

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    requested: int
    stock_item_ids: List[uuid.UUID] = field(default_factory=list)
    manual_pending: bool = False
    visible_stock: Optional[int] = None
    lost_races: int = 0


@dataclass
class LineResult:
    line_id: int
    product_id: Optional[uuid.UUID]
    ok: bool
    error_code: Optional[str] = None
    allocation: Optional[LineAllocation] = None

    def as_dict(self) -> dict:
        body = {
            "line_id": self.line_id,
            "product_id": str(self.product_id) if self.product_id else None,
            "ok": self.ok,
        }
        if self.error_code:
            body["error"] = self.error_code
        if self.allocation is not None:
            body["assigned"] = len(self.allocation.stock_item_ids)
            body["manual_pending"] = self.allocation.manual_pending
        return body


@dataclass
class FulfillmentResult:
    """Outcome of one call to the fulfillment orchestrator.

    ``skipped`` means another trigger already owns (or finished) the pass and
    nothing was mutated by this call.
    """

    order_id: uuid.UUID
    skipped: bool = False
    state: FulfillmentState = FulfillmentState.NOT_STARTED
    lines: List[LineResult] = field(default_factory=list)
    assigned_product_ids: List[uuid.UUID] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.lines if r.ok)

    @property
    def product_assigned(self) -> bool:
        return self.state in (FulfillmentState.COMPLETED, FulfillmentState.PARTIALLY_COMPLETED)

    def as_dict(self) -> dict:
        return {
            "order_id": str(self.order_id),
            "skipped": self.skipped,
            "fulfillment_state": self.state.value,
            "lines": [r.as_dict() for r in self.lines],
            "assigned_products": len(self.assigned_product_ids),
        }


@dataclass(frozen=True)
class PaymentCheck:
    """Answer to "is this order paid?" as exposed to the storefront."""

    order_id: str
    is_paid: bool
    payment_status: str
    order_status: str

    @property
    def storefront_status(self) -> str:
        if self.is_paid:
            return "approved"
        if self.payment_status in (PaymentOutcome.EXPIRED, PaymentOutcome.CANCELED):
            return "expired"
        return "pending"

    def as_cache(self) -> dict:
        return {
            "order_id": self.order_id,
            "is_paid": self.is_paid,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
        }


# ---- Ports (DIP) ----
class PaymentProviderPort(Protocol):
    """Port describing the external payment provider."""

    def get_status(self, payment_id: str) -> str:
        """Return the provider's raw status string for a payment.

        Raises:
            UpstreamProviderError: When the provider cannot be reached or
                keeps failing after retries.
        """
        raise NotImplementedError()

    def create_payment(
        self,
        amount_cents: int,
        reference: str,
        method: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Open a payment at the provider and return its id."""
        raise NotImplementedError()
