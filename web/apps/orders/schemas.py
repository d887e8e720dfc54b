"""Pydantic schemas for orders.

Request DTOs for the orders, payment and admin APIs, the read DTO returned
by the order endpoints, and the single decode step for legacy order
documents. Older storefront clients and exported orders use several shapes
for the same reference (``productId`` or ``product``, plain ids or
``{"_id": ...}`` objects, placeholder variants like ``"single"``); they are
normalized here once so nothing past this module sees them.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator

from .domain import PaymentMethod

# Variant placeholders sent for products without variants.
NO_VARIANT = frozenset({"single", "null", "undefined", "none"})


def _ref(value: Any, placeholders: frozenset = frozenset()) -> Optional[str]:
    """Extract an id from a plain value or an ``{"_id": ...}`` object.

    Blank values and any of ``placeholders`` read as no reference.
    """
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in placeholders:
        return None
    return value


class OrderLineIn(BaseModel):
    """One order line reference.

    Attributes:
        product_id: Product id; read from ``productId``, ``product_id`` or
            ``product`` (string or ``{"_id": ...}``).
        variant_id: Variant id, or None for products without variants.
        quantity: Units requested; defaults to 1 when absent.
    """

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: StrictInt = Field(default=1, ge=1)

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        product = next(
            (data[k] for k in ("productId", "product_id", "product") if data.get(k) is not None),
            None,
        )
        variant = next(
            (data[k] for k in ("variantId", "variant_id", "variant") if data.get(k) is not None),
            None,
        )
        quantity = data.get("quantity")
        return {
            "product_id": _ref(product),
            "variant_id": _ref(variant, NO_VARIANT),
            "quantity": 1 if quantity is None else quantity,
        }


class CheckoutIn(BaseModel):
    """Checkout payload: ``orderItems`` (or ``items``) and a payment method."""

    lines: list[OrderLineIn] = Field(default_factory=list, max_length=100)
    payment_method: PaymentMethod = PaymentMethod.PIX

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        lines = data.get("orderItems", data.get("items", data.get("lines", [])))
        method = data.get("paymentMethod", data.get("payment_method")) or PaymentMethod.PIX
        return {"lines": lines or [], "payment_method": str(method).lower()}


class LegacyOrderIn(BaseModel):
    """Exported order document accepted by the import command."""

    id: Optional[uuid.UUID] = None
    buyer_id: uuid.UUID
    lines: list[OrderLineIn] = Field(min_length=1)
    status: str = "pending"
    payment_method: PaymentMethod = PaymentMethod.PIX
    transaction_id: Optional[str] = None
    total_cents: Optional[int] = Field(default=None, ge=0)
    product_assigned: bool = False
    created_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payment = data.get("paymentInfo") or {}
        buyer = data.get("userId", data.get("user", data.get("buyer_id")))
        out = {
            "id": _ref(data.get("_id", data.get("id"))),
            "buyer_id": _ref(buyer),
            "lines": data.get("orderItems", data.get("items", data.get("lines", []))),
            "status": str(payment.get("status", data.get("status", "pending"))).lower(),
            "payment_method": str(payment.get("method", data.get("payment_method", "pix"))).lower(),
            "transaction_id": _ref(payment.get("id", data.get("transaction_id"))),
            "total_cents": data.get("totalCents", data.get("total_cents")),
            "product_assigned": bool(data.get("productAssigned", data.get("product_assigned", False))),
        }
        created = data.get("createdAt", data.get("created_at"))
        if created:
            out["created_at"] = created
        return out


class PaymentCheckIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: uuid.UUID = Field(alias="orderId")
    payment_id: Optional[str] = Field(default=None, alias="paymentId", max_length=128)

    @field_validator("payment_id", mode="before")
    @classmethod
    def coerce_payment_id(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)


class PaymentCheckOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    is_paid: bool = Field(alias="isPaid")
    payment_status: str = Field(alias="paymentStatus")
    order_status: str = Field(alias="orderStatus")
    storefront_status: str = Field(alias="storefrontStatus")


class WebhookData(BaseModel):
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class WebhookIn(BaseModel):
    """Provider notification, e.g. ``{"action": "payment.updated", "data": {"id": "..."}}``."""

    action: str = ""
    type: str = ""
    data: Optional[WebhookData] = None


class AdminStatusIn(BaseModel):
    status: str = Field(min_length=1, max_length=32)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def lower(cls, v: str) -> str:
        return v.strip().lower()


class DeliverItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: int = Field(alias="itemId", ge=1)
    note: Optional[str] = Field(default=None, max_length=2000)


class OrderLineOut(BaseModel):
    id: int
    product_id: str
    variant_id: Optional[str] = None
    name: str
    unit_price_cents: int
    quantity: int
    delivered: bool


class StatusEventOut(BaseModel):
    status: str
    changed_by: str
    changed_at: datetime
    reason: str = ""


class NoteOut(BaseModel):
    content: str
    added_by: str
    added_at: datetime


class OrderReadDTO(BaseModel):
    """Order as returned by the read endpoints."""

    id: str
    buyer_id: str
    status: str
    payment_method: str
    transaction_id: Optional[str] = None
    total_cents: int
    product_assigned: bool
    fulfillment_state: str
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    lines: list[OrderLineOut] = Field(default_factory=list)
    history: Optional[list[StatusEventOut]] = None
    notes: Optional[list[NoteOut]] = None
