"""Repository layer for persisting and reading orders.

Checkout persists new orders through ``OrderRepository.create`` and the read
endpoints go through ``get``, ``page_for`` and ``to_read_dto`` so views never
shape ORM rows themselves.
"""

import uuid
from datetime import datetime
from typing import Iterable, Optional

from django.core.paginator import Paginator
from django.db import transaction

from .domain import OrderStatus, PaymentMethod
from .errors import NotFoundError
from .models import OrderLine, OrderModel
from .schemas import NoteOut, OrderLineOut, OrderReadDTO, StatusEventOut
from .state import record_event


class PricedLine:
    """Order line ready to persist: references plus the name and price charged."""

    __slots__ = ("product_id", "variant_id", "name", "unit_price_cents", "quantity")

    def __init__(self, product_id, variant_id, name: str, unit_price_cents: int, quantity: int):
        self.product_id = product_id
        self.variant_id = variant_id
        self.name = name
        self.unit_price_cents = unit_price_cents
        self.quantity = quantity


class OrderRepository:
    """Repository for ``OrderModel`` rows and their lines."""

    @transaction.atomic
    def create(
        self,
        order_id: uuid.UUID,
        buyer_id,
        lines: Iterable[PricedLine],
        payment_method: str = PaymentMethod.PIX,
        transaction_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_by: str = "checkout",
        status: str = OrderStatus.PENDING,
        **extra,
    ) -> OrderModel:
        """Persist an order with its lines and the initial history entry.

        Args:
            order_id: Id chosen before the payment was opened; it is also the
                payment's external reference.
            buyer_id: Owning account.
            lines: Priced lines.
            payment_method: Method the payment was opened with.
            transaction_id: Provider payment id.
            expires_at: End of the payment window.
            created_by: Actor recorded in the first history entry.
            status: Initial status; only the importer passes anything else.
            **extra: Other ``OrderModel`` fields (used by the importer).

        Returns:
            OrderModel: The created order.
        """
        lines = list(lines)
        total = sum(l.unit_price_cents * l.quantity for l in lines)
        obj = OrderModel(
            id=order_id,
            buyer_id=buyer_id,
            status=status,
            payment_method=payment_method,
            transaction_id=transaction_id,
            total_cents=extra.pop("total_cents", None) or total,
            expires_at=expires_at,
            **extra,
        )
        obj.save()
        OrderLine.objects.bulk_create(
            [
                OrderLine(
                    order=obj,
                    product_id=l.product_id,
                    variant_id=l.variant_id,
                    name=l.name,
                    unit_price_cents=l.unit_price_cents,
                    quantity=l.quantity,
                )
                for l in lines
            ]
        )
        record_event(obj.pk, status, created_by, "order created")
        return obj

    def get(self, order_id) -> OrderModel:
        order = (
            OrderModel.objects.filter(pk=order_id)
            .prefetch_related("lines", "history", "notes")
            .first()
        )
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        return order

    def page_for(self, buyer_id, page: int = 1, page_size: int = 20):
        """One page of orders, newest first; ``buyer_id=None`` lists every order."""
        qs = OrderModel.objects.prefetch_related("lines").order_by("-created_at", "-internal_id")
        if buyer_id is not None:
            qs = qs.filter(buyer_id=buyer_id)
        paginator = Paginator(qs, page_size)
        return paginator, paginator.get_page(page)

    @staticmethod
    def to_read_dto(order: OrderModel, detail: bool = False) -> OrderReadDTO:
        lines = [
            OrderLineOut(
                id=l.pk,
                product_id=str(l.product_id),
                variant_id=str(l.variant_id) if l.variant_id else None,
                name=l.name,
                unit_price_cents=l.unit_price_cents,
                quantity=l.quantity,
                delivered=l.delivered,
            )
            for l in order.lines.all()
        ]
        dto = OrderReadDTO(
            id=str(order.pk),
            buyer_id=str(order.buyer_id),
            status=order.status,
            payment_method=order.payment_method,
            transaction_id=order.transaction_id,
            total_cents=order.total_cents,
            product_assigned=order.product_assigned,
            fulfillment_state=order.fulfillment_state,
            expires_at=order.expires_at,
            paid_at=order.paid_at,
            created_at=order.created_at,
            lines=lines,
        )
        if detail:
            dto.history = [
                StatusEventOut(status=e.status, changed_by=e.changed_by, changed_at=e.changed_at, reason=e.reason)
                for e in order.history.all()
            ]
            dto.notes = [NoteOut(content=n.content, added_by=n.added_by, added_at=n.added_at) for n in order.notes.all()]
        return dto
