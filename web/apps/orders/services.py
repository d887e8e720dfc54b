"""Admin order actions and the expiry job."""

import logging
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone

from apps.catalog.models import DeliveryType
from apps.catalog.services import delivery_type_for

from .domain import FulfillmentResult, OrderStatus
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .fulfillment import FulfillmentOrchestrator
from .models import OrderLine, OrderModel
from .state import TransitionResult, add_note, record_event, transition

logger = logging.getLogger("orders.admin")

ITEM_DELIVERED_EVENT = "item_delivered"
EXPIRY_ACTOR = "system:expiry"


def approve_payment(
    order_id,
    actor: str,
    orchestrator: FulfillmentOrchestrator,
    note: Optional[str] = None,
) -> tuple[TransitionResult, FulfillmentResult]:
    """Manually confirm a payment and run fulfillment.

    Approving an order that is already paid is allowed; the transition is a
    no-op and fulfillment is skipped when it already ran.
    """
    res = transition(order_id, OrderStatus.PAID, actor, reason="manual approval", note=note)
    outcome = orchestrator.fulfill(order_id, actor)
    logger.info(
        "payment approved manually",
        extra={"order_id": str(order_id), "changed": res.changed, "skipped": outcome.skipped},
    )
    return res, outcome


def update_status(
    order_id,
    status: str,
    actor: str,
    orchestrator: FulfillmentOrchestrator,
    note: Optional[str] = None,
):
    """Admin status change; ``paid`` goes through the approval path.

    Returns:
        tuple: ``(TransitionResult, FulfillmentResult | None)``.
    """
    if status == OrderStatus.PAID:
        return approve_payment(order_id, actor, orchestrator, note=note)
    if status not in (OrderStatus.FAILED, OrderStatus.CANCELED, OrderStatus.REFUNDED):
        raise ValidationError("INVALID_STATUS")
    return transition(order_id, status, actor, reason="admin update", note=note), None


@transaction.atomic
def mark_line_delivered(order_id, line_id: int, actor: str, note: Optional[str] = None) -> OrderLine:
    """Mark a manual-delivery line as handed over by staff.

    Stock items are never touched. Delivering an already delivered line is a
    no-op.

    Raises:
        NotFoundError: Unknown order or a line of another order.
        InvalidTransitionError: The order is not paid.
        ValidationError: The line is not a manual-delivery line.
    """
    order = OrderModel.objects.filter(pk=order_id).first()
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND")
    if order.status != OrderStatus.PAID:
        raise InvalidTransitionError("ORDER_NOT_PAID")

    line = OrderLine.objects.select_related("product", "variant").filter(pk=line_id, order_id=order.pk).first()
    if line is None:
        raise NotFoundError("ITEM_NOT_FOUND")
    if delivery_type_for(line.product, line.variant) != DeliveryType.MANUAL:
        raise ValidationError("NOT_MANUAL_DELIVERY")

    now = timezone.now()
    updated = OrderLine.objects.filter(pk=line.pk, delivered=False).update(delivered=True, delivered_at=now)
    if updated:
        line.delivered = True
        line.delivered_at = now
        record_event(order.pk, ITEM_DELIVERED_EVENT, actor, line.name)
        if note:
            add_note(order.pk, note, actor)
        logger.info("manual item delivered", extra={"order_id": str(order.pk), "line_id": line.pk})
    return line


def expire_overdue_orders(now: Optional[datetime] = None) -> int:
    """Expire every pending order whose payment window has elapsed.

    Returns:
        int: Number of orders moved to expired.
    """
    now = now or timezone.now()
    overdue = OrderModel.objects.filter(
        status=OrderStatus.PENDING, expires_at__isnull=False, expires_at__lte=now
    ).values_list("pk", flat=True)

    expired = 0
    for order_id in list(overdue):
        try:
            res = transition(order_id, OrderStatus.EXPIRED, EXPIRY_ACTOR, reason="payment window elapsed")
        except InvalidTransitionError:
            # Paid or canceled since the query ran.
            continue
        if res.changed:
            expired += 1
    logger.info("expiry run finished", extra={"expired": expired})
    return expired
