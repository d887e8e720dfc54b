"""Order payment status transitions.

Every transition is one conditional ``UPDATE ... WHERE status IN (...)`` plus
one history row, committed together. Concurrent callers racing for the same
transition cannot both win: the loser re-reads the order and either finds
it already in the target state (a no-op) or gets ``InvalidTransitionError``.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .domain import OrderStatus
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import OrderModel, OrderNote, OrderStatusEvent

logger = logging.getLogger("orders.state")

# target -> statuses it may be reached from
ALLOWED_SOURCES = {
    OrderStatus.PAID: (OrderStatus.PENDING,),
    OrderStatus.FAILED: (OrderStatus.PENDING,),
    OrderStatus.CANCELED: (OrderStatus.PENDING,),
    OrderStatus.EXPIRED: (OrderStatus.PENDING,),
    OrderStatus.REFUNDED: (OrderStatus.PAID,),
}


@dataclass(frozen=True)
class TransitionResult:
    order_id: uuid.UUID
    status: OrderStatus
    changed: bool


def can_transition(current: str, target: str) -> bool:
    return current in ALLOWED_SOURCES.get(target, ())


def record_event(order_id, status: str, changed_by: str, reason: str = "") -> OrderStatusEvent:
    """Append a history row. Used for fulfillment events as well as status changes."""
    return OrderStatusEvent.objects.create(
        order_id=order_id, status=status, changed_by=changed_by, reason=reason or ""
    )


def add_note(order_id, content: str, added_by: str) -> OrderNote:
    return OrderNote.objects.create(order_id=order_id, content=content, added_by=added_by)


@transaction.atomic
def transition(
    order_id,
    target: str,
    changed_by: str,
    reason: Optional[str] = None,
    note: Optional[str] = None,
) -> TransitionResult:
    """Move an order to ``target``.

    Args:
        order_id: Order primary key.
        target: Requested status.
        changed_by: Actor recorded in the history entry.
        reason: Optional reason stored with the history entry.
        note: Optional admin note appended when the status changes.

    Returns:
        TransitionResult: ``changed`` is False when the order already had
        ``target``; no history row is written in that case.

    Raises:
        NotFoundError: If the order does not exist.
        InvalidTransitionError: If ``target`` is not reachable from the
            order's current status.
    """
    try:
        target = OrderStatus(target)
    except ValueError:
        raise ValidationError("INVALID_STATUS")
    sources = ALLOWED_SOURCES.get(target, ())

    now = timezone.now()
    fields = {"status": target, "updated_at": now}
    if target == OrderStatus.PAID:
        fields["paid_at"] = now

    updated = OrderModel.objects.filter(pk=order_id, status__in=sources).update(**fields)
    if updated == 0:
        current = OrderModel.objects.filter(pk=order_id).values_list("status", flat=True).first()
        if current is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        if current == target:
            return TransitionResult(order_id=order_id, status=target, changed=False)
        logger.info(
            "transition rejected",
            extra={"order_id": str(order_id), "from": current, "to": target.value},
        )
        raise InvalidTransitionError()

    record_event(order_id, target, changed_by, reason or "")
    if note:
        add_note(order_id, note, changed_by)

    logger.info(
        "order status changed",
        extra={"order_id": str(order_id), "to": target.value, "changed_by": changed_by},
    )
    return TransitionResult(order_id=order_id, status=target, changed=True)
