"""Fulfillment orchestrator: one entry point for every payment trigger.

Polling, provider notifications and admin approval all end up calling
``FulfillmentOrchestrator.fulfill``. The call first claims the order with a
conditional update (``not_started`` -> ``in_progress`` while
``product_assigned`` is false). Only the caller whose update matched a row
runs the allocation pass; every other caller gets a skipped result and
mutates nothing.
"""

import logging
import uuid
from typing import Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.accounts.models import Account

from .allocator import StockAllocator
from .domain import FulfillmentResult, FulfillmentState, LineResult, OrderStatus
from .errors import ConcurrencyConflict, InvalidTransitionError, NotFoundError, StorefrontError
from .models import OrderLine, OrderModel
from .state import record_event

logger = logging.getLogger("orders.fulfillment")

FULFILLED_EVENT = "fulfilled"
FULFILLMENT_FAILED_EVENT = "fulfillment_failed"


class FulfillmentOrchestrator:
    def __init__(self, allocator: Optional[StockAllocator] = None):
        self.allocator = allocator or StockAllocator()

    def _claim(self, order_id) -> bool:
        claimed = OrderModel.objects.filter(
            pk=order_id,
            product_assigned=False,
            fulfillment_state=FulfillmentState.NOT_STARTED,
        ).update(fulfillment_state=FulfillmentState.IN_PROGRESS, updated_at=timezone.now())
        return claimed == 1

    def fulfill(self, order_id: uuid.UUID, triggered_by: str) -> FulfillmentResult:
        """Allocate stock for every line of a paid order, at most once.

        Args:
            order_id: Order to fulfill.
            triggered_by: Trigger name recorded in history and item metadata
                (``system:payment-check``, ``system:webhook`` or the admin).

        Returns:
            FulfillmentResult: Per-line outcomes and the final fulfillment
            state, or a skipped result when another call owns the order.

        Raises:
            NotFoundError: The order does not exist.
            InvalidTransitionError: The order is not paid.
            ConcurrencyConflict: The order left ``in_progress`` while this
                call held the claim.
        """
        order = OrderModel.objects.filter(pk=order_id).first()
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND")
        if order.status != OrderStatus.PAID:
            raise InvalidTransitionError("ORDER_NOT_PAID")

        if not self._claim(order.pk):
            logger.info(
                "fulfillment skipped",
                extra={"order_id": str(order.pk), "triggered_by": triggered_by},
            )
            current = OrderModel.objects.filter(pk=order.pk).values_list("fulfillment_state", flat=True).first()
            return FulfillmentResult(
                order_id=order.pk, skipped=True, state=FulfillmentState(current)
            )

        lines = list(OrderLine.objects.filter(order_id=order.pk).order_by("id"))
        result = FulfillmentResult(order_id=order.pk, state=FulfillmentState.IN_PROGRESS)
        assigned: list = []

        for line in lines:
            try:
                allocation = self.allocator.allocate(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    buyer_id=order.buyer_id,
                    order_id=order.pk,
                    assigned_by=triggered_by,
                )
            except (StorefrontError, DatabaseError) as exc:
                code = getattr(exc, "code", "DATABASE_ERROR")
                logger.warning(
                    "line allocation failed",
                    extra={"order_id": str(order.pk), "line_id": line.pk, "error": code},
                )
                result.lines.append(
                    LineResult(line_id=line.pk, product_id=line.product_id, ok=False, error_code=code)
                )
                continue

            result.lines.append(
                LineResult(line_id=line.pk, product_id=line.product_id, ok=True, allocation=allocation)
            )
            if allocation.product_id not in assigned:
                assigned.append(allocation.product_id)

        if result.succeeded == 0:
            self._release(order.pk, triggered_by, len(lines))
            result.state = FulfillmentState.NOT_STARTED
            return result

        complete = result.succeeded == len(lines)
        result.state = FulfillmentState.COMPLETED if complete else FulfillmentState.PARTIALLY_COMPLETED
        result.assigned_product_ids = assigned
        self._finalize(order, result, triggered_by)
        return result

    @transaction.atomic
    def _finalize(self, order: OrderModel, result: FulfillmentResult, triggered_by: str) -> None:
        now = timezone.now()
        updated = OrderModel.objects.filter(
            pk=order.pk, fulfillment_state=FulfillmentState.IN_PROGRESS
        ).update(
            product_assigned=True,
            fulfillment_state=result.state,
            fulfilled_at=now,
            updated_at=now,
        )
        if updated == 0:
            raise ConcurrencyConflict()

        account = Account.objects.get(pk=order.buyer_id)
        account.products.add(*result.assigned_product_ids)

        record_event(order.pk, FULFILLED_EVENT, triggered_by, result.state.value)
        logger.info(
            "order fulfilled",
            extra={
                "order_id": str(order.pk),
                "state": result.state.value,
                "lines": len(result.lines),
                "succeeded": result.succeeded,
                "triggered_by": triggered_by,
            },
        )

    @transaction.atomic
    def _release(self, order_id, triggered_by: str, line_count: int) -> None:
        OrderModel.objects.filter(
            pk=order_id, fulfillment_state=FulfillmentState.IN_PROGRESS
        ).update(fulfillment_state=FulfillmentState.NOT_STARTED, updated_at=timezone.now())
        record_event(order_id, FULFILLMENT_FAILED_EVENT, triggered_by, "no line could be allocated")
        logger.error(
            "fulfillment failed",
            extra={"order_id": str(order_id), "lines": line_count, "triggered_by": triggered_by},
        )
