"""Stock allocation for a single order line.

Items are claimed one at a time with a conditional update that only matches
an item still unused and unassigned. Two allocators racing for the same item
both issue the update; the database lets exactly one of them match the row
and the other sees zero rows and moves on to fresh candidates.
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.catalog.models import DeliveryType, StockItem
from apps.catalog.services import (
    delivery_type_for,
    lock_counter,
    refresh_visible_stock,
    resolve_pair,
    unused_items,
)

from .domain import LineAllocation
from .errors import InsufficientStockError, ValidationError

logger = logging.getLogger("orders.allocator")


class StockAllocator:
    """Claims stock items for (product, variant) pairs and binds them to a buyer."""

    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = max_attempts or settings.ALLOCATION_MAX_ATTEMPTS

    def allocate(
        self,
        product_id,
        variant_id,
        quantity: int,
        buyer_id,
        order_id,
        assigned_by: str,
    ) -> LineAllocation:
        """Claim ``quantity`` unused items of a pair for ``buyer_id``.

        Runs in its own transaction (a savepoint when called inside one), so a
        shortfall rolls back the items this call claimed and nothing else.

        Args:
            product_id: Product to draw from.
            variant_id: Variant to draw from; ignored for products without
                variants.
            quantity: Number of items to claim, a positive integer.
            buyer_id: Account the items are bound to.
            order_id: Order recorded in each item's metadata.
            assigned_by: Trigger recorded in each item's metadata.

        Returns:
            LineAllocation: The claimed item ids and the visible stock after
            the claim. Manual-delivery pairs without enough items come back
            with ``manual_pending=True`` and nothing claimed.

        Raises:
            ValidationError: Bad quantity or missing variant.
            NotFoundError: Unknown product or variant.
            InsufficientStockError: Automatic-delivery pair without enough
                unused items.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("INVALID_QUANTITY")

        product, variant = resolve_pair(product_id, variant_id)
        variant_pk = variant.pk if variant else None
        is_manual = delivery_type_for(product, variant) == DeliveryType.MANUAL
        result = LineAllocation(product_id=product.pk, variant_id=variant_pk, requested=quantity)

        available = unused_items(product.pk, variant_pk).count()
        if available < quantity:
            if is_manual:
                return self._manual_pending(result)
            raise InsufficientStockError(requested=quantity, available=available)

        try:
            with transaction.atomic():
                # Serializes allocators of this pair up to commit.
                lock_counter(product, variant)
                self._claim(result, buyer_id, order_id, assigned_by)
                result.visible_stock = refresh_visible_stock(product, variant)
        except InsufficientStockError:
            if is_manual:
                result.stock_item_ids = []
                return self._manual_pending(result)
            raise

        logger.info(
            "stock allocated",
            extra={
                "order_id": str(order_id),
                "product_id": str(product.pk),
                "variant_id": str(variant_pk) if variant_pk else None,
                "quantity": quantity,
                "lost_races": result.lost_races,
            },
        )
        return result

    def _claim(self, result: LineAllocation, buyer_id, order_id, assigned_by: str) -> None:
        tried: set = set()
        for _attempt in range(self.max_attempts):
            need = result.requested - len(result.stock_item_ids)
            if need <= 0:
                return
            candidates = list(
                unused_items(result.product_id, result.variant_id)
                .exclude(pk__in=tried)
                .order_by("created_at", "id")
                .values_list("pk", "metadata")[:need]
            )
            if not candidates:
                break
            for pk, metadata in candidates:
                tried.add(pk)
                now = timezone.now()
                merged = dict(metadata or {})
                merged.update({"orderId": str(order_id), "assignedBy": assigned_by})
                matched = StockItem.objects.filter(
                    pk=pk, is_used=False, assigned_to__isnull=True
                ).update(
                    is_used=True,
                    assigned_to_id=buyer_id,
                    assigned_at=now,
                    metadata=merged,
                    updated_at=now,
                )
                if matched == 1:
                    result.stock_item_ids.append(pk)
                else:
                    result.lost_races += 1

        shortfall = result.requested - len(result.stock_item_ids)
        if shortfall > 0:
            logger.warning(
                "allocation shortfall",
                extra={
                    "order_id": str(order_id),
                    "product_id": str(result.product_id),
                    "requested": result.requested,
                    "claimed": len(result.stock_item_ids),
                },
            )
            raise InsufficientStockError(
                requested=result.requested, available=len(result.stock_item_ids)
            )

    @staticmethod
    def _manual_pending(result: LineAllocation) -> LineAllocation:
        result.manual_pending = True
        result.visible_stock = settings.MANUAL_STOCK_SENTINEL
        return result

