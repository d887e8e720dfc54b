"""Stock pool queries and the visible stock counter.

The visible counters on ``Product.stock`` and ``Variant.stock`` are derived
data. For automatic delivery they are recomputed from the unused stock items
of the (product, variant) pair; for manual delivery they hold the sentinel
and are never recomputed.
"""

import logging
from typing import Iterable, Optional

from django.conf import settings
from django.db import IntegrityError, transaction

from apps.orders.errors import NotFoundError, ValidationError
from .models import DeliveryType, Product, StockItem, Variant

logger = logging.getLogger("orders.stock")


def delivery_type_for(product: Product, variant: Optional[Variant]) -> str:
    """Effective delivery type of a (product, variant) pair."""
    if variant is not None:
        return variant.delivery_type
    return product.delivery_type


def resolve_pair(product_id, variant_id):
    """Load the (product, variant) pair an order line refers to.

    Products without variants ignore the variant reference. Products with
    variants require one that belongs to them.

    Raises:
        NotFoundError: Unknown product, or a variant of another product.
        ValidationError: Product has variants but none was given.
    """
    product = Product.objects.filter(pk=product_id).first()
    if product is None:
        raise NotFoundError("PRODUCT_NOT_FOUND")
    if not product.variants.exists():
        return product, None
    if variant_id is None:
        raise ValidationError("VARIANT_REQUIRED")
    variant = Variant.objects.filter(pk=variant_id, product_id=product.pk).first()
    if variant is None:
        raise NotFoundError("VARIANT_NOT_FOUND")
    return product, variant


def unused_items(product_id, variant_id):
    """Unused items of a pair; ``variant_id=None`` matches ``variant IS NULL``."""
    qs = StockItem.objects.filter(product_id=product_id, is_used=False, assigned_to__isnull=True)
    if variant_id is None:
        return qs.filter(variant__isnull=True)
    return qs.filter(variant_id=variant_id)


def lock_counter(product: Product, variant: Optional[Variant]) -> None:
    """Lock the row that holds the pair's visible counter until the transaction ends.

    Callers that claim or load items for the pair take this lock first, so
    their unused count never misses items another open transaction claimed.
    Must run inside ``transaction.atomic``.
    """
    if variant is not None:
        Variant.objects.select_for_update().only("pk").get(pk=variant.pk)
    else:
        Product.objects.select_for_update().only("pk").get(pk=product.pk)


def refresh_visible_stock(product: Product, variant: Optional[Variant]) -> Optional[int]:
    """Write the unused count back to the visible counter.

    Manual-delivery pairs keep the sentinel untouched. A non-variant product
    with nothing left is stored as NULL instead of 0.

    Returns:
        The value now displayed for the pair.
    """
    if delivery_type_for(product, variant) == DeliveryType.MANUAL:
        return settings.MANUAL_STOCK_SENTINEL

    remaining = unused_items(product.pk, variant.pk if variant else None).count()
    if variant is not None:
        Variant.objects.filter(pk=variant.pk).update(stock=remaining)
        variant.stock = remaining
        return remaining

    value = remaining or None
    Product.objects.filter(pk=product.pk).update(stock=value)
    product.stock = value
    return value


def add_stock_codes(product: Product, variant: Optional[Variant], codes: Iterable[str]) -> int:
    """Load new codes into the pool of a pair and refresh its counter.

    Raises:
        ValidationError: When a code is blank, repeated in the batch, or
            already exists in the pool.
    """
    if variant is not None and variant.product_id != product.pk:
        raise ValidationError("VARIANT_MISMATCH")
    cleaned = [c.strip() for c in codes]
    if any(not c for c in cleaned) or len(set(cleaned)) != len(cleaned):
        raise ValidationError("INVALID_CODES")

    try:
        with transaction.atomic():
            lock_counter(product, variant)
            StockItem.objects.bulk_create(
                [StockItem(product=product, variant=variant, code=c) for c in cleaned]
            )
            refresh_visible_stock(product, variant)
    except IntegrityError:
        raise ValidationError("DUPLICATE_CODE")

    logger.info(
        "stock codes added",
        extra={"product_id": str(product.pk), "variant_id": str(variant.pk) if variant else None, "count": len(cleaned)},
    )
    return len(cleaned)
