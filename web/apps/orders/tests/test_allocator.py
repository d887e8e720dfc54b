"""Stock allocator: claims, visible stock, lost races and per-line rollback."""
import uuid

import pytest
from django.db.models import Q

from apps.catalog.models import DeliveryType, Product, StockItem, Variant
from apps.orders import allocator as allocator_module
from apps.orders.allocator import StockAllocator
from apps.orders.errors import InsufficientStockError, NotFoundError, ValidationError


def assert_used_iff_assigned():
    broken = StockItem.objects.filter(
        Q(is_used=True, assigned_to__isnull=True) | Q(is_used=False, assigned_to__isnull=False)
    )
    assert not broken.exists()


class StaleCandidates:
    """Stands in for ``unused_items``: the first candidate batch starts with an
    item another buyer already took, as if it lost a race."""

    def __init__(self, real, stale_pk, state):
        self.real = real
        self.stale_pk = stale_pk
        self.state = state

    def count(self):
        return self.real.count()

    def exclude(self, **kw):
        self.real = self.real.exclude(**kw)
        return self

    def order_by(self, *fields):
        self.real = self.real.order_by(*fields)
        return self

    def values_list(self, *fields):
        rows = list(self.real.values_list(*fields))
        if not self.state["served"]:
            self.state["served"] = True
            return [(self.stale_pk, {})] + rows
        return rows


def serve_stale_first(monkeypatch, stale_pk):
    real = allocator_module.unused_items
    state = {"served": False}
    monkeypatch.setattr(
        allocator_module, "unused_items", lambda p, v: StaleCandidates(real(p, v), stale_pk, state)
    )


def take_item_for(product, variant, account):
    """Create an item already bound to ``account``."""
    return StockItem.objects.create(
        product=product, variant=variant, code=f"taken-{uuid.uuid4().hex}", is_used=True, assigned_to=account
    )


@pytest.mark.django_db
def test_variant_allocation_assigns_and_updates_visible_stock(buyer, make_product, make_variant):
    """Qty 2 out of 3 unused: two items bound, variant stock shows 1."""
    product = make_product(name="Console")
    variant = make_variant(product, name="Gold", codes=3)
    assert variant.stock == 3
    order_id = uuid.uuid4()

    out = StockAllocator().allocate(product.pk, variant.pk, 2, buyer.pk, order_id, "system:payment-check")

    assert len(out.stock_item_ids) == 2
    assert out.visible_stock == 1
    variant.refresh_from_db()
    assert variant.stock == 1
    items = StockItem.objects.filter(pk__in=out.stock_item_ids)
    for item in items:
        assert item.is_used and item.assigned_to_id == buyer.pk and item.assigned_at is not None
        assert item.metadata == {"orderId": str(order_id), "assignedBy": "system:payment-check"}
    assert_used_iff_assigned()


@pytest.mark.django_db
def test_insufficient_stock_assigns_nothing(buyer, make_product, make_variant):
    product = make_product(name="Console")
    variant = make_variant(product, codes=1)

    with pytest.raises(InsufficientStockError) as exc:
        StockAllocator().allocate(product.pk, variant.pk, 2, buyer.pk, uuid.uuid4(), "system:webhook")

    assert exc.value.requested == 2 and exc.value.available == 1
    assert StockItem.objects.filter(is_used=True).count() == 0
    variant.refresh_from_db()
    assert variant.stock == 1


@pytest.mark.django_db
def test_non_variant_product_reaching_zero_stores_null(buyer, make_product):
    product = make_product(name="Key", codes=2)
    assert product.stock == 2

    out = StockAllocator().allocate(product.pk, None, 2, buyer.pk, uuid.uuid4(), "system:payment-check")

    assert out.visible_stock is None
    product.refresh_from_db()
    assert product.stock is None


@pytest.mark.django_db
def test_variant_reaching_zero_stores_zero(buyer, make_product, make_variant):
    product = make_product(name="Console")
    variant = make_variant(product, codes=1)

    StockAllocator().allocate(product.pk, variant.pk, 1, buyer.pk, uuid.uuid4(), "system:payment-check")

    variant.refresh_from_db()
    assert variant.stock == 0


@pytest.mark.django_db
def test_manual_delivery_keeps_sentinel(settings, buyer, make_product):
    product = make_product(name="Coaching", delivery_type=DeliveryType.MANUAL, codes=2)
    assert product.stock == settings.MANUAL_STOCK_SENTINEL

    out = StockAllocator().allocate(product.pk, None, 1, buyer.pk, uuid.uuid4(), "system:payment-check")
    assert len(out.stock_item_ids) == 1
    assert not out.manual_pending

    out = StockAllocator().allocate(product.pk, None, 5, buyer.pk, uuid.uuid4(), "system:payment-check")
    assert out.manual_pending and out.stock_item_ids == []

    product.refresh_from_db()
    assert product.stock == settings.MANUAL_STOCK_SENTINEL


@pytest.mark.django_db
def test_lost_race_moves_on_to_fresh_candidates(monkeypatch, buyer, other_buyer, make_product):
    product = make_product(name="Key", codes=3)
    stale = take_item_for(product, None, other_buyer)
    serve_stale_first(monkeypatch, stale.pk)

    out = StockAllocator().allocate(product.pk, None, 2, buyer.pk, uuid.uuid4(), "system:webhook")

    assert out.lost_races == 1
    assert len(out.stock_item_ids) == 2
    assert stale.pk not in out.stock_item_ids
    stale.refresh_from_db()
    assert stale.assigned_to_id == other_buyer.pk
    assert_used_iff_assigned()


@pytest.mark.django_db
def test_shortfall_rolls_back_the_lines_own_claims(monkeypatch, buyer, other_buyer, make_product):
    product = make_product(name="Key", codes=2)
    stale = take_item_for(product, None, other_buyer)
    serve_stale_first(monkeypatch, stale.pk)

    with pytest.raises(InsufficientStockError):
        StockAllocator(max_attempts=1).allocate(product.pk, None, 2, buyer.pk, uuid.uuid4(), "system:webhook")

    assert StockItem.objects.filter(assigned_to=buyer).count() == 0
    assert StockItem.objects.filter(product=product, is_used=False).count() == 2
    assert_used_iff_assigned()


@pytest.mark.django_db
@pytest.mark.parametrize("quantity", [0, -1, True, "2", 1.5])
def test_quantity_must_be_a_positive_integer(quantity, buyer, make_product):
    product = make_product(codes=2)
    with pytest.raises(ValidationError) as exc:
        StockAllocator().allocate(product.pk, None, quantity, buyer.pk, uuid.uuid4(), "x")
    assert exc.value.code == "INVALID_QUANTITY"


@pytest.mark.django_db
def test_unknown_product_and_variant(buyer, make_product, make_variant):
    with pytest.raises(NotFoundError):
        StockAllocator().allocate(uuid.uuid4(), None, 1, buyer.pk, uuid.uuid4(), "x")

    product = make_product(name="Console")
    make_variant(product, codes=1)
    other = make_product(name="Other")
    foreign = make_variant(other, codes=1)

    with pytest.raises(ValidationError) as exc:
        StockAllocator().allocate(product.pk, None, 1, buyer.pk, uuid.uuid4(), "x")
    assert exc.value.code == "VARIANT_REQUIRED"

    with pytest.raises(NotFoundError) as exc:
        StockAllocator().allocate(product.pk, foreign.pk, 1, buyer.pk, uuid.uuid4(), "x")
    assert exc.value.code == "VARIANT_NOT_FOUND"


@pytest.mark.django_db
def test_variant_reference_ignored_for_product_without_variants(buyer, make_product):
    product = make_product(codes=1)
    out = StockAllocator().allocate(product.pk, uuid.uuid4(), 1, buyer.pk, uuid.uuid4(), "x")
    assert out.variant_id is None and len(out.stock_item_ids) == 1


@pytest.mark.django_db
def test_manual_sentinel_set_on_save():
    product = Product.objects.create(name="Service", delivery_type=DeliveryType.MANUAL, stock=3)
    variant = Variant.objects.create(product=product, name="Hour", delivery_type=DeliveryType.MANUAL)
    assert product.stock == 99999
    assert variant.stock == 99999


@pytest.mark.django_db
@pytest.mark.parametrize("with_variant", [True, False])
def test_counter_row_is_locked_before_any_claim(monkeypatch, buyer, make_product, make_variant, with_variant):
    product = make_product(name="Console", codes=0 if with_variant else 3)
    variant = make_variant(product, codes=3) if with_variant else None
    real_lock = allocator_module.lock_counter
    seen = []

    def recording_lock(p, v):
        seen.append((p.pk, v.pk if v else None, StockItem.objects.filter(is_used=True).count()))
        real_lock(p, v)

    monkeypatch.setattr(allocator_module, "lock_counter", recording_lock)

    StockAllocator().allocate(product.pk, variant.pk if variant else None, 2, buyer.pk, uuid.uuid4(), "system:webhook")

    assert seen == [(product.pk, variant.pk if variant else None, 0)]


@pytest.mark.django_db
def test_successive_allocations_keep_counter_exact(buyer, other_buyer, make_product, make_variant):
    product = make_product(name="Console")
    variant = make_variant(product, codes=5)

    StockAllocator().allocate(product.pk, variant.pk, 2, buyer.pk, uuid.uuid4(), "system:webhook")
    StockAllocator().allocate(product.pk, variant.pk, 1, other_buyer.pk, uuid.uuid4(), "system:webhook")

    variant.refresh_from_db()
    assert variant.stock == 2 == StockItem.objects.filter(variant=variant, is_used=False).count()
