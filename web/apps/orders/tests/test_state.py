import uuid

import pytest

from apps.orders.domain import OrderStatus
from apps.orders.errors import InvalidTransitionError, NotFoundError, ValidationError
from apps.orders.models import OrderModel, OrderNote, OrderStatusEvent
from apps.orders.state import can_transition, transition


@pytest.fixture
def order(buyer, make_product, make_order):
    return make_order(buyer, [(make_product(codes=1), None, 1)])


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("pending", "paid", True),
        ("pending", "failed", True),
        ("pending", "canceled", True),
        ("pending", "expired", True),
        ("paid", "refunded", True),
        ("paid", "canceled", False),
        ("expired", "paid", False),
        ("refunded", "paid", False),
        ("pending", "refunded", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


@pytest.mark.django_db
def test_pending_to_paid_writes_one_history_row(order):
    res = transition(order.pk, OrderStatus.PAID, "ops (Admin)", reason="manual approval", note="paid by transfer")

    assert res.changed is True
    order.refresh_from_db()
    assert order.status == OrderStatus.PAID
    assert order.paid_at is not None
    events = OrderStatusEvent.objects.filter(order=order, status="paid")
    assert events.count() == 1
    assert events.first().changed_by == "ops (Admin)"
    assert OrderNote.objects.get(order=order).content == "paid by transfer"


@pytest.mark.django_db
def test_same_state_is_a_noop(order):
    transition(order.pk, OrderStatus.PAID, "system:webhook")
    count = OrderStatusEvent.objects.filter(order=order).count()

    res = transition(order.pk, OrderStatus.PAID, "system:payment-check")

    assert res.changed is False
    assert OrderStatusEvent.objects.filter(order=order).count() == count


@pytest.mark.django_db
def test_invalid_transition_leaves_order_alone(order):
    transition(order.pk, OrderStatus.EXPIRED, "system:expiry")

    with pytest.raises(InvalidTransitionError):
        transition(order.pk, OrderStatus.PAID, "system:webhook")

    assert OrderModel.objects.get(pk=order.pk).status == OrderStatus.EXPIRED


@pytest.mark.django_db
def test_paid_can_be_refunded(order):
    transition(order.pk, "paid", "system:webhook")
    res = transition(order.pk, "refunded", "ops (Admin)")
    assert res.changed and res.status == OrderStatus.REFUNDED


@pytest.mark.django_db
def test_unknown_order_and_status(order):
    with pytest.raises(NotFoundError):
        transition(uuid.uuid4(), OrderStatus.PAID, "x")
    with pytest.raises(ValidationError) as exc:
        transition(order.pk, "shipped", "x")
    assert exc.value.code == "INVALID_STATUS"


@pytest.mark.django_db
def test_history_rows_are_append_only(order):
    event = OrderStatusEvent.objects.filter(order=order).first()
    event.reason = "rewritten"
    with pytest.raises(RuntimeError):
        event.save()
    with pytest.raises(RuntimeError):
        event.delete()
