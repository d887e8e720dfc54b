"""Admin endpoints: manual approval, status updates and manual delivery."""
import pytest

from apps.catalog.models import DeliveryType, StockItem
from apps.orders.domain import FulfillmentState, OrderStatus
from apps.orders.models import OrderLine, OrderModel, OrderNote, OrderStatusEvent


@pytest.fixture
def key(make_product):
    return make_product(name="Key", codes=2)


@pytest.mark.django_db
def test_approve_runs_fulfillment(client, admin_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 2)])

    r = client.post(f"/api/admin/orders/{order.pk}/approve/", **admin_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["changed"] is True
    assert body["fulfillment"]["fulfillment_state"] == "completed"
    assert body["order"]["product_assigned"] is True
    assert StockItem.objects.filter(assigned_to=buyer).count() == 2
    event = OrderStatusEvent.objects.get(order=order, status="paid")
    assert event.changed_by == "ops (Admin)"
    assert event.reason == "manual approval"
    key.refresh_from_db()
    assert key.stock is None


@pytest.mark.django_db
def test_second_approval_is_a_noop(client, admin_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)])
    client.post(f"/api/admin/orders/{order.pk}/approve/", **admin_headers)

    r = client.post(f"/api/admin/orders/{order.pk}/approve/", **admin_headers)

    assert r.status_code == 200
    assert r.json()["changed"] is False
    assert r.json()["fulfillment"]["skipped"] is True
    assert StockItem.objects.filter(assigned_to=buyer).count() == 1


@pytest.mark.django_db
def test_admin_endpoints_reject_non_admins(client, identity_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)])
    r = client.post(f"/api/admin/orders/{order.pk}/approve/", **identity_headers(buyer.pk))
    assert r.status_code == 403
    r = client.put(f"/api/admin/orders/{order.pk}/", data={"status": "canceled"}, content_type="application/json")
    assert r.status_code == 403


@pytest.mark.django_db
def test_put_status_cancel_with_note(client, admin_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)])

    r = client.put(
        f"/api/admin/orders/{order.pk}/",
        data={"status": "Canceled", "notes": "buyer asked to cancel"},
        content_type="application/json",
        **admin_headers,
    )

    assert r.status_code == 200
    assert r.json()["order"]["status"] == "canceled"
    assert r.json()["order"]["notes"][0]["content"] == "buyer asked to cancel"
    assert OrderNote.objects.get(order=order).added_by == "ops (Admin)"


@pytest.mark.django_db
def test_put_status_paid_delegates_to_approval(client, admin_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)])

    r = client.put(f"/api/admin/orders/{order.pk}/", data={"status": "paid"}, content_type="application/json", **admin_headers)

    assert r.status_code == 200
    assert r.json()["fulfillment"]["fulfillment_state"] == "completed"
    assert OrderModel.objects.get(pk=order.pk).product_assigned is True


@pytest.mark.django_db
@pytest.mark.parametrize("target,code", [("pending", 400), ("expired", 400), ("refunded", 409)])
def test_put_status_rejects_bad_targets(client, admin_headers, buyer, key, make_order, target, code):
    order = make_order(buyer, [(key, None, 1)])
    r = client.put(f"/api/admin/orders/{order.pk}/", data={"status": target}, content_type="application/json", **admin_headers)
    assert r.status_code == code


@pytest.mark.django_db
def test_deliver_manual_item(client, admin_headers, buyer, make_product, make_order):
    service = make_product(name="Coaching", delivery_type=DeliveryType.MANUAL)
    order = make_order(buyer, [(service, None, 1)], status=OrderStatus.PAID)
    line = OrderLine.objects.get(order=order)

    r = client.post(
        f"/api/orders/{order.pk}/deliver-item/",
        data={"itemId": line.pk, "note": "session booked"},
        content_type="application/json",
        **admin_headers,
    )

    assert r.status_code == 200
    assert r.json() == {"itemId": line.pk, "delivered": True}
    line.refresh_from_db()
    assert line.delivered and line.delivered_at is not None
    assert OrderStatusEvent.objects.filter(order=order, status="item_delivered").count() == 1
    assert StockItem.objects.count() == 0

    # delivering twice records nothing new
    client.post(
        f"/api/orders/{order.pk}/deliver-item/", data={"itemId": line.pk}, content_type="application/json", **admin_headers
    )
    assert OrderStatusEvent.objects.filter(order=order, status="item_delivered").count() == 1


@pytest.mark.django_db
def test_deliver_rejects_automatic_lines_and_unpaid_orders(client, admin_headers, buyer, key, make_order):
    unpaid = make_order(buyer, [(key, None, 1)])
    line = OrderLine.objects.get(order=unpaid)
    r = client.post(f"/api/orders/{unpaid.pk}/deliver-item/", data={"itemId": line.pk}, content_type="application/json", **admin_headers)
    assert r.status_code == 409

    OrderModel.objects.filter(pk=unpaid.pk).update(status=OrderStatus.PAID, fulfillment_state=FulfillmentState.COMPLETED)
    r = client.post(f"/api/orders/{unpaid.pk}/deliver-item/", data={"itemId": line.pk}, content_type="application/json", **admin_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "NOT_MANUAL_DELIVERY"

    r = client.post(f"/api/orders/{unpaid.pk}/deliver-item/", data={"itemId": 999999}, content_type="application/json", **admin_headers)
    assert r.status_code == 404
