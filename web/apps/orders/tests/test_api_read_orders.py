import uuid

import pytest

from apps.orders.domain import OrderStatus
from apps.orders.state import add_note


@pytest.fixture
def key(make_product):
    return make_product(name="Key", codes=3)


@pytest.mark.django_db
def test_list_returns_only_own_orders(client, identity_headers, buyer, other_buyer, key, make_order):
    mine = [make_order(buyer, [(key, None, 1)]) for _ in range(2)]
    make_order(other_buyer, [(key, None, 1)])

    r = client.get("/api/orders/?page=1&page_size=10", **identity_headers(buyer.pk))

    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 2
    assert {o["id"] for o in data["results"]} == {str(o.pk) for o in mine}
    assert data["results"][0]["lines"][0]["name"] == "Key"


@pytest.mark.django_db
def test_admin_lists_every_order(client, admin_headers, buyer, other_buyer, key, make_order):
    make_order(buyer, [(key, None, 1)])
    make_order(other_buyer, [(key, None, 1)])

    r = client.get("/api/orders/?page_size=1", **admin_headers)

    assert r.status_code == 200
    assert r.json()["count"] == 2
    assert len(r.json()["results"]) == 1


@pytest.mark.django_db
def test_invalid_pagination(client, identity_headers, buyer):
    r = client.get("/api/orders/?page=abc", **identity_headers(buyer.pk))
    assert r.status_code == 400


@pytest.mark.django_db
def test_detail_includes_history_and_notes(client, identity_headers, buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)], status=OrderStatus.PAID)
    add_note(order.pk, "called the buyer", "ops (Admin)")

    r = client.get(f"/api/orders/{order.pk}/", **identity_headers(buyer.pk))

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "paid"
    assert body["history"][0]["status"] == "paid"
    assert body["notes"] == [
        {"content": "called the buyer", "added_by": "ops (Admin)", "added_at": body["notes"][0]["added_at"]}
    ]


@pytest.mark.django_db
def test_other_buyers_order_looks_missing(client, identity_headers, buyer, other_buyer, key, make_order):
    order = make_order(buyer, [(key, None, 1)])
    r = client.get(f"/api/orders/{order.pk}/", **identity_headers(other_buyer.pk))
    assert r.status_code == 404
    r = client.get(f"/api/orders/{uuid.uuid4()}/", **identity_headers(buyer.pk))
    assert r.status_code == 404
