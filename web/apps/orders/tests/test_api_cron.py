from datetime import timedelta

import pytest

from apps.orders.domain import OrderStatus
from apps.orders.models import OrderModel, OrderStatusEvent

URL = "/api/cron/expire-orders/"


@pytest.fixture
def cron_key(settings):
    settings.CRON_API_KEY = "s3cret"
    return "s3cret"


@pytest.mark.django_db
@pytest.mark.parametrize("header", [None, "Bearer wrong", "s3cret"])
def test_requires_bearer_key(client, cron_key, header):
    extra = {"HTTP_AUTHORIZATION": header} if header else {}
    r = client.post(URL, **extra)
    assert r.status_code == 401
    assert r.json() == {"detail": "UNAUTHORIZED"}


@pytest.mark.django_db
def test_unset_key_disables_the_job(client, settings):
    settings.CRON_API_KEY = ""
    r = client.post(URL, HTTP_AUTHORIZATION="Bearer ")
    assert r.status_code == 401


@pytest.mark.django_db
def test_expires_only_overdue_pending_orders(client, cron_key, buyer, make_product, make_order):
    key = make_product(codes=1)
    overdue = make_order(buyer, [(key, None, 1)], expires_in=timedelta(minutes=-1))
    fresh = make_order(buyer, [(key, None, 1)])
    paid = make_order(buyer, [(key, None, 1)], status=OrderStatus.PAID, expires_in=timedelta(minutes=-1))

    r = client.post(URL, HTTP_AUTHORIZATION=f"Bearer {cron_key}")

    assert r.status_code == 200
    assert r.json() == {"expired": 1}
    assert OrderModel.objects.get(pk=overdue.pk).status == OrderStatus.EXPIRED
    assert OrderModel.objects.get(pk=fresh.pk).status == OrderStatus.PENDING
    assert OrderModel.objects.get(pk=paid.pk).status == OrderStatus.PAID
    event = OrderStatusEvent.objects.get(order=overdue, status="expired")
    assert event.changed_by == "system:expiry"

    # a second run has nothing left to do
    assert client.post(URL, HTTP_AUTHORIZATION=f"Bearer {cron_key}").json() == {"expired": 0}
