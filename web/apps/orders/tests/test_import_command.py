import json
import uuid
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from apps.accounts.models import Account
from apps.orders.domain import FulfillmentState, OrderStatus
from apps.orders.models import OrderLine, OrderModel, OrderStatusEvent


def run(path, *args):
    out, err = StringIO(), StringIO()
    call_command("import_orders", str(path), *args, stdout=out, stderr=err)
    return out.getvalue(), err.getvalue()


@pytest.fixture
def export(tmp_path):
    def _write(data):
        path = tmp_path / "orders.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.mark.django_db
def test_imports_legacy_documents(export, make_product, make_variant):
    console = make_product(name="Console")
    gold = make_variant(console, name="Gold", price_cents=2500)
    key = make_product(name="Key", price_cents=700)
    user_id = str(uuid.uuid4())
    order_id = str(uuid.uuid4())
    path = export(
        {
            "orders": [
                {
                    "_id": order_id,
                    "user": {"_id": user_id},
                    "orderItems": [
                        {"product": {"_id": str(console.pk)}, "variant": {"_id": str(gold.pk)}, "quantity": 2},
                        {"productId": str(key.pk), "variantId": "single"},
                    ],
                    "paymentInfo": {"status": "approved", "method": "PIX", "id": 123456},
                    "productAssigned": True,
                    "createdAt": "2024-03-01T12:00:00Z",
                }
            ]
        }
    )

    out, err = run(path)

    assert "imported=1 skipped=0 failed=0" in out
    assert err == ""
    order = OrderModel.objects.get(pk=order_id)
    assert str(order.buyer_id) == user_id
    assert Account.objects.filter(pk=user_id).exists()
    assert order.status == OrderStatus.PAID
    assert order.transaction_id == "123456"
    assert order.total_cents == 2 * 2500 + 700
    assert order.product_assigned is True
    assert order.fulfillment_state == FulfillmentState.COMPLETED
    assert order.created_at.year == 2024
    assert order.metadata == {"imported": True}
    assert list(OrderLine.objects.filter(order=order).values_list("name", flat=True).order_by("id")) == [
        "Console - Gold",
        "Key",
    ]
    assert OrderStatusEvent.objects.get(order=order).changed_by == "system:import"


@pytest.mark.django_db
def test_existing_orders_are_skipped_and_bad_documents_reported(export, buyer, make_product, make_order):
    key = make_product(name="Key")
    existing = make_order(buyer, [(key, None, 1)])
    path = export(
        [
            {"_id": str(existing.pk), "userId": str(buyer.pk), "orderItems": [{"productId": str(key.pk)}]},
            {"userId": str(buyer.pk), "orderItems": []},
            {"userId": str(buyer.pk), "orderItems": [{"productId": str(uuid.uuid4())}]},
            {"userId": str(buyer.pk), "orderItems": [{"productId": str(key.pk), "quantity": 3}], "totalCents": 1},
        ]
    )

    out, err = run(path)

    assert "imported=1 skipped=1 failed=2" in out
    assert "document 2: PRODUCT_NOT_FOUND" in err
    assert OrderModel.objects.count() == 2
    assert OrderModel.objects.exclude(pk=existing.pk).get().total_cents == 1


@pytest.mark.django_db
def test_dry_run_writes_nothing(export, make_product):
    key = make_product(name="Key")
    path = export([{"userId": str(uuid.uuid4()), "items": [{"productId": str(key.pk)}]}])

    out, _ = run(path, "--dry-run")

    assert "imported=1" in out
    assert OrderModel.objects.count() == 0
    assert Account.objects.count() == 0


@pytest.mark.django_db
def test_unreadable_files(tmp_path):
    with pytest.raises(CommandError):
        run(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(CommandError):
        run(broken)
