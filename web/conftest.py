# Model imports stay inside the fixtures: this conftest loads before Django is set up.
import uuid
from datetime import timedelta

import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    from django.core.cache import caches
    from apps.orders.adapters import PaymentProviderStub
    from apps.orders.http_adapters import _provider_cb

    settings.USE_HTTP_ADAPTERS = False
    for alias in settings.CACHES:
        caches[alias].clear()
    PaymentProviderStub.reset()
    _provider_cb.reset()
    yield
    PaymentProviderStub.reset()
    _provider_cb.reset()


@pytest.fixture
def buyer(db):
    from apps.accounts.models import Account

    return Account.objects.create(username="buyer")


@pytest.fixture
def other_buyer(db):
    from apps.accounts.models import Account

    return Account.objects.create(username="other")


@pytest.fixture
def make_product(db):
    from apps.catalog.models import DeliveryType, Product
    from apps.catalog.services import add_stock_codes

    def _make(name="Gift card", price_cents=1000, delivery_type=DeliveryType.AUTOMATIC, codes=0):
        product = Product.objects.create(name=name, price_cents=price_cents, delivery_type=delivery_type)
        if codes:
            add_stock_codes(product, None, [f"{name[:8]}-{uuid.uuid4().hex}" for _ in range(codes)])
            product.refresh_from_db()
        return product

    return _make


@pytest.fixture
def make_variant(db):
    from apps.catalog.models import DeliveryType, Variant
    from apps.catalog.services import add_stock_codes

    def _make(product, name="Standard", price_cents=1500, delivery_type=DeliveryType.AUTOMATIC, codes=0):
        variant = Variant.objects.create(
            product=product, name=name, price_cents=price_cents, delivery_type=delivery_type
        )
        if codes:
            add_stock_codes(product, variant, [f"{name[:8]}-{uuid.uuid4().hex}" for _ in range(codes)])
            variant.refresh_from_db()
        return variant

    return _make


@pytest.fixture
def make_order(db):
    """Create an order directly; ``lines`` is a list of (product, variant, quantity)."""
    from django.utils import timezone
    from apps.orders.domain import OrderStatus
    from apps.orders.repository import OrderRepository, PricedLine

    def _make(buyer, lines, status=OrderStatus.PENDING, transaction_id="pay-1", expires_in=timedelta(minutes=30)):
        priced = [
            PricedLine(p.pk, v.pk if v else None, p.name, v.price_cents if v else p.price_cents, qty)
            for p, v, qty in lines
        ]
        return OrderRepository().create(
            order_id=uuid.uuid4(),
            buyer_id=buyer.pk,
            lines=priced,
            transaction_id=transaction_id,
            expires_at=timezone.now() + expires_in if expires_in is not None else None,
            status=status,
        )

    return _make


@pytest.fixture
def identity_headers():
    def _headers(user_id, role="user", name=""):
        headers = {"HTTP_X_USER_ID": str(user_id), "HTTP_X_USER_ROLE": role}
        if name:
            headers["HTTP_X_USER_NAME"] = name
        return headers

    return _headers


@pytest.fixture
def admin_headers(identity_headers):
    return identity_headers(uuid.uuid4(), role="admin", name="ops")
