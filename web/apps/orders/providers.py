"""Service provider helpers wiring the order services with their ports.

Views resolve their collaborators through these factories (looked up on the
module at call time) so tests can monkeypatch any of them. When
``settings.USE_HTTP_ADAPTERS`` is truthy the payment provider is the HTTP
client; otherwise the in-process stub is used.
"""

from django.conf import settings

from .adapters import PaymentProviderStub
from .checkout import CheckoutService
from .domain import PaymentProviderPort
from .fulfillment import FulfillmentOrchestrator
from .http_adapters import HttpPaymentProviderClient
from .payment_status import PaymentStatusResolver


def get_payment_provider() -> PaymentProviderPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpPaymentProviderClient()
    return PaymentProviderStub()


def get_fulfillment_orchestrator() -> FulfillmentOrchestrator:
    return FulfillmentOrchestrator()


def get_payment_status_resolver() -> PaymentStatusResolver:
    return PaymentStatusResolver(
        provider=get_payment_provider(),
        orchestrator=get_fulfillment_orchestrator(),
    )


def get_checkout_service() -> CheckoutService:
    return CheckoutService(provider=get_payment_provider())
