"""Payment status resolution with a cache in front of the provider.

``PaymentStatusResolver.check`` answers "is this order paid?" for storefront
polling and provider notifications. Orders already settled locally are
answered from the database. Otherwise the provider is asked (through the
cache) and a confirmed payment moves the order to paid and hands it to the
fulfillment orchestrator.
"""

import logging
from typing import Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone

from .domain import OrderStatus, PaymentCheck, PaymentOutcome, PaymentProviderPort, map_provider_status
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .fulfillment import FulfillmentOrchestrator
from .models import OrderModel
from .state import transition

logger = logging.getLogger("orders.payment_status")

PAYMENT_CHECK_ACTOR = "system:payment-check"
EXPIRY_ACTOR = "system:expiry"

_LOCAL_OUTCOMES = {
    OrderStatus.PAID: PaymentOutcome.PAID,
    OrderStatus.EXPIRED: PaymentOutcome.EXPIRED,
    OrderStatus.CANCELED: PaymentOutcome.CANCELED,
    OrderStatus.FAILED: PaymentOutcome.CANCELED,
    OrderStatus.REFUNDED: PaymentOutcome.CANCELED,
}


def cache_key(order_id, payment_id) -> str:
    return f"payment-status:{order_id}:{payment_id}"


class PaymentStatusResolver:
    def __init__(
        self,
        provider: PaymentProviderPort,
        orchestrator: Optional[FulfillmentOrchestrator] = None,
        cache=None,
    ):
        self.provider = provider
        self.orchestrator = orchestrator or FulfillmentOrchestrator()
        self.cache = cache if cache is not None else caches[settings.PAYMENT_STATUS_CACHE_ALIAS]

    def check(
        self,
        order_id,
        payment_id: Optional[str] = None,
        use_cache: bool = True,
        actor: str = PAYMENT_CHECK_ACTOR,
    ) -> PaymentCheck:
        """Resolve the payment status of an order.

        Args:
            order_id: Order to check.
            payment_id: Provider payment id; defaults to the id recorded at
                checkout. A different id than the recorded one is rejected.
            use_cache: Read the cached answer when one exists. Provider
                notifications pass False.
            actor: Name recorded in history when the check changes the order.

        Returns:
            PaymentCheck: The resolved status.

        Raises:
            NotFoundError: The order does not exist.
            ValidationError: No payment id is known, or it does not belong
                to the order.
            UpstreamProviderError: The provider could not be reached. Nothing
                is cached and the order is left as it was.
        """
        order = OrderModel.objects.filter(pk=order_id).first()
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND")

        local = self._local_answer(order)
        if local is not None:
            return local

        if order.expires_at is not None and order.expires_at <= timezone.now():
            return self._expire(order)

        recorded = order.transaction_id
        if payment_id and recorded and str(payment_id) != recorded:
            logger.warning("payment id mismatch", extra={"order_id": str(order.pk)})
            raise ValidationError("PAYMENT_MISMATCH")
        payment_id = str(payment_id or recorded or "")
        if not payment_id:
            raise ValidationError("MISSING_PAYMENT_ID")

        key = cache_key(order.pk, payment_id)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return PaymentCheck(**cached)

        raw = self.provider.get_status(payment_id)
        outcome = map_provider_status(raw)
        order_status = self._apply(order, outcome, raw, actor)

        if order_status != OrderStatus.PENDING:
            outcome = _LOCAL_OUTCOMES.get(order_status, outcome)
        check = PaymentCheck(
            order_id=str(order.pk),
            is_paid=order_status == OrderStatus.PAID,
            payment_status=str(outcome),
            order_status=str(order_status),
        )
        ttl = (
            settings.PAYMENT_STATUS_CACHE_TTL_PAID
            if order_status == OrderStatus.PAID
            else settings.PAYMENT_STATUS_CACHE_TTL_PENDING
        )
        self.cache.set(key, check.as_cache(), ttl)

        logger.info(
            "payment status resolved",
            extra={"order_id": str(order.pk), "provider_status": raw, "order_status": str(order_status)},
        )
        return check

    @staticmethod
    def _local_answer(order: OrderModel) -> Optional[PaymentCheck]:
        # Status wins: a fulfilled order that was refunded is no longer paid.
        outcome = _LOCAL_OUTCOMES.get(order.status)
        if outcome is None and order.product_assigned:
            outcome = PaymentOutcome.PAID
        if outcome is None:
            return None
        return PaymentCheck(
            order_id=str(order.pk),
            is_paid=outcome == PaymentOutcome.PAID,
            payment_status=str(outcome),
            order_status=str(order.status),
        )

    @staticmethod
    def _expire(order: OrderModel) -> PaymentCheck:
        try:
            res = transition(order.pk, OrderStatus.EXPIRED, EXPIRY_ACTOR, reason="payment window elapsed")
            status = res.status
        except InvalidTransitionError:
            # Settled by a concurrent caller between the read and the update.
            status = OrderModel.objects.values_list("status", flat=True).get(pk=order.pk)
            order.status = status
            return PaymentStatusResolver._local_answer(order)
        return PaymentCheck(
            order_id=str(order.pk),
            is_paid=False,
            payment_status=str(PaymentOutcome.EXPIRED),
            order_status=str(status),
        )

    def _apply(self, order: OrderModel, outcome: PaymentOutcome, raw: str, actor: str) -> str:
        """Move the order according to the provider's answer; return its status."""
        if outcome == PaymentOutcome.PAID:
            try:
                transition(order.pk, OrderStatus.PAID, actor, reason=f"provider status {raw}")
            except InvalidTransitionError:
                logger.warning(
                    "approved payment on settled order",
                    extra={"order_id": str(order.pk), "provider_status": raw},
                )
                return OrderModel.objects.values_list("status", flat=True).get(pk=order.pk)
            self.orchestrator.fulfill(order.pk, actor)
            return OrderStatus.PAID

        if outcome == PaymentOutcome.CANCELED:
            try:
                res = transition(order.pk, OrderStatus.CANCELED, actor, reason=raw)
                return res.status
            except InvalidTransitionError:
                return OrderModel.objects.values_list("status", flat=True).get(pk=order.pk)

        return order.status
