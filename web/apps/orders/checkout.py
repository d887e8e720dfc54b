"""Checkout: price the cart, open the provider payment, persist a pending order."""

import logging
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from apps.accounts.repository import ensure_account
from apps.catalog.models import DeliveryType
from apps.catalog.services import delivery_type_for, resolve_pair, unused_items

from .domain import PaymentProviderPort
from .errors import InsufficientStockError, ValidationError
from .models import OrderModel
from .repository import OrderRepository, PricedLine
from .schemas import CheckoutIn

logger = logging.getLogger("orders.checkout")


class CheckoutService:
    def __init__(self, provider: PaymentProviderPort, repository: Optional[OrderRepository] = None):
        self.provider = provider
        self.repository = repository or OrderRepository()

    def price_lines(self, data: CheckoutIn) -> list[PricedLine]:
        """Resolve every line against the catalog and check availability.

        Automatic-delivery pairs must have enough unused items for the
        combined quantity requested across lines. Manual-delivery pairs are
        always accepted.

        Raises:
            ValidationError: Empty cart or a missing variant.
            NotFoundError: Unknown product or variant.
            InsufficientStockError: Not enough unused items for a pair.
        """
        if not data.lines:
            raise ValidationError("EMPTY_ORDER")

        priced: list[PricedLine] = []
        wanted: dict = defaultdict(int)
        for line in data.lines:
            product, variant = resolve_pair(line.product_id, line.variant_id)
            name = f"{product.name} - {variant.name}" if variant else product.name
            price = variant.price_cents if variant else product.price_cents
            priced.append(PricedLine(product.pk, variant.pk if variant else None, name, price, line.quantity))
            if delivery_type_for(product, variant) == DeliveryType.AUTOMATIC:
                wanted[(product.pk, variant.pk if variant else None)] += line.quantity

        for (product_id, variant_id), qty in wanted.items():
            available = unused_items(product_id, variant_id).count()
            if available < qty:
                raise InsufficientStockError(requested=qty, available=available)
        return priced

    def place_order(
        self,
        identity,
        data: CheckoutIn,
        idempotency_key: Optional[str] = None,
    ) -> OrderModel:
        """Create a pending order for ``identity``.

        The payment is opened before anything is written; when the provider
        is unavailable no order exists afterwards.

        Raises:
            UpstreamProviderError: The payment could not be opened.
        """
        lines = self.price_lines(data)
        total = sum(l.unit_price_cents * l.quantity for l in lines)
        order_id = uuid.uuid4()

        payment_id = self.provider.create_payment(
            amount_cents=total,
            reference=str(order_id),
            method=data.payment_method.value,
            idempotency_key=idempotency_key,
        )

        account = ensure_account(identity.user_id, username=identity.username)
        order = self.repository.create(
            order_id=order_id,
            buyer_id=account.pk,
            lines=lines,
            payment_method=data.payment_method,
            transaction_id=payment_id,
            expires_at=timezone.now() + timedelta(minutes=settings.PAYMENT_EXPIRATION_MINUTES),
            created_by=identity.audit_name,
        )
        logger.info(
            "order placed",
            extra={"order_id": str(order.pk), "lines": len(lines), "total_cents": total},
        )
        return order
