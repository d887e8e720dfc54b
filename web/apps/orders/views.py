"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
delegate to the order services, and translate ``StorefrontError`` into an
HTTP response (``{"detail": CODE, "error": message}`` with the error's
status). Collaborators come from ``providers`` and are looked up on the
module at call time, which lets tests swap the payment provider.

Idempotency: when an ``Idempotency-Key`` header is provided, checkout
processes the request once per buyer and key. Retries with the same payload
replay the stored response with ``Idempotent-Replay: true``; reusing the key
with a different payload returns HTTP 409. The key is also forwarded to the
payment provider so a retried checkout never opens a second payment.
"""

import hmac
import logging

from django.conf import settings
from pydantic import ValidationError as SchemaError
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from gateway.identity import IsAdminIdentity, IsAuthenticatedIdentity

from . import providers
from .errors import NotFoundError, StorefrontError, UpstreamProviderError, ValidationError
from .idempotency import finalize, get_or_create_idempotent
from .models import OrderModel
from .repository import OrderRepository
from .schemas import (
    AdminStatusIn,
    CheckoutIn,
    DeliverItemIn,
    PaymentCheckIn,
    PaymentCheckOut,
    WebhookIn,
)
from .services import approve_payment, expire_overdue_orders, mark_line_delivered, update_status

logger = logging.getLogger("orders.api")

WEBHOOK_ACTOR = "system:webhook"
WEBHOOK_ACTIONS = {"payment.created", "payment.updated"}


def _error(exc: StorefrontError) -> Response:
    return Response(exc.as_body(), status=exc.http_status)


def _invalid(exc: SchemaError) -> Response:
    logger.info("request rejected", extra={"errors": exc.error_count()})
    return _error(ValidationError())


def _check_body(check) -> dict:
    return PaymentCheckOut(
        order_id=check.order_id,
        is_paid=check.is_paid,
        payment_status=check.payment_status,
        order_status=check.order_status,
        storefront_status=check.storefront_status,
    ).model_dump(by_alias=True)


def _visible_order(request, order_id) -> OrderModel:
    """Order the caller may see; other buyers' orders look like missing ones."""
    qs = OrderModel.objects.filter(pk=order_id)
    if not request.user.is_admin:
        qs = qs.filter(buyer_id=request.user.user_id)
    order = qs.first()
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND")
    return order


class OrdersPingView(APIView):
    """Minimal liveness endpoint for the orders module."""

    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List the caller's orders (every order for admins) and run checkout."""

    permission_classes = [IsAuthenticatedIdentity]
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            page = max(1, int(request.GET.get("page", 1)))
            page_size = min(100, max(1, int(request.GET.get("page_size", 20))))
        except ValueError:
            return _error(ValidationError("INVALID_PAGINATION"))

        repo = OrderRepository()
        buyer = None if request.user.is_admin else request.user.user_id
        paginator, page_obj = repo.page_for(buyer, page, page_size)
        results = [repo.to_read_dto(o).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {
                "count": paginator.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )

    def post(self, request):
        """Create a pending order and open its payment.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created.
            - The stored status and body, with ``Idempotent-Replay: true``,
              when the same key and payload are retried.
            - 409 ``IDEMPOTENCY_CONFLICT`` when the key is reused with a
              different payload.
            - 400 for validation errors (``EMPTY_ORDER`` for an empty cart).
            - 404 for unknown products or variants.
            - 422 ``INSUFFICIENT_STOCK``.
            - 503 ``UPSTREAM_UNAVAILABLE`` when the payment cannot be opened.
        """
        identity = request.user
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CheckoutIn.model_validate(request.data)
        except SchemaError as e:
            return _invalid(e)

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(str(identity.user_id), idem_key, request.data)
            except StorefrontError as e:
                return _error(e)
            if existing:
                status_code = rec.response_status or status.HTTP_200_OK
                resp = Response(rec.response_body, status=status_code)
                resp["Idempotent-Replay"] = "true"
                return resp

        service = providers.get_checkout_service()
        provider_key = f"{identity.user_id}:{idem_key}" if idem_key else None
        try:
            order = service.place_order(identity, dto, idempotency_key=provider_key)
        except UpstreamProviderError as e:
            # Nothing was created; let the client retry with the same key.
            if rec:
                rec.delete()
            return _error(e)
        except StorefrontError as e:
            if rec:
                finalize(rec, e.http_status, e.as_body())
            return _error(e)

        body = OrderRepository.to_read_dto(order).model_dump(mode="json")
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.pk)
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    permission_classes = [IsAuthenticatedIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            _visible_order(request, oid)
            order = OrderRepository().get(oid)
        except StorefrontError as e:
            return _error(e)
        return Response(OrderRepository.to_read_dto(order, detail=True).model_dump(mode="json"), status=200)


class DeliverItemView(APIView):
    """Admin: mark one manual-delivery line as delivered."""

    permission_classes = [IsAdminIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "admin"

    def post(self, request, oid):
        try:
            dto = DeliverItemIn.model_validate(request.data)
        except SchemaError as e:
            return _invalid(e)
        try:
            line = mark_line_delivered(oid, dto.item_id, request.user.audit_name, note=dto.note)
        except StorefrontError as e:
            return _error(e)
        return Response({"itemId": line.pk, "delivered": line.delivered}, status=200)


class PaymentCheckStatusView(APIView):
    """Storefront polling: is this order paid yet?"""

    permission_classes = [IsAuthenticatedIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payment_status"

    def post(self, request):
        try:
            dto = PaymentCheckIn.model_validate(request.data)
        except SchemaError as e:
            return _invalid(e)

        resolver = providers.get_payment_status_resolver()
        try:
            _visible_order(request, dto.order_id)
            check = resolver.check(dto.order_id, payment_id=dto.payment_id)
        except StorefrontError as e:
            return _error(e)
        return Response(_check_body(check), status=200)


class PaymentWebhookView(APIView):
    """Provider notification; re-checks the payment without the cache."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        try:
            dto = WebhookIn.model_validate(request.data)
        except SchemaError as e:
            return _invalid(e)

        if dto.action not in WEBHOOK_ACTIONS or dto.data is None:
            return Response({"received": True, "ignored": True}, status=200)

        order = OrderModel.objects.filter(transaction_id=dto.data.id).first()
        if order is None:
            logger.info("webhook for unknown payment", extra={"action": dto.action})
            return Response({"received": True, "ignored": True}, status=200)

        resolver = providers.get_payment_status_resolver()
        try:
            check = resolver.check(order.pk, payment_id=dto.data.id, use_cache=False, actor=WEBHOOK_ACTOR)
        except StorefrontError as e:
            return _error(e)
        return Response({"received": True, **_check_body(check)}, status=200)


class AdminApproveView(APIView):
    permission_classes = [IsAdminIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "admin"

    def post(self, request, oid):
        try:
            res, outcome = approve_payment(
                oid, request.user.audit_name, providers.get_fulfillment_orchestrator()
            )
        except StorefrontError as e:
            return _error(e)
        order = OrderRepository().get(oid)
        return Response(
            {
                "order": OrderRepository.to_read_dto(order).model_dump(mode="json"),
                "changed": res.changed,
                "fulfillment": outcome.as_dict(),
            },
            status=200,
        )


class AdminOrderView(APIView):
    permission_classes = [IsAdminIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "admin"

    def put(self, request, oid):
        try:
            dto = AdminStatusIn.model_validate(request.data)
        except SchemaError as e:
            return _invalid(e)
        try:
            res, outcome = update_status(
                oid,
                dto.status,
                request.user.audit_name,
                providers.get_fulfillment_orchestrator(),
                note=dto.notes,
            )
        except StorefrontError as e:
            return _error(e)
        order = OrderRepository().get(oid)
        body = {
            "order": OrderRepository.to_read_dto(order, detail=True).model_dump(mode="json"),
            "changed": res.changed,
        }
        if outcome is not None:
            body["fulfillment"] = outcome.as_dict()
        return Response(body, status=200)


class CronExpireOrdersView(APIView):
    """Scheduled job: expire pending orders past their payment window."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        expected = getattr(settings, "CRON_API_KEY", "")
        supplied = request.headers.get("Authorization", "")
        if not expected or not hmac.compare_digest(supplied.encode(), f"Bearer {expected}".encode()):
            return Response({"detail": "UNAUTHORIZED"}, status=status.HTTP_401_UNAUTHORIZED)
        return Response({"expired": expire_overdue_orders()}, status=200)
