"""Buyer library: products the caller owns and the codes delivered to them."""

import logging

from django.core.paginator import Paginator
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.errors import ValidationError
from gateway.identity import IsAuthenticatedIdentity

from .repository import delivered_items, owned_product_ids
from .schemas import OwnedItemOut

logger = logging.getLogger("accounts.api")


def _item_out(item) -> OwnedItemOut:
    return OwnedItemOut(
        id=str(item.pk),
        product_id=str(item.product_id),
        product_name=item.product.name,
        variant_id=str(item.variant_id) if item.variant_id else None,
        variant_name=item.variant.name if item.variant else None,
        code=item.code,
        order_id=(item.metadata or {}).get("orderId"),
        assigned_at=item.assigned_at,
    )


class OwnedProductsView(APIView):
    """List what the caller owns: product ids plus one page of delivered codes."""

    permission_classes = [IsAuthenticatedIdentity]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "library"

    def get(self, request):
        try:
            page = max(1, int(request.GET.get("page", 1)))
            page_size = min(100, max(1, int(request.GET.get("page_size", 20))))
        except ValueError:
            err = ValidationError("INVALID_PAGINATION")
            return Response(err.as_body(), status=err.http_status)

        user_id = request.user.user_id
        paginator = Paginator(delivered_items(user_id), page_size)
        page_obj = paginator.get_page(page)
        return Response(
            {
                "product_ids": sorted(str(pk) for pk in owned_product_ids(user_id)),
                "count": paginator.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [_item_out(item).model_dump(mode="json") for item in page_obj.object_list],
            },
            status=200,
        )
