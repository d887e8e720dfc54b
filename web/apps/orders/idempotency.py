"""Idempotency records for checkout retries.

A buyer may resend ``POST /api/orders/`` with the same ``Idempotency-Key``
after a timeout. The first request reserves the key; once it finishes, its
status and body are stored so retries replay them instead of opening a second
payment. Keys are scoped per buyer.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .errors import ConcurrencyConflict
from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(scope: str, key: str, payload: dict):
    """Reserve ``key`` for ``scope`` or load the record a previous request left.

    Args:
        scope: Owner of the key (the buyer id).
        key: Client-provided idempotency key.
        payload: Request body; its hash must match on retries.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.

    Raises:
        ConcurrencyConflict: ``IDEMPOTENCY_CONFLICT`` when the key was used
            with a different body.
    """
    request_hash = _hash(payload)
    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                scope=scope, key=key, request_hash=request_hash, response_status=0, response_body={}
            )
        return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(scope=scope, key=key)
    if rec.request_hash != request_hash:
        raise ConcurrencyConflict("IDEMPOTENCY_CONFLICT")
    return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the response a retry with the same key should replay."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])
