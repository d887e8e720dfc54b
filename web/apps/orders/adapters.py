"""In-process stub adapter for the payment provider port.

The stub implements ``PaymentProviderPort`` without any network calls. It is
intended for unit tests and local development where deterministic behavior
is useful and the sandbox provider is not running.
"""

import threading
import uuid
from typing import Dict, Optional

from .domain import PaymentProviderPort


class PaymentProviderStub(PaymentProviderPort):
    """Stub implementation of ``PaymentProviderPort``.

    Payments are kept in a class-level registry shared by every instance, so
    a test can create a payment through checkout and later flip its status
    with ``set_status`` before polling. New payments start ``pending``;
    unknown ids report ``not_found``.
    """

    _payments: Dict[str, str] = {}
    _by_key: Dict[str, str] = {}
    _lock = threading.Lock()

    def create_payment(
        self,
        amount_cents: int,
        reference: str,
        method: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Register a pending payment and return its id.

        Repeating an ``idempotency_key`` returns the payment created by the
        first call.
        """
        with self._lock:
            if idempotency_key and idempotency_key in self._by_key:
                return self._by_key[idempotency_key]
            payment_id = uuid.uuid4().hex
            self._payments[payment_id] = "pending"
            if idempotency_key:
                self._by_key[idempotency_key] = payment_id
            return payment_id

    def get_status(self, payment_id: str) -> str:
        with self._lock:
            return self._payments.get(str(payment_id), "not_found")

    @classmethod
    def set_status(cls, payment_id: str, status: str) -> None:
        with cls._lock:
            cls._payments[str(payment_id)] = status

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._payments.clear()
            cls._by_key.clear()
