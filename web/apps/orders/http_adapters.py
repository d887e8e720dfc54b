"""HTTP client for the payment provider with retries, a circuit breaker, and context headers.

This module implements the concrete ``PaymentProviderPort`` using ``httpx``.
It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- A circuit breaker for the provider to avoid hammering it while it is
    unhealthy, with HALF_OPEN probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Idempotency: ``create_payment`` forwards the checkout ``Idempotency-Key``
    so a retried checkout never opens a second payment.

Every failure that leaves the provider's answer unknown (transport errors,
exhausted retries, an open circuit, unexpected statuses) is raised as
``UpstreamProviderError``.
"""

import time
import threading
import sys
import os
import logging
from typing import Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import PaymentProviderPort
from .errors import UpstreamProviderError

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger("orders.http")


def _is_test_mode() -> bool:
    return (
        "pytest" in sys.modules
        or os.environ.get("PYTEST_CURRENT_TEST") is not None
        or os.environ.get("PYTEST_RUNNING") == "1"
    )


class CircuitOpenError(RuntimeError):
    pass


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpenError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                # allow only one concurrent probe
                if self._half_open_probe_in_flight:
                    raise CircuitOpenError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False

    def reset(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._opened_at = 0.0
            self._half_open_probe_in_flight = False


_provider_cb = CircuitBreaker(
    "payment-provider",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    max_retries = getattr(settings, "HTTP_RETRY_MAX", 3)
    backoff = getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15)
    if _is_test_mode():
        max_retries = max(max_retries, 1)
        backoff = 0.0
    return max_retries, backoff


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Retry only on transport errors or 5xx
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


# ---------------- Payment Provider Adapter ---------------- #

class HttpPaymentProviderClient(PaymentProviderPort):
    """HTTP client for the payment provider with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.PAYMENT_PROVIDER_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(self, method: str, path: str, handle, json: Optional[dict] = None, extra_headers=None):
        """Run one provider call under the breaker and the retry policy.

        ``handle`` maps a response to a result, or returns None when the
        response is not a business answer and should be retried or raised.
        """
        max_retries, backoff = _retry_policy()
        tries = 0

        try:
            state = _provider_cb.before_call()
        except CircuitOpenError as e:
            logger.warning("provider circuit open", extra={"path": path, "reason": str(e)})
            raise UpstreamProviderError("CIRCUIT_OPEN")

        headers = _request_headers({**(extra_headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
                        result = handle(resp)
                        if result is not None:
                            _provider_cb.on_success()
                            return result
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_retries or not _should_retry(resp, exc):
                        _provider_cb.on_failure()
                        logger.error(
                            "provider call failed",
                            extra={
                                "path": path,
                                "tries": tries,
                                "status": resp.status_code if resp is not None else None,
                                "error": type(exc).__name__ if exc else None,
                            },
                        )
                        raise UpstreamProviderError()

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    if not _is_test_mode():
                        time.sleep(min(sleep_s, cap))
        finally:
            _provider_cb.on_finish()

    def get_status(self, payment_id: str) -> str:
        """Fetch a payment's raw status.

        Business mappings (none of them count as circuit failures):
        - 200 → the ``status`` field of the body
        - 404 → ``"not_found"``
        - 429 → ``"rate_limited"``

        Raises:
            UpstreamProviderError: Transport errors or 5xx after retries, an
                open circuit, or any other unexpected status.
        """

        def handle(resp: httpx.Response):
            if resp.status_code == 200:
                return str(resp.json().get("status", "")).lower() or "unknown"
            if resp.status_code == 404:
                return "not_found"
            if resp.status_code == 429:
                return "rate_limited"
            return None

        return self._send("GET", f"/v1/payments/{payment_id}", handle)

    def create_payment(
        self,
        amount_cents: int,
        reference: str,
        method: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Open a payment and return the provider's payment id.

        Retries reuse the same ``Idempotency-Key`` so the provider returns the
        payment opened by the first attempt.
        """
        payload = {"amount_cents": amount_cents, "reference": reference, "method": method}
        extra = {"Idempotency-Key": idempotency_key} if idempotency_key else None

        def handle(resp: httpx.Response):
            if resp.status_code in (200, 201):
                payment_id = resp.json().get("id")
                return str(payment_id) if payment_id else None
            return None

        return self._send("POST", "/v1/payments", handle, json=payload, extra_headers=extra)
