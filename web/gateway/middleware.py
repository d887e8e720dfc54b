"""Middleware that assigns request identifiers and guards API payload size.

Every incoming request receives a request id, reused from the
``X-Request-Id`` header when the upstream gateway sent one and generated
otherwise. The id is stored on the request and in ``REQUEST_ID_CTX`` so
loggers and the outbound payment provider client can read it without the
request object. ``ACTOR_CTX`` carries the trusted user id once the identity
has been resolved; it is reset at the start of every request so a pooled
worker thread never leaks the previous caller into log records.
"""

import uuid
import os
import contextvars
import logging
from django.http import JsonResponse

from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
ACTOR_CTX = contextvars.ContextVar("actor", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

logger = logging.getLogger("gateway")


class RequestIdMiddleware(MiddlewareMixin):
    """Set ``request.request_id`` and echo it back as ``X-Request-ID``."""

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)
        ACTOR_CTX.set("-")

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject ``/api/`` requests whose declared body exceeds ``API_MAX_BYTES``."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
            logger.warning("payload rejected", extra={"path": request.path, "bytes": int(clen)})
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
