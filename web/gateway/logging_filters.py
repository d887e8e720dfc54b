"""Logging filter that stamps records with the current request context.

``RequestIdFilter`` copies the request id and the acting user id from the
ContextVars maintained by ``gateway.middleware`` and ``gateway.identity``
onto each record, so the JSON formatter can always reference
``%(request_id)s`` and ``%(actor)s``. Records emitted outside a request
(management commands, the expiry job) carry ``"-"`` for both.
"""

from logging import Filter, LogRecord
from .middleware import REQUEST_ID_CTX, ACTOR_CTX


class RequestIdFilter(Filter):
    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        if not hasattr(record, "actor"):
            record.actor = ACTOR_CTX.get()
        return True
