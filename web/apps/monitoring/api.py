import logging
import uuid

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger("gateway")


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except DatabaseError:
        logger.exception("health: database check failed")
        return False


def _cache_ok() -> bool:
    # Any backend error (e.g. Redis unreachable) marks the cache down.
    probe = f"health:{uuid.uuid4().hex}"
    try:
        cache.set(probe, "1", 5)
        ok = cache.get(probe) == "1"
        cache.delete(probe)
        return ok
    except Exception:
        logger.exception("health: cache check failed")
        return False


def health_view(_request):
    db_ok = _db_ok()
    cache_ok = _cache_ok()

    ok = db_ok and cache_ok
    code = 200 if ok else 503
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "cache": {"ok": cache_ok}}},
        status=code,
    )
