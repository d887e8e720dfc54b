import pytest
from django.db import DatabaseError


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}, "cache": {"ok": True}}}


@pytest.mark.django_db
def test_health_reports_database_outage(client, monkeypatch):
    from apps.monitoring import api

    class BrokenConnection:
        def cursor(self):
            raise DatabaseError("down")

    monkeypatch.setattr(api, "connection", BrokenConnection())

    r = client.get("/health/")

    assert r.status_code == 503
    assert r.json()["components"] == {"db": {"ok": False}, "cache": {"ok": True}}


@pytest.mark.django_db
def test_health_reports_cache_outage(client, monkeypatch):
    from apps.monitoring import api

    class BrokenCache:
        def set(self, *a, **kw):
            raise ConnectionError("redis unreachable")

    monkeypatch.setattr(api, "cache", BrokenCache())

    r = client.get("/health/")

    assert r.status_code == 503
    assert r.json()["ok"] is False
    assert r.json()["components"]["cache"] == {"ok": False}
