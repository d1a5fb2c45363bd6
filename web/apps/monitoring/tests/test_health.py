import pytest
from django.db import DatabaseError


@pytest.mark.django_db
def test_health_reports_db_and_providers(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"] == {"ok": True}
    assert body["components"]["http_adapters"] is False
    providers = body["components"]["payment_providers"]
    assert providers["tmoney"] == {"configured": True}
    assert providers["cash_on_delivery"] == {"configured": True}


@pytest.mark.django_db
def test_health_shows_unconfigured_provider(client, settings):
    settings.PAYMENT_PROVIDERS = {}
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json()["components"]["payment_providers"]["flooz"] == {"configured": False}


@pytest.mark.django_db
def test_health_is_503_when_database_is_down(client, monkeypatch):
    from apps.monitoring import api

    class BrokenConnection:
        def cursor(self):
            raise DatabaseError("connection refused")

    monkeypatch.setattr(api, "connection", BrokenConnection())
    r = client.get("/api/health/")
    assert r.status_code == 503
    assert r.json()["ok"] is False
