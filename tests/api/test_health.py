from __future__ import annotations

from app.api.routes import health as health_module
from app.config import settings


def test_liveness(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_without_database_uses_memory_store(client, monkeypatch):
    monkeypatch.setattr(settings, "database_url", None)

    async def healthy() -> bool:
        return True

    monkeypatch.setattr(health_module, "check_database_health", healthy)

    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["database"] == "not configured"
    assert response.json()["backlink_store"] == "memory"


def test_readiness_fails_when_database_is_down(client, monkeypatch):
    async def unhealthy() -> bool:
        return False

    monkeypatch.setattr(health_module, "check_database_health", unhealthy)

    response = client.get("/health/ready")

    assert response.status_code == 503
