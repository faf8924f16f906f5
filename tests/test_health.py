"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - No authentication required
  - A missing signing secret degrades the status but is not an error here
  - A broken database connection degrades the status
"""

from __future__ import annotations

from core.config import get_settings


def test_health_returns_200_with_components(harness):
    resp = harness.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"] == {"app": "ok", "database": "ok", "signing_secret": "ok"}


def test_health_no_auth_required(harness):
    resp = harness.client.get("/api/v1/health", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 200


def test_missing_secret_reports_degraded(harness, monkeypatch):
    monkeypatch.setattr(get_settings(), "jwt_secret", "")
    resp = harness.client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["signing_secret"] == "missing"


def test_database_failure_reports_degraded(harness, monkeypatch):
    class BrokenEngine:
        def connect(self):
            raise RuntimeError("database unavailable")

    monkeypatch.setattr(harness.audit, "engine", BrokenEngine())
    data = harness.client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"
