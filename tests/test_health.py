"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when both stores answer
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any credentials, even with a bad token."""
    resp = api_client.client.get("/api/v1/health", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_is_not_rate_limited(api_client):
    for _ in range(30):
        assert api_client.client.get("/api/v1/health").status_code == 200
