"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, database and version fields
  - the legacy /api/v1/health path answers identically
  - 503 with database=error when the DB ping fails
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, database and version."""
    client, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert "version" in data


def test_health_versioned_path(api_client):
    client, _ = api_client
    assert client.get("/api/v1/health").json() == client.get("/health").json()


def test_health_reports_database_failure(api_client, monkeypatch):
    """A failed ping turns the endpoint into 503 so load balancers drain the node."""
    client, _ = api_client
    monkeypatch.setattr(client.app.state.database, "ping", lambda: False)
    resp = client.get("/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"
    assert resp.json()["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/health", headers={})
    assert resp.status_code == 200
