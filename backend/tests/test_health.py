"""Smoke tests for read-only endpoints and app startup."""
from __future__ import annotations

from fastapi.testclient import TestClient


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("ok") is True
    assert "version" in data
    assert data["tools"] >= 17
    assert data["scheduler_running"] is False


def test_trace_recent(client):
    r = client.get("/trace/recent?limit=10")
    assert r.status_code == 200
    data = r.json()
    assert data["enabled"] is True
    assert isinstance(data["runs"], list)


def test_lifespan_starts_and_stops(client):
    with TestClient(client.app) as c:
        r = c.get("/health")
        assert r.status_code == 200
        assert r.json()["scheduler_running"] is False
