"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the store answers, 'error' when not
  - No authentication required
  - The database ping runs in a worker thread, off the event loop
"""

from __future__ import annotations

import asyncio

from core.config import APP_VERSION


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == APP_VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_error(api_client, ctx, monkeypatch):
    """A failing ping degrades the database component but not the response."""

    def broken_ping():
        raise RuntimeError("database is gone")

    monkeypatch.setattr(ctx.store, "ping", broken_ping)
    resp = api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without credentials or tokens."""
    resp = api_client.get("/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_ping_runs_off_event_loop(api_client, ctx, monkeypatch):
    """A slow database must not stall the event loop serving other requests."""
    loop_running = []

    def recording_ping():
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return True

    monkeypatch.setattr(ctx.store, "ping", recording_ping)
    assert api_client.get("/health").json()["components"]["database"] == "ok"
    assert loop_running == [False]
