"""Tests for system and transparency endpoints."""

from fastapi import status
from fastapi.testclient import TestClient

from laundry_sync.services.sweeper import ExpirationSweeper


def test_system_config(client: TestClient) -> None:
    """Test system configuration endpoint."""
    r = client.get("/api/v1/system/config")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert "app" in data and "reservations" in data and "sweeper" in data
    assert data["reservations"]["max_minutes"] == 120
    assert "keepalive_seconds" in data["push"]
    assert "database_url" not in str(data)


def test_sweeper_stats_when_disabled(client: TestClient) -> None:
    r = client.get("/api/v1/system/sweeper")
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"enabled": False, "running": False}


def test_sweeper_stats_when_present(client: TestClient, app, notifier, repo, clock) -> None:
    sweeper = ExpirationSweeper(notifier, repo, clock=clock, interval_seconds=5)
    sweeper.sweep_once()
    app.state.sweeper = sweeper
    try:
        data = client.get("/api/v1/system/sweeper").json()
    finally:
        app.state.sweeper = None

    assert data["enabled"] is True
    assert data["running"] is False
    assert data["state"] == "idle"
    assert data["stats"]["runs"] == 1


def test_observers(client: TestClient) -> None:
    r = client.get("/api/v1/system/observers")
    assert r.status_code == status.HTTP_200_OK
    assert r.json()["connectedClients"] == 0


def test_history_stats(client: TestClient, appliances) -> None:
    client.post("/api/v1/appliances/1/reservation", json={"durationMinutes": 10})
    r = client.get("/api/v1/system/history-stats")
    assert r.json() == {"reserve": 1, "release": 0, "expire": 0}


def test_recent_logs(client: TestClient) -> None:
    r = client.get("/api/v1/system/logs", params={"limit": 5})
    assert r.status_code == status.HTTP_200_OK
    assert isinstance(r.json(), list)
    assert len(r.json()) <= 5
