"""System and transparency endpoints for the Laundry Sync API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from laundry_sync.api.v1.dependencies import HistoryRepoDep, PushNotifierDep, SweeperDep
from laundry_sync.core.logging_config import get_log_buffer
from laundry_sync.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes connection strings; suitable for status pages and tooling.

    Returns:
        Dictionary containing app metadata, reservation rules, sweeper and
        push transport settings
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "reservations": {
            "max_minutes": settings.max_reservation_minutes,
            "history_enabled": settings.reservation_history_enabled,
        },
        "sweeper": {
            "enabled": settings.sweeper_enabled,
            "interval_seconds": settings.sweep_interval_seconds,
        },
        "push": {
            "queue_size": settings.push_queue_size,
            "keepalive_seconds": settings.push_keepalive_seconds,
        },
        "sync": {
            "event_max_age_seconds": settings.sync_event_max_age_seconds,
        },
    }


@router.get("/sweeper")
async def get_sweeper_stats(sweeper: SweeperDep) -> dict[str, Any]:
    """Report whether the expiration sweeper is running and what it has done.

    Args:
        sweeper: The sweeper started with the application, if enabled

    Returns:
        Dictionary with the sweeper state and its counters
    """
    if sweeper is None:
        return {"enabled": False, "running": False}
    return {
        "enabled": True,
        "running": sweeper.running,
        "state": sweeper.state.value,
        "interval_seconds": sweeper.interval,
        "stats": sweeper.stats.as_dict(),
    }


@router.get("/observers")
async def get_observers(push: PushNotifierDep) -> dict[str, Any]:
    """Return the push observers currently connected."""
    return push.stats()


@router.get("/history-stats")
def get_history_stats(history: HistoryRepoDep) -> dict[str, int]:
    """Return how many reservation changes were logged per action."""
    return history.counts_by_action()


@router.get("/logs")
async def get_recent_logs(
    limit: int = Query(100, ge=1, le=200, description="Maximum number of log entries to return"),
) -> list[dict[str, str]]:
    """Return the most recent log entries, newest first."""
    return get_log_buffer(limit)
