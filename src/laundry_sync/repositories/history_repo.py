"""Data access helpers for the reservation audit trail."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from laundry_sync.models.reservation_log import (
    ACTION_RESERVE,
    RESERVATION_ACTIONS,
    ReservationLog,
)
from laundry_sync.schemas.appliance import ApplianceRecord, ReservationLogEntry

__all__ = ["HistoryRecorder", "ReservationHistoryRepository"]

DEFAULT_HISTORY_LIMIT = 50


class HistoryRecorder(Protocol):
    """Anything that can append reservation changes to an audit trail."""

    def record(
        self,
        record: ApplianceRecord,
        action: str,
        timestamp: int,
        duration_minutes: int | None = None,
    ) -> None:
        ...


class ReservationHistoryRepository:
    """Thin wrapper around database access for reservation log entries."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def record(
        self,
        record: ApplianceRecord,
        action: str,
        timestamp: int,
        duration_minutes: int | None = None,
    ) -> None:
        """Append one entry for ``record``.

        Raises:
            ValueError: If the action is unknown or the duration does not fit it.
        """
        if action not in RESERVATION_ACTIONS:
            raise ValueError(f"Invalid action type: {action}")
        if action == ACTION_RESERVE and not duration_minutes:
            raise ValueError("Duration minutes is required for reserve actions")
        if action != ACTION_RESERVE and duration_minutes is not None:
            raise ValueError("Duration minutes is only recorded for reserve actions")

        self.session.add(
            ReservationLog(
                appliance_id=record.id,
                appliance_name=record.name,
                action=action,
                duration_minutes=duration_minutes,
                timestamp=timestamp,
            )
        )
        self.session.commit()

    def list_recent(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[ReservationLogEntry]:
        """Return the newest entries across all appliances."""
        rows = self.session.scalars(
            select(ReservationLog)
            .order_by(ReservationLog.timestamp.desc(), ReservationLog.id.desc())
            .limit(limit)
        ).all()
        return [ReservationLogEntry.model_validate(row) for row in rows]

    def list_for_appliance(
        self, appliance_id: int, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[ReservationLogEntry]:
        """Return the newest entries for one appliance."""
        rows = self.session.scalars(
            select(ReservationLog)
            .where(ReservationLog.appliance_id == appliance_id)
            .order_by(ReservationLog.timestamp.desc(), ReservationLog.id.desc())
            .limit(limit)
        ).all()
        return [ReservationLogEntry.model_validate(row) for row in rows]

    def counts_by_action(self) -> dict[str, int]:
        """Return how many entries exist per action."""
        rows = self.session.execute(
            select(ReservationLog.action, func.count()).group_by(ReservationLog.action)
        ).all()
        counts = {action: 0 for action in RESERVATION_ACTIONS}
        for action, count in rows:
            counts[action] = int(count)
        return counts
