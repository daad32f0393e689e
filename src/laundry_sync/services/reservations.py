"""Reservation business logic: reserve, release and availability reads."""

from __future__ import annotations

import logging
import math
import socket
import uuid

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.models.reservation_log import ACTION_RELEASE, ACTION_RESERVE
from laundry_sync.repositories.appliance_repo import ApplianceStore
from laundry_sync.repositories.history_repo import HistoryRecorder
from laundry_sync.schemas.appliance import (
    ApplianceRecord,
    ApplianceStats,
    ApplianceStatus,
    NextExpiration,
)
from laundry_sync.services.errors import ApplianceNotFoundError, InvalidDurationError
from laundry_sync.services.notifier import ChangeNotifier, build_event
from laundry_sync.services.status import count_by_state, derive, snapshot

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60


def process_origin_id() -> str:
    """Return an origin id unique to this server process."""
    return f"server_{socket.gethostname()}_{uuid.uuid4().hex[:8]}"


SERVER_ORIGIN_ID = process_origin_id()


def validate_duration(duration_minutes: object, max_minutes: int) -> int:
    """Return ``duration_minutes`` as an int or raise ``InvalidDurationError``.

    Integral floats such as ``30.0`` are accepted; bools and fractions are not.
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int | float):
        raise InvalidDurationError("Timer duration must be an integer")
    if isinstance(duration_minutes, float):
        if not math.isfinite(duration_minutes) or not duration_minutes.is_integer():
            raise InvalidDurationError("Timer duration must be an integer")
        duration_minutes = int(duration_minutes)
    if duration_minutes < 1:
        raise InvalidDurationError("Timer duration must be at least 1 minute")
    if duration_minutes > max_minutes:
        raise InvalidDurationError(f"Timer duration cannot exceed {max_minutes} minutes")
    return duration_minutes


class ReservationService:
    """Applies reservation changes to the store and announces them.

    Overriding an active reservation is allowed: the last caller wins and no
    conflict is reported, so a user can always correct a mis-set timer.
    """

    def __init__(
        self,
        store: ApplianceStore,
        notifier: ChangeNotifier,
        *,
        clock: Clock = system_clock,
        origin_id: str = SERVER_ORIGIN_ID,
        max_minutes: int | None = None,
        history: HistoryRecorder | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Persistence collaborator holding the appliance records.
            notifier: Transport that receives the resulting change events.
            clock: Time source for reservation ends and event stamps.
            origin_id: Identity stamped on every emitted event.
            max_minutes: Longest allowed reservation; defaults to settings.
            history: Optional audit trail for successful mutations.
        """
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.origin_id = origin_id
        self.max_minutes = max_minutes or settings.max_reservation_minutes
        self.history = history

    def reserve(self, appliance_id: int, duration_minutes: int) -> ApplianceStatus:
        """Reserve an appliance for ``duration_minutes`` starting now.

        Raises:
            InvalidDurationError: If the duration is not an integer in range.
            ApplianceNotFoundError: If the appliance does not exist.
            StoreUnavailableError: If the store cannot be reached.
        """
        minutes = validate_duration(duration_minutes, self.max_minutes)
        self._require(appliance_id)

        now = self.clock.now()
        record = self.store.apply_reservation(
            appliance_id, now + minutes * SECONDS_PER_MINUTE, now
        )
        status = snapshot(record, now)
        self.notifier.publish(build_event("Reserved", status, self.origin_id, self.clock))
        self._log_action(record, ACTION_RESERVE, now, minutes)
        logger.info("Reserved appliance %d (%s) for %d minutes", record.id, record.name, minutes)
        return status

    def release(self, appliance_id: int) -> ApplianceStatus:
        """Make an appliance available again.

        Releasing an appliance that is already available still writes and
        still emits a ``Released`` event.
        """
        self._require(appliance_id)

        now = self.clock.now()
        record = self.store.clear_reservation(appliance_id, now)
        status = snapshot(record, now)
        self.notifier.publish(build_event("Released", status, self.origin_id, self.clock))
        self._log_action(record, ACTION_RELEASE, now)
        logger.info("Released appliance %d (%s)", record.id, record.name)
        return status

    def list_statuses(self) -> list[ApplianceStatus]:
        """Return the derived status of every appliance."""
        now = self.clock.now()
        return [snapshot(record, now) for record in self.store.get_all()]

    def get_status(self, appliance_id: int) -> ApplianceStatus:
        """Return the derived status of one appliance."""
        return snapshot(self._require(appliance_id), self.clock.now())

    def is_available(self, appliance_id: int) -> bool:
        """Return True when the appliance exists and is not reserved."""
        record = self.store.get_by_id(appliance_id) if appliance_id > 0 else None
        return record is not None and derive(record, self.clock.now()).is_available

    def stats(self) -> ApplianceStats:
        """Return facility-wide availability counts."""
        return ApplianceStats(**count_by_state(self.store.get_all(), self.clock.now()))

    def active_reservations(self) -> list[ApplianceStatus]:
        """Return reserved appliances, soonest to end first."""
        now = self.clock.now()
        active = [
            record
            for record in self.store.get_all()
            if not derive(record, now).is_available
        ]
        active.sort(key=lambda record: record.reservation_end or 0)
        return [snapshot(record, now) for record in active]

    def next_expiration(self) -> NextExpiration | None:
        """Return the reservation that will end soonest, if any."""
        active = self.active_reservations()
        if not active:
            return None
        first = active[0]
        return NextExpiration(record_id=first.id, remaining_ms=first.remaining_ms or 0)

    def _require(self, appliance_id: int) -> ApplianceRecord:
        if isinstance(appliance_id, bool) or not isinstance(appliance_id, int) or appliance_id <= 0:
            raise ApplianceNotFoundError(appliance_id)
        record = self.store.get_by_id(appliance_id)
        if record is None:
            raise ApplianceNotFoundError(appliance_id)
        return record

    def _log_action(
        self,
        record: ApplianceRecord,
        action: str,
        timestamp: int,
        duration_minutes: int | None = None,
    ) -> None:
        if self.history is None:
            return
        try:
            self.history.record(record, action, timestamp, duration_minutes)
        except Exception as exc:
            # The audit trail must never fail a reservation change.
            logger.error("Failed to log %s for appliance %d: %s", action, record.id, exc)
