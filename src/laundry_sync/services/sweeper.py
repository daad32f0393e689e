"""Periodic expiration sweep.

This module provides the ExpirationSweeper class that clears reservations
whose end has passed and announces each one as an ``Expired`` change event.
Because availability is derived from the stored end time, the sweep is a
reconciliation step: the first tick after a restart catches up on anything
that ended while the process was down.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.db.session import SessionLocal
from laundry_sync.models.reservation_log import ACTION_EXPIRE
from laundry_sync.repositories.appliance_repo import ApplianceRepository, ApplianceStore
from laundry_sync.repositories.history_repo import HistoryRecorder, ReservationHistoryRepository
from laundry_sync.schemas.appliance import ApplianceRecord
from laundry_sync.schemas.events import ChangeEvent
from laundry_sync.services.errors import StoreUnavailableError
from laundry_sync.services.notifier import ChangeNotifier, build_event
from laundry_sync.services.reservations import SERVER_ORIGIN_ID
from laundry_sync.services.status import is_expired, snapshot

# Configure logger for this module
logger = logging.getLogger(__name__)


class SweeperState(Enum):
    """Whether a sweep is currently running."""

    IDLE = "idle"
    SWEEPING = "sweeping"


@dataclass
class SweepStats:
    """Counters describing the sweeper's recent behaviour."""

    runs: int = 0
    skipped: int = 0
    failures: int = 0
    expired_total: int = 0
    last_run_at: int | None = None
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExpirationSweeper:
    """Clears ended reservations on a fixed period and emits ``Expired`` events.

    The sweeper either works on an injected store (client sessions, tests) or
    opens a fresh database session per tick. Ticks never overlap: a tick that
    arrives while a sweep is running is skipped.
    """

    def __init__(
        self,
        notifier: ChangeNotifier,
        store: ApplianceStore | None = None,
        *,
        clock: Clock = system_clock,
        origin_id: str = SERVER_ORIGIN_ID,
        interval_seconds: float | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        history: HistoryRecorder | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            notifier: Transport that receives the ``Expired`` events.
            store: Optional store to sweep. If None, a database session is opened per tick.
            clock: Time source deciding which reservations have ended.
            origin_id: Identity stamped on emitted events.
            interval_seconds: Period between ticks; defaults to settings.
            session_factory: Session factory used when no store is injected.
            history: Optional audit trail for injected stores.
        """
        self.notifier = notifier
        self.clock = clock
        self.origin_id = origin_id
        self.interval = max(
            0.01,
            float(interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds),
        )
        self.state = SweeperState.IDLE
        self.stats = SweepStats()
        self._store = store
        self._session_factory = session_factory
        self._history = history
        self._sweep_lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the periodic sweep; the first tick runs immediately."""

        if self.running:
            logger.warning("ExpirationSweeper is already running")
            return

        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Starting ExpirationSweeper with %.1fs interval", self.interval)

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for the current tick to finish."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        logger.info("ExpirationSweeper stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except Exception as e:
                self._record_failure(e)
                logger.exception("ExpirationSweeper tick failed; retrying in %.1fs", self.interval)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                continue

    def tick(self) -> int:
        """Run one sweep, logging failures instead of raising.

        Returns:
            Number of reservations cleared, zero on failure.
        """
        try:
            return len(self.sweep_once())
        except StoreUnavailableError as e:
            self._record_failure(e)
            logger.warning("ExpirationSweeper could not reach the store: %s", e)
        except (SQLAlchemyError, ValueError, TypeError, KeyError) as e:
            self._record_failure(e)
            logger.error("ExpirationSweeper failed to process expired reservations: %s", e, exc_info=True)
        return 0

    def sweep_once(self) -> list[ChangeEvent]:
        """Clear every ended reservation and publish one ``Expired`` event per record.

        All clears are written in one batch before any event is published. A
        sweep that finds nothing performs no writes and emits nothing.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        if not self._sweep_lock.acquire(blocking=False):
            self.stats.skipped += 1
            logger.debug("Sweep already in progress; skipping tick")
            return []

        self.state = SweeperState.SWEEPING
        try:
            with self._open_store() as (store, history):
                now = self.clock.now()
                expired = [record for record in store.get_all() if is_expired(record, now)]
                self.stats.runs += 1
                self.stats.last_run_at = now
                if not expired:
                    return []

                cleared_count = store.bulk_clear_expired([record.id for record in expired], now)
                if cleared_count < len(expired):
                    expired = self._still_cleared(store, expired)

                events = [
                    build_event("Expired", snapshot(record.cleared(now), now), self.origin_id, self.clock)
                    for record in expired
                ]
                if history is not None:
                    for record in expired:
                        self._log_expiry(history, record, now)

            for event in events:
                self.notifier.publish(event)

            self.stats.expired_total += len(events)
            self.stats.last_error = None
            logger.info("Processed %d expired reservation(s)", len(events))
            return events
        finally:
            self.state = SweeperState.IDLE
            self._sweep_lock.release()

    @contextmanager
    def _open_store(self) -> Iterator[tuple[ApplianceStore, HistoryRecorder | None]]:
        if self._store is not None:
            yield self._store, self._history
            return

        with self._session_factory() as db:
            history = (
                ReservationHistoryRepository(db) if settings.reservation_history_enabled else None
            )
            yield ApplianceRepository(db), history

    @staticmethod
    def _still_cleared(
        store: ApplianceStore, expired: list[ApplianceRecord]
    ) -> list[ApplianceRecord]:
        # Someone re-reserved between our read and the batch write; only
        # announce the records the batch actually cleared.
        cleared = []
        for record in expired:
            current = store.get_by_id(record.id)
            if current is not None and current.reservation_end is None:
                cleared.append(record)
        return cleared

    def _log_expiry(self, history: HistoryRecorder, record: ApplianceRecord, now: int) -> None:
        try:
            history.record(record, ACTION_EXPIRE, now)
        except Exception as exc:
            logger.error("Failed to log expiry for appliance %d: %s", record.id, exc)

    def _record_failure(self, error: Exception) -> None:
        self.stats.failures += 1
        self.stats.last_error = str(error)
