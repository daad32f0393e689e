"""A self-contained session for one execution context without a server.

``ClientSession`` wires a shared-storage store, the reservation service, an
expiration sweeper and the cross-tab observer together under one origin id,
the way a single browser tab runs the whole system on its own.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Iterable
from typing import Any

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.repositories.shared_store import SharedStorageApplianceStore
from laundry_sync.schemas.appliance import ApplianceStatus
from laundry_sync.schemas.events import ChangeEvent, EventKind
from laundry_sync.services.notifier import EventBus, EventHandler, FanoutNotifier, Subscription
from laundry_sync.services.reservations import ReservationService
from laundry_sync.services.shared_storage import (
    CrossTabObserver,
    SharedChannel,
    SharedStorageNotifier,
)
from laundry_sync.services.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


def generate_tab_id(clock: Clock = system_clock) -> str:
    return f"tab_{clock.now_ms()}_{secrets.token_hex(5)}"


class _LocalViewNotifier:
    """Applies this session's own events to its local view."""

    def __init__(self, observer: CrossTabObserver) -> None:
        self.observer = observer

    def publish(self, event: ChangeEvent) -> None:
        self.observer.apply(event)


class ClientSession:
    """Everything one tab needs, sharing state with other tabs through ``channel``.

    Local changes are applied to this session's view and broadcast to other
    contexts; changes made elsewhere arrive through the observer. Both paths
    are delivered to handlers registered with ``subscribe``.
    """

    def __init__(
        self,
        channel: SharedChannel,
        *,
        clock: Clock = system_clock,
        origin_id: str | None = None,
        sweep_interval_seconds: float | None = None,
        max_minutes: int | None = None,
        cleanup_interval_seconds: float | None = None,
    ) -> None:
        self.clock = clock
        self.origin_id = origin_id or generate_tab_id(clock)
        self.channel = channel
        self.bus = EventBus()
        self.store = SharedStorageApplianceStore(channel, clock=clock)
        self.observer = CrossTabObserver(channel, self.origin_id, clock=clock, bus=self.bus)
        notifier = FanoutNotifier(
            _LocalViewNotifier(self.observer),
            SharedStorageNotifier(channel),
        )
        self.reservations = ReservationService(
            self.store,
            notifier,
            clock=clock,
            origin_id=self.origin_id,
            max_minutes=max_minutes,
        )
        self.sweeper = ExpirationSweeper(
            notifier,
            self.store,
            clock=clock,
            origin_id=self.origin_id,
            interval_seconds=sweep_interval_seconds,
        )
        self.cleanup_interval = (
            cleanup_interval_seconds
            if cleanup_interval_seconds is not None
            else settings.sync_event_cleanup_interval_seconds
        )
        self._cleanup_task: asyncio.Task[None] | None = None
        self._closing = asyncio.Event()

    def open(self) -> list[ApplianceStatus]:
        """Load the current state and start listening to other tabs."""
        statuses = self.reservations.list_statuses()
        self.observer.load(statuses)
        self.observer.start_listening()
        logger.info("Client session %s opened with %d appliance(s)", self.origin_id, len(statuses))
        return statuses

    async def start(self) -> None:
        """Open the session and run the periodic sweep and stale-event cleanup."""
        self.open()
        await self.sweeper.start()
        if self._cleanup_task is None or self._cleanup_task.done():
            self._closing = asyncio.Event()
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        await self.sweeper.stop()
        if self._cleanup_task is not None:
            self._closing.set()
            await self._cleanup_task
            self._cleanup_task = None
        self.close()

    async def _cleanup_loop(self) -> None:
        while not self._closing.is_set():
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=self.cleanup_interval)
            except TimeoutError:
                self.observer.cleanup_old_events()

    def close(self) -> None:
        self.observer.stop_listening()
        logger.info("Client session %s closed", self.origin_id)

    def subscribe(
        self, handler: EventHandler, kinds: Iterable[EventKind] | None = None
    ) -> Subscription:
        return self.bus.subscribe(handler, kinds)

    def reserve(self, appliance_id: int, duration_minutes: int) -> ApplianceStatus:
        return self.reservations.reserve(appliance_id, duration_minutes)

    def release(self, appliance_id: int) -> ApplianceStatus:
        return self.reservations.release(appliance_id)

    def view(self) -> list[ApplianceStatus]:
        """Return this tab's current picture of every appliance."""
        return self.observer.view()

    def stats(self) -> dict[str, Any]:
        return {
            "originId": self.origin_id,
            "observer": self.observer.stats(),
            "sweeper": self.sweeper.stats.as_dict(),
        }
