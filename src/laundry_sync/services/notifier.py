"""Change notification contract and in-process event bus.

Producers (the reservation service and the sweeper) only know about
``ChangeNotifier.publish``. Transports decide how an event reaches observers:
``PushNotifier`` writes to open streams, ``SharedStorageNotifier`` writes to a
shared medium, and ``EventBus`` dispatches to local callbacks.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol

from laundry_sync.core.clock import Clock
from laundry_sync.schemas.appliance import ApplianceStatus
from laundry_sync.schemas.events import ChangeEvent, EventKind

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], None]


class ChangeNotifier(Protocol):
    """Anything that can fan a change event out to observers."""

    def publish(self, event: ChangeEvent) -> None:
        ...


def build_event(
    kind: EventKind, status: ApplianceStatus, origin_id: str, clock: Clock
) -> ChangeEvent:
    """Stamp a status snapshot with its kind, producer and send time."""
    return ChangeEvent(
        kind=kind,
        record_id=status.id,
        status=status,
        emitted_at=clock.now_ms(),
        origin_id=origin_id,
    )


@dataclass
class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to stop delivery."""

    _cancel: Callable[[], None]
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class EventBus:
    """Typed publish/subscribe for change events within one process.

    Handlers may filter on event kinds. A failing handler is logged and does
    not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[frozenset[str] | None, EventHandler]] = []
        self._lock = threading.Lock()

    def subscribe(
        self, handler: EventHandler, kinds: Iterable[EventKind] | None = None
    ) -> Subscription:
        """Register ``handler`` for all events, or only for ``kinds``."""
        entry = (frozenset(kinds) if kinds is not None else None, handler)
        with self._lock:
            self._handlers.append(entry)

        def _cancel() -> None:
            with self._lock:
                if entry in self._handlers:
                    self._handlers.remove(entry)

        return Subscription(_cancel)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for kinds, handler in handlers:
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Change handler failed for %s event on appliance %d",
                    event.kind,
                    event.record_id,
                )

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)


class FanoutNotifier:
    """Publishes every event to several notifiers in order."""

    def __init__(self, *notifiers: ChangeNotifier) -> None:
        self.notifiers = list(notifiers)

    def publish(self, event: ChangeEvent) -> None:
        for notifier in self.notifiers:
            notifier.publish(event)
