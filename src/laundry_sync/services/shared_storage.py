"""Shared-storage transport for change events.

Several execution contexts (processes, browser-like tabs, test doubles) share
one key/value medium. Writing a key notifies every *other* context that is
subscribed. ``SharedStorageNotifier`` uses this to broadcast an event by
writing it under ``SYNC_EVENT_KEY`` and retracting it immediately;
``CrossTabObserver`` listens on the same key and applies admitted events to
its local view.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol

import redis
from redis.client import PubSub, PubSubWorkerThread

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.schemas.appliance import ApplianceStatus
from laundry_sync.schemas.events import ChangeEvent, EventKind
from laundry_sync.services.errors import StoreUnavailableError
from laundry_sync.services.notifier import EventBus, EventHandler, Subscription
from laundry_sync.services.sync_guard import SyncGuard

logger = logging.getLogger(__name__)

SYNC_EVENT_KEY = "laundry-sync-event"

StorageListener = Callable[[str, str | None], None]


def generate_context_id() -> str:
    return f"ctx_{uuid.uuid4().hex[:12]}"


class SharedChannel(Protocol):
    """One execution context's view of a shared key/value medium.

    Listeners receive ``(key, new_value)`` for writes made by other contexts
    only; ``new_value`` is None when the key was removed.
    """

    context_id: str

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def subscribe(self, listener: StorageListener) -> Subscription:
        ...


def _dispatch(listeners: Iterable[StorageListener], key: str, value: str | None) -> None:
    for listener in listeners:
        try:
            listener(key, value)
        except Exception:
            logger.exception("Shared storage listener failed for key %s", key)


class InMemorySharedMedium:
    """A process-local medium shared by any number of contexts.

    Notifications are delivered synchronously on the writer's thread.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._listeners: list[tuple[str, StorageListener]] = []
        self._lock = threading.RLock()

    def context(self, context_id: str | None = None) -> InMemorySharedChannel:
        """Return a new context attached to this medium."""
        return InMemorySharedChannel(self, context_id or generate_context_id())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def _get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def _write(self, source_id: str, key: str, value: str | None) -> None:
        with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value
            listeners = [listener for owner, listener in self._listeners if owner != source_id]
        _dispatch(listeners, key, value)

    def _subscribe(self, context_id: str, listener: StorageListener) -> Subscription:
        entry = (context_id, listener)
        with self._lock:
            self._listeners.append(entry)

        def _cancel() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return Subscription(_cancel)


class InMemorySharedChannel:
    """A single context bound to an ``InMemorySharedMedium``."""

    def __init__(self, medium: InMemorySharedMedium, context_id: str) -> None:
        self.medium = medium
        self.context_id = context_id

    def get(self, key: str) -> str | None:
        return self.medium._get(key)

    def set(self, key: str, value: str) -> None:
        self.medium._write(self.context_id, key, value)

    def remove(self, key: str) -> None:
        self.medium._write(self.context_id, key, None)

    def subscribe(self, listener: StorageListener) -> Subscription:
        return self.medium._subscribe(self.context_id, listener)


@contextmanager
def redis_guard(operation: str) -> Iterator[None]:
    """Translate redis connectivity errors into ``StoreUnavailableError``."""
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        logger.warning("Shared storage unavailable during %s: %s", operation, exc)
        raise StoreUnavailableError(f"Shared storage unavailable during {operation}") from exc


class RedisSharedChannel:
    """Shared medium backed by Redis keys and a pub/sub change channel.

    Every write is followed by a notification on ``{prefix}:changes`` carrying
    the writer's context id, so a context can skip its own writes. A single
    background thread per channel dispatches notifications to listeners.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str | None = None,
        context_id: str | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        self._redis = client
        self.prefix = prefix or settings.shared_channel_prefix
        self.context_id = context_id or generate_context_id()
        self.poll_interval = poll_interval
        self._listeners: list[StorageListener] = []
        self._lock = threading.Lock()
        self._pubsub: PubSub | None = None
        self._thread: PubSubWorkerThread | None = None

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs: Any) -> RedisSharedChannel:
        client = redis.Redis.from_url(url or settings.redis_url, decode_responses=True)
        return cls(client, **kwargs)

    @property
    def changes_channel(self) -> str:
        return f"{self.prefix}:changes"

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> str | None:
        with redis_guard("get"):
            value = self._redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        with redis_guard("set"):
            pipe = self._redis.pipeline()
            pipe.set(self._key(key), value)
            pipe.publish(self.changes_channel, self._notification(key, value))
            pipe.execute()

    def remove(self, key: str) -> None:
        with redis_guard("remove"):
            pipe = self._redis.pipeline()
            pipe.delete(self._key(key))
            pipe.publish(self.changes_channel, self._notification(key, None))
            pipe.execute()

    def subscribe(self, listener: StorageListener) -> Subscription:
        with self._lock:
            self._listeners.append(listener)
            if self._thread is None:
                self._start_listener_thread()

        def _cancel() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
                idle = not self._listeners
            if idle:
                self.close()

        return Subscription(_cancel)

    def close(self) -> None:
        """Stop the notification thread and release the pub/sub connection."""
        with self._lock:
            thread, pubsub = self._thread, self._pubsub
            self._thread = None
            self._pubsub = None
        if thread is not None:
            thread.stop()
        if pubsub is not None:
            pubsub.close()

    def _start_listener_thread(self) -> None:
        with redis_guard("subscribe"):
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(**{self.changes_channel: self._on_message})
            self._thread = pubsub.run_in_thread(sleep_time=self.poll_interval, daemon=True)
        self._pubsub = pubsub
        logger.info("Listening for shared storage changes on %s", self.changes_channel)

    def _notification(self, key: str, value: str | None) -> str:
        return json.dumps({"source": self.context_id, "key": key, "value": value})

    def _on_message(self, message: dict[str, Any]) -> None:
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            notification = json.loads(data)
            source = notification["source"]
            key = notification["key"]
            value = notification.get("value")
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning("Ignoring malformed shared storage notification: %s", exc)
            return

        if source == self.context_id:
            return
        with self._lock:
            listeners = list(self._listeners)
        _dispatch(listeners, key, value)


class SharedStorageNotifier:
    """Broadcasts events by writing them to the shared sync key."""

    def __init__(self, channel: SharedChannel, key: str = SYNC_EVENT_KEY) -> None:
        self.channel = channel
        self.key = key

    def publish(self, event: ChangeEvent) -> None:
        # Other contexts are notified on write; the slot is retracted at once.
        self.channel.set(self.key, event.to_json())
        self.channel.remove(self.key)
        logger.debug(
            "Broadcasted %s for appliance %d via shared storage",
            event.kind,
            event.record_id,
        )


class CrossTabObserver:
    """Applies events broadcast by other contexts to a local status view.

    Admission goes through a ``SyncGuard``: self-echoes, stale events and
    malformed payloads are dropped. Accepted events update the view and are
    republished on the observer's ``EventBus``.
    """

    def __init__(
        self,
        channel: SharedChannel,
        origin_id: str,
        *,
        clock: Clock = system_clock,
        bus: EventBus | None = None,
        key: str = SYNC_EVENT_KEY,
        max_age_seconds: int | None = None,
    ) -> None:
        self.channel = channel
        self.clock = clock
        self.key = key
        self.guard = SyncGuard(origin_id)
        self.bus = bus or EventBus()
        self.max_age_seconds = (
            max_age_seconds if max_age_seconds is not None else settings.sync_event_max_age_seconds
        )
        self._view: dict[int, ApplianceStatus] = {}
        self._view_lock = threading.Lock()
        self._subscription: Subscription | None = None

    @property
    def origin_id(self) -> str:
        return self.guard.origin_id

    @property
    def listening(self) -> bool:
        return self._subscription is not None

    def start_listening(self) -> None:
        """Subscribe to the shared medium; earlier events are ignored."""
        if self.listening:
            logger.warning("CrossTabObserver %s is already listening", self.origin_id)
            return
        self.guard.fast_forward(self.clock.now_ms())
        self._subscription = self.channel.subscribe(self._on_storage_change)
        logger.info("CrossTabObserver started listening (origin %s)", self.origin_id)

    def stop_listening(self) -> None:
        if self._subscription is None:
            return
        self._subscription.unsubscribe()
        self._subscription = None
        logger.info("CrossTabObserver stopped listening (origin %s)", self.origin_id)

    def subscribe(
        self, handler: EventHandler, kinds: Iterable[EventKind] | None = None
    ) -> Subscription:
        return self.bus.subscribe(handler, kinds)

    def load(self, statuses: Iterable[ApplianceStatus]) -> None:
        """Replace the local view with a full snapshot."""
        with self._view_lock:
            self._view = {status.id: status for status in statuses}

    def view(self) -> list[ApplianceStatus]:
        with self._view_lock:
            return [self._view[appliance_id] for appliance_id in sorted(self._view)]

    def get(self, appliance_id: int) -> ApplianceStatus | None:
        with self._view_lock:
            return self._view.get(appliance_id)

    def apply(self, event: ChangeEvent) -> None:
        with self._view_lock:
            self._view[event.record_id] = event.status
        self.bus.publish(event)

    def cleanup_old_events(self) -> None:
        """Refuse any event older than ``max_age_seconds`` from now on."""
        self.guard.fast_forward(self.clock.now_ms() - self.max_age_seconds * 1000)

    def stats(self) -> dict[str, Any]:
        return {
            **self.guard.stats(),
            "listening": self.listening,
            "handlerCount": self.bus.handler_count,
            "appliances": len(self._view),
        }

    def _on_storage_change(self, key: str, new_value: str | None) -> None:
        if key != self.key or new_value is None:
            return
        event = self.guard.admit(new_value)
        if event is not None:
            self.apply(event)
