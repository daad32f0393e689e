"""Server push transport for change events.

``PushNotifier`` keeps one ``ObserverChannel`` per connected client. Each
event is serialized once and offered to every channel without waiting; a
channel that is closed or whose bounded queue is full is dropped, so a slow
or dead observer never holds up the others. Publishers may run on worker
threads; channels hand messages to their event loop thread-safely.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import threading
from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Any

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.schemas.appliance import ApplianceStatus
from laundry_sync.schemas.events import ChangeEvent

logger = logging.getLogger(__name__)

MESSAGE_CONNECTION = "connection"
MESSAGE_INITIAL_STATUS = "initial_status"
MESSAGE_STATUS_UPDATE = "status_update"
MESSAGE_PING = "ping"


class ChannelClosedError(RuntimeError):
    """Raised when writing to a channel whose observer has gone away."""


class ChannelFullError(RuntimeError):
    """Raised when an observer has fallen too far behind to keep up."""


def format_message(message_type: str, data: Any) -> str:
    """Serialize one push message as a server-sent-events frame."""
    return f"data: {json.dumps({'type': message_type, 'data': data}, separators=(',', ':'))}\n\n"


def generate_client_id(clock: Clock = system_clock) -> str:
    """Return a unique id for a newly connected observer."""
    return f"client_{clock.now_ms()}_{secrets.token_hex(5)}"


class ObserverChannel:
    """Bounded outgoing queue for one observer, owned by an asyncio loop."""

    def __init__(
        self,
        client_id: str,
        loop: asyncio.AbstractEventLoop,
        max_pending: int,
    ) -> None:
        self.client_id = client_id
        self.max_pending = max_pending
        self._loop = loop
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, frame: str) -> None:
        """Queue a frame for delivery without blocking the caller.

        Raises:
            ChannelClosedError: If the channel or its loop is closed.
            ChannelFullError: If too many frames are already waiting.
        """
        if self._closed or self._loop.is_closed():
            raise ChannelClosedError(self.client_id)
        if self._queue.qsize() >= self.max_pending:
            raise ChannelFullError(self.client_id)
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)
        except RuntimeError as exc:
            raise ChannelClosedError(self.client_id) from exc

    async def receive(self, timeout: float | None = None) -> str | None:
        """Wait for the next frame; return None if ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a pending receive so the stream notices the close promptly.
        if not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, "")
            except RuntimeError:
                logger.debug("Loop for %s closed before wake-up", self.client_id)


class PushNotifier:
    """Fans change events out to every connected observer channel."""

    def __init__(
        self,
        *,
        clock: Clock = system_clock,
        max_pending: int | None = None,
        keepalive_seconds: float | None = None,
    ) -> None:
        self.clock = clock
        self.max_pending = max_pending or settings.push_queue_size
        self.keepalive_seconds = keepalive_seconds or settings.push_keepalive_seconds
        self._channels: dict[str, ObserverChannel] = {}
        self._lock = threading.Lock()

    def connect(
        self,
        client_id: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> ObserverChannel:
        """Register a new observer on the running (or given) event loop."""
        channel = ObserverChannel(
            client_id or generate_client_id(self.clock),
            loop or asyncio.get_running_loop(),
            self.max_pending,
        )
        with self._lock:
            self._channels[channel.client_id] = channel
            count = len(self._channels)
        logger.info("Push observer %s connected. Total observers: %d", channel.client_id, count)
        return channel

    def disconnect(self, client_id: str) -> None:
        """Forget an observer; unknown ids are ignored."""
        with self._lock:
            channel = self._channels.pop(client_id, None)
            count = len(self._channels)
        if channel is not None:
            channel.close()
            logger.info("Push observer %s disconnected. Total observers: %d", client_id, count)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to every observer, dropping those that fail."""
        frame = format_message(MESSAGE_STATUS_UPDATE, event.to_wire())
        delivered = self._broadcast(frame)
        logger.debug(
            "Broadcasted %s for appliance %d to %d observer(s)",
            event.kind,
            event.record_id,
            delivered,
        )

    def ping(self) -> int:
        """Send a keepalive to every observer and return how many received it."""
        return self._broadcast(format_message(MESSAGE_PING, {"timestamp": self.clock.now_ms()}))

    def _broadcast(self, frame: str) -> int:
        with self._lock:
            channels = list(self._channels.values())

        failed: list[str] = []
        for channel in channels:
            try:
                channel.send(frame)
            except (ChannelClosedError, ChannelFullError) as exc:
                logger.warning("Dropping push observer %s: %s", channel.client_id, type(exc).__name__)
                failed.append(channel.client_id)

        for client_id in failed:
            self.disconnect(client_id)
        return len(channels) - len(failed)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def client_ids(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def stats(self) -> dict[str, Any]:
        """Return connection statistics for the system endpoint."""
        client_ids = self.client_ids()
        return {
            "connectedClients": len(client_ids),
            "clientIds": client_ids,
            "keepaliveSeconds": self.keepalive_seconds,
            "maxPending": self.max_pending,
        }

    def close_all(self) -> None:
        """Disconnect every observer, used on shutdown."""
        for client_id in self.client_ids():
            self.disconnect(client_id)
        logger.info("PushNotifier closed all observers")

    async def stream(
        self,
        channel: ObserverChannel,
        initial_status: list[ApplianceStatus],
    ) -> AsyncIterator[str]:
        """Yield server-sent-event frames for one observer until it disconnects.

        The stream starts with a ``connection`` frame, then ``initial_status``
        (read after the channel was registered, so no change is missed), then
        live updates with a keepalive ``ping`` whenever nothing was sent for
        ``keepalive_seconds``.
        """
        try:
            yield format_message(MESSAGE_CONNECTION, {
                "clientId": channel.client_id,
                "timestamp": self.clock.now_ms(),
            })
            yield format_message(MESSAGE_INITIAL_STATUS, {
                "appliances": [
                    status.model_dump(by_alias=True, exclude_none=True) for status in initial_status
                ],
                "timestamp": self.clock.now_ms(),
            })
            while True:
                frame = await channel.receive(timeout=self.keepalive_seconds)
                if channel.closed:
                    break
                if frame is None:
                    frame = format_message(MESSAGE_PING, {"timestamp": self.clock.now_ms()})
                yield frame
        finally:
            self.disconnect(channel.client_id)


@lru_cache
def get_push_notifier() -> PushNotifier:
    """Return the process-wide push notifier."""
    return PushNotifier()
