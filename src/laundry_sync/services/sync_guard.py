"""Admission control for change events arriving over a shared medium.

Each observer keeps the ``emittedAt`` of the last event it accepted. Events
from itself, events no newer than that mark and malformed payloads are
dropped. This gives last-accepted-wins per observer, not a global order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from laundry_sync.schemas.events import ChangeEvent
from laundry_sync.services.errors import MalformedEventError

logger = logging.getLogger(__name__)


def parse_event(payload: str | bytes | Mapping[str, Any]) -> ChangeEvent:
    """Validate a raw transport payload into a ``ChangeEvent``.

    Raises:
        MalformedEventError: If the payload is not JSON or not a valid event.
    """
    try:
        if isinstance(payload, str | bytes):
            return ChangeEvent.model_validate_json(payload)
        return ChangeEvent.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid change event: {exc.error_count()} error(s)") from exc


class SyncGuard:
    """Decides whether an observer should apply an incoming event."""

    def __init__(self, origin_id: str, last_accepted_at: int = 0) -> None:
        self.origin_id = origin_id
        self.last_accepted_at = last_accepted_at
        self.accepted = 0
        self.rejected_self = 0
        self.rejected_stale = 0
        self.rejected_malformed = 0

    def admit(self, payload: str | bytes | Mapping[str, Any]) -> ChangeEvent | None:
        """Return the event if it should be applied, otherwise None.

        Never raises for bad input; rejected payloads are logged and counted.
        """
        raw = self._as_mapping(payload)
        if raw is None:
            return None

        if raw.get("originId") == self.origin_id:
            self.rejected_self += 1
            return None

        emitted_at = raw.get("emittedAt")
        if _is_number(emitted_at) and emitted_at <= self.last_accepted_at:
            self.rejected_stale += 1
            logger.debug(
                "Ignoring stale event from %s (emittedAt %s <= %s)",
                raw.get("originId"),
                emitted_at,
                self.last_accepted_at,
            )
            return None

        try:
            event = parse_event(raw)
        except MalformedEventError as exc:
            self.rejected_malformed += 1
            logger.warning("Dropping malformed change event: %s", exc)
            return None

        self.last_accepted_at = event.emitted_at
        self.accepted += 1
        return event

    def fast_forward(self, cutoff_ms: int) -> None:
        """Ignore everything emitted at or before ``cutoff_ms`` from now on."""
        if cutoff_ms > self.last_accepted_at:
            self.last_accepted_at = cutoff_ms

    def stats(self) -> dict[str, int | str]:
        return {
            "originId": self.origin_id,
            "lastAcceptedAt": self.last_accepted_at,
            "accepted": self.accepted,
            "rejectedSelf": self.rejected_self,
            "rejectedStale": self.rejected_stale,
            "rejectedMalformed": self.rejected_malformed,
        }

    def _as_mapping(self, payload: str | bytes | Mapping[str, Any]) -> Mapping[str, Any] | None:
        if isinstance(payload, Mapping):
            return payload
        try:
            raw = json.loads(payload)
        except (TypeError, ValueError) as exc:
            self.rejected_malformed += 1
            logger.warning("Dropping change event that is not JSON: %s", exc)
            return None
        if not isinstance(raw, Mapping):
            self.rejected_malformed += 1
            logger.warning("Dropping change event that is not an object")
            return None
        return raw


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)
