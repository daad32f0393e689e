"""Appliance store kept as one JSON document in shared storage.

This is the persistence used when there is no server: every execution
context reads and rewrites the whole collection under ``MACHINES_KEY``.
Writes are last-writer-wins; there is no locking across contexts.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.schemas.appliance import ApplianceRecord, validate_appliance_name
from laundry_sync.services.errors import ApplianceNotFoundError
from laundry_sync.services.shared_storage import SharedChannel

__all__ = ["DEFAULT_APPLIANCE_NAMES", "MACHINES_KEY", "SharedStorageApplianceStore"]

logger = logging.getLogger(__name__)

MACHINES_KEY = "laundry-machines"

DEFAULT_APPLIANCE_NAMES: tuple[str, ...] = (
    "Washer 1",
    "Washer 2",
    "Dryer 1",
    "Dryer 2",
    "Dryer 3",
)

_records_adapter = TypeAdapter(list[ApplianceRecord])


class SharedStorageApplianceStore:
    """``ApplianceStore`` over a ``SharedChannel``.

    An empty slot is seeded with the default appliances. A slot holding
    invalid data is logged and read as the defaults; the next write replaces it.
    """

    def __init__(
        self,
        channel: SharedChannel,
        *,
        clock: Clock = system_clock,
        key: str = MACHINES_KEY,
    ) -> None:
        self.channel = channel
        self.clock = clock
        self.key = key

    def get_all(self) -> list[ApplianceRecord]:
        raw = self.channel.get(self.key)
        if raw is None:
            records = self.default_records()
            self._save(records)
            return records
        try:
            return self._decode(raw)
        except ValueError as exc:
            logger.error("Invalid appliance data in shared storage, using defaults: %s", exc)
            return self.default_records()

    def get_by_id(self, appliance_id: int) -> ApplianceRecord | None:
        for record in self.get_all():
            if record.id == appliance_id:
                return record
        return None

    def apply_reservation(self, appliance_id: int, end: int, now: int) -> ApplianceRecord:
        return self._replace_one(appliance_id, lambda record: record.reserved_until(end, now))

    def clear_reservation(self, appliance_id: int, now: int) -> ApplianceRecord:
        return self._replace_one(appliance_id, lambda record: record.cleared(now))

    def bulk_clear_expired(self, appliance_ids: Sequence[int], now: int) -> int:
        wanted = set(appliance_ids)
        if not wanted:
            return 0
        records = self.get_all()
        cleared = 0
        updated: list[ApplianceRecord] = []
        for record in records:
            end = record.reservation_end
            if record.id in wanted and end is not None and end <= now:
                record = record.cleared(now)
                cleared += 1
            updated.append(record)
        if cleared:
            self._save(updated)
        return cleared

    def add(self, name: str) -> ApplianceRecord:
        """Append a new available appliance with the next free id."""
        name = validate_appliance_name(name)
        records = self.get_all()
        now = self.clock.now()
        record = ApplianceRecord(
            id=max((r.id for r in records), default=0) + 1,
            name=name,
            created_at=now,
            updated_at=now,
        )
        self._save([*records, record])
        return record

    def remove(self, appliance_id: int) -> bool:
        """Delete an appliance; return False when it did not exist."""
        records = self.get_all()
        remaining = [record for record in records if record.id != appliance_id]
        if len(remaining) == len(records):
            return False
        self._save(remaining)
        return True

    def reset_to_defaults(self) -> list[ApplianceRecord]:
        records = self.default_records()
        self._save(records)
        logger.info("Reset shared appliance store to %d defaults", len(records))
        return records

    def default_records(self) -> list[ApplianceRecord]:
        now = self.clock.now()
        return [
            ApplianceRecord(id=index, name=name, created_at=now, updated_at=now)
            for index, name in enumerate(DEFAULT_APPLIANCE_NAMES, start=1)
        ]

    def _replace_one(self, appliance_id: int, change) -> ApplianceRecord:
        records = self.get_all()
        for index, record in enumerate(records):
            if record.id == appliance_id:
                records[index] = change(record)
                self._save(records)
                return records[index]
        raise ApplianceNotFoundError(appliance_id)

    def _save(self, records: list[ApplianceRecord]) -> None:
        _check_unique_ids(records)
        self.channel.set(self.key, _records_adapter.dump_json(records, by_alias=True).decode("utf-8"))

    @staticmethod
    def _decode(raw: str) -> list[ApplianceRecord]:
        try:
            records = _records_adapter.validate_json(raw)
        except ValidationError as exc:
            raise ValueError(f"{exc.error_count()} validation error(s)") from exc
        _check_unique_ids(records)
        return records


def _check_unique_ids(records: list[ApplianceRecord]) -> None:
    ids = [record.id for record in records]
    if len(ids) != len(set(ids)):
        raise ValueError("Appliance ids must be unique")
