"""Status derivation for appliances.

Availability is never stored. It is recomputed from ``reservation_end`` and
the current instant every time it is needed, and every component goes
through the functions in this module so there is one notion of available.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from laundry_sync.schemas.appliance import ApplianceRecord, ApplianceStatus


class ApplianceState(str, Enum):
    """The two observable states of an appliance."""

    AVAILABLE = "available"
    RESERVED = "in-use"


@dataclass(frozen=True)
class DerivedStatus:
    """Status of a record at one instant; ``remaining_ms`` is set only while reserved."""

    state: ApplianceState
    remaining_ms: int | None = None

    @property
    def is_available(self) -> bool:
        return self.state is ApplianceState.AVAILABLE


def derive(record: ApplianceRecord, now: int) -> DerivedStatus:
    """Map a record and an instant (epoch seconds) to its status.

    A reservation ending exactly at ``now`` is already over.
    """
    end = record.reservation_end
    if end is None or end <= now:
        return DerivedStatus(ApplianceState.AVAILABLE)
    return DerivedStatus(ApplianceState.RESERVED, max(0, end - now) * 1000)


def is_expired(record: ApplianceRecord, now: int) -> bool:
    """Return True when the record still holds a reservation that has ended."""
    return record.reservation_end is not None and derive(record, now).is_available


def snapshot(record: ApplianceRecord, now: int) -> ApplianceStatus:
    """Build the wire status snapshot for a record at ``now``."""
    derived = derive(record, now)
    return ApplianceStatus(
        id=record.id,
        name=record.name,
        status=derived.state.value,
        remaining_ms=derived.remaining_ms,
    )


def count_by_state(records: Iterable[ApplianceRecord], now: int) -> dict[str, int]:
    """Return available/in-use/total counts for a collection of records."""
    available = 0
    in_use = 0
    for record in records:
        if derive(record, now).is_available:
            available += 1
        else:
            in_use += 1
    return {"available": available, "in_use": in_use, "total": available + in_use}
