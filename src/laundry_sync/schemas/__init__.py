# src/laundry_sync/schemas/__init__.py
"""
Pydantic schemas for records, status snapshots and change events.

These schemas define the structure of API and transport data for serialization and validation.
"""

from .appliance import (
    ApplianceListResponse,
    ApplianceRecord,
    ApplianceStats,
    ApplianceStatus,
    NextExpiration,
    PollingResponse,
    ReservationLogEntry,
    ReservationRequest,
    ReservationResponse,
)
from .events import EVENT_KINDS, ChangeEvent, EventKind

__all__ = [
    "ApplianceRecord", "ApplianceStatus",
    "ApplianceListResponse", "PollingResponse", "ApplianceStats", "NextExpiration",
    "ReservationRequest", "ReservationResponse", "ReservationLogEntry",
    "ChangeEvent", "EventKind", "EVENT_KINDS",
]
