# src/laundry_sync/models/__init__.py
"""SQLAlchemy models for the Laundry Sync application."""

from .appliance import Appliance
from .reservation_log import ReservationLog

__all__ = [
    "Appliance",
    "ReservationLog",
]
