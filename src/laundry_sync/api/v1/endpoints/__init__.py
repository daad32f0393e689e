# src/laundry_sync/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .appliances import router as appliances_router
from .system import router as system_router

__all__ = [
    "appliances_router",
    "system_router",
]
