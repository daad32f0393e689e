# src/laundry_sync/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import appliances_router, system_router

__all__ = [
    "appliances_router",
    "system_router",
]
