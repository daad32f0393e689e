# src/laundry_sync/services/__init__.py
"""Business logic services for the Laundry Sync application.

Only transport-level services are re-exported here; the reservation service,
sweeper and client session depend on ``laundry_sync.repositories`` and are
imported from their modules directly.
"""

from .notifier import EventBus, FanoutNotifier
from .push import PushNotifier
from .shared_storage import CrossTabObserver, SharedStorageNotifier
from .sync_guard import SyncGuard

__all__ = [
    "CrossTabObserver",
    "EventBus",
    "FanoutNotifier",
    "PushNotifier",
    "SharedStorageNotifier",
    "SyncGuard",
]
