"""Exception taxonomy for the availability core.

None of these are fatal to the process. The API layer maps the first three
onto HTTP responses; ``MalformedEventError`` never leaves the sync guard.
"""

from __future__ import annotations


class ApplianceError(RuntimeError):
    """Base exception for availability failures."""

    code = "INTERNAL_SERVER_ERROR"


class ApplianceNotFoundError(ApplianceError):
    """Raised when an appliance id does not refer to a stored record."""

    code = "APPLIANCE_NOT_FOUND"

    def __init__(self, appliance_id: object) -> None:
        super().__init__(f"Appliance with ID {appliance_id} not found")
        self.appliance_id = appliance_id


class InvalidDurationError(ApplianceError):
    """Raised when a reservation duration is non-integer or out of range."""

    code = "INVALID_DURATION"


class StoreUnavailableError(ApplianceError):
    """Raised when the backing store cannot be reached."""

    code = "STORE_UNAVAILABLE"


class MalformedEventError(ApplianceError):
    """Raised when a transport delivers a payload that is not a valid change event."""

    code = "MALFORMED_EVENT"
