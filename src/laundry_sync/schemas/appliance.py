# src/laundry_sync/schemas/appliance.py
"""Appliance-related Pydantic schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

APPLIANCE_NAME_MAX_LENGTH = 100

StatusValue = Literal["available", "in-use"]


def validate_appliance_name(name: str) -> str:
    """Return ``name`` if it is a usable appliance name, else raise ValueError."""
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Appliance name is required")
    if len(name) > APPLIANCE_NAME_MAX_LENGTH:
        raise ValueError(
            f"Appliance name must be {APPLIANCE_NAME_MAX_LENGTH} characters or less"
        )
    return name


class ApplianceRecord(BaseModel):
    """Stored state of one appliance: identity plus an optional reservation end.

    All instants are whole epoch seconds. The record carries no status; see
    ``laundry_sync.services.status.derive``.
    """

    model_config = ConfigDict(
        frozen=True,
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=APPLIANCE_NAME_MAX_LENGTH)
    reservation_end: int | None = Field(default=None, gt=0)
    created_at: int = Field(..., gt=0)
    updated_at: int = Field(..., gt=0)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        return validate_appliance_name(value)

    @model_validator(mode="after")
    def _updated_not_before_created(self) -> ApplianceRecord:
        if self.updated_at < self.created_at:
            raise ValueError("Updated timestamp cannot be before created timestamp")
        return self

    def reserved_until(self, end: int, now: int) -> ApplianceRecord:
        """Return a copy reserved until ``end`` and touched at ``now``."""
        return self.model_copy(
            update={"reservation_end": end, "updated_at": max(now, self.created_at)}
        )

    def cleared(self, now: int) -> ApplianceRecord:
        """Return a copy with no reservation, touched at ``now``."""
        return self.model_copy(
            update={"reservation_end": None, "updated_at": max(now, self.created_at)}
        )


class ApplianceStatus(BaseModel):
    """Observable status snapshot sent to observers and API clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: StrictInt = Field(..., gt=0)
    name: StrictStr = Field(..., min_length=1, max_length=APPLIANCE_NAME_MAX_LENGTH)
    status: StatusValue
    remaining_ms: StrictInt | None = Field(default=None, ge=0, alias="remainingMs")

    @model_validator(mode="after")
    def _remaining_only_when_in_use(self) -> ApplianceStatus:
        if self.status == "available" and self.remaining_ms is not None:
            raise ValueError("Available appliances carry no remaining time")
        return self


class ReservationRequest(BaseModel):
    """Body of a reserve call.

    The duration is accepted loosely here and validated by the reservation
    service so that out-of-range and fractional values share one error path.
    """

    model_config = ConfigDict(populate_by_name=True)

    duration_minutes: Any = Field(..., alias="durationMinutes")


class ReservationResponse(BaseModel):
    """Envelope returned by reserve and release calls."""

    success: bool = True
    appliance: ApplianceStatus
    message: str | None = None


class ApplianceListResponse(BaseModel):
    """Full-state listing of every appliance."""

    appliances: list[ApplianceStatus]


class PollingResponse(ApplianceListResponse):
    """Pull fallback for observers that cannot hold a stream open."""

    timestamp: int = Field(..., description="Server time in epoch milliseconds.")


class ApplianceStats(BaseModel):
    """Availability counts across the facility."""

    available: int
    in_use: int = Field(..., serialization_alias="inUse")
    total: int


class NextExpiration(BaseModel):
    """The reservation that will end soonest."""

    record_id: int = Field(..., serialization_alias="recordId")
    remaining_ms: int = Field(..., serialization_alias="remainingMs")


class ReservationLogEntry(BaseModel):
    """Audit entry for one reservation change."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    appliance_id: int = Field(..., serialization_alias="applianceId")
    appliance_name: str = Field(..., serialization_alias="applianceName")
    action: Literal["reserve", "release", "expire"]
    duration_minutes: int | None = Field(default=None, serialization_alias="durationMinutes")
    timestamp: int
