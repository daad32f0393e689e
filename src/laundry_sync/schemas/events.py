"""Change event schema shared by every notification transport."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator

from laundry_sync.schemas.appliance import ApplianceStatus

EventKind = Literal["Reserved", "Released", "Expired"]
EVENT_KINDS: tuple[str, ...] = ("Reserved", "Released", "Expired")


class ChangeEvent(BaseModel):
    """A change to one appliance, stamped with its producer and send time.

    ``emitted_at`` is epoch milliseconds; ``origin_id`` identifies the process
    or tab that produced the event so it can ignore its own echo.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: EventKind
    record_id: StrictInt = Field(..., gt=0, alias="recordId")
    status: ApplianceStatus
    emitted_at: StrictInt = Field(..., gt=0, alias="emittedAt")
    origin_id: StrictStr = Field(..., min_length=1, alias="originId")

    @model_validator(mode="after")
    def _status_matches_record(self) -> ChangeEvent:
        if self.status.id != self.record_id:
            raise ValueError("Status snapshot does not belong to recordId")
        if self.kind in ("Released", "Expired") and self.status.status != "available":
            raise ValueError(f"{self.kind} events must carry an available status")
        return self

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready wire shape with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        """Serialize the wire shape to a compact JSON string."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
