# src/laundry_sync/api/v1/endpoints/appliances.py
"""Appliance status and reservation endpoints for the Laundry Sync API."""

import asyncio

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from laundry_sync.api.v1.dependencies import (
    ClockDep,
    HistoryRepoDep,
    PushNotifierDep,
    ReservationServiceDep,
)
from laundry_sync.schemas.appliance import (
    ApplianceListResponse,
    ApplianceStats,
    ApplianceStatus,
    NextExpiration,
    PollingResponse,
    ReservationLogEntry,
    ReservationRequest,
    ReservationResponse,
)

router = APIRouter(prefix="/appliances", tags=["appliances"])


@router.get("", response_model=ApplianceListResponse, response_model_exclude_none=True)
def list_appliances(service: ReservationServiceDep) -> ApplianceListResponse:
    """Return the derived status of every appliance."""
    return ApplianceListResponse(appliances=service.list_statuses())


@router.get("/status/polling", response_model=PollingResponse, response_model_exclude_none=True)
def poll_status(service: ReservationServiceDep, clock: ClockDep) -> PollingResponse:
    """Pull fallback for clients that cannot keep a stream open."""
    return PollingResponse(appliances=service.list_statuses(), timestamp=clock.now_ms())


@router.get("/stream")
async def stream_status(
    service: ReservationServiceDep,
    push: PushNotifierDep,
) -> StreamingResponse:
    """Open a server-sent-events stream of status changes.

    The observer is registered before the initial snapshot is read so that a
    change landing in between is delivered as an update.
    """
    channel = push.connect()
    try:
        statuses = await asyncio.to_thread(service.list_statuses)
    except Exception:
        push.disconnect(channel.client_id)
        raise

    return StreamingResponse(
        push.stream(channel, statuses),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/stats", response_model=ApplianceStats)
def get_stats(service: ReservationServiceDep) -> ApplianceStats:
    """Return availability counts across all appliances."""
    return service.stats()


@router.get("/active", response_model=ApplianceListResponse, response_model_exclude_none=True)
def list_active(service: ReservationServiceDep) -> ApplianceListResponse:
    """Return reserved appliances, soonest to end first."""
    return ApplianceListResponse(appliances=service.active_reservations())


@router.get("/next-expiration", response_model=NextExpiration | None)
def get_next_expiration(service: ReservationServiceDep) -> NextExpiration | None:
    """Return the reservation that will end soonest, or null when none is active."""
    return service.next_expiration()


@router.get("/history", response_model=list[ReservationLogEntry])
def list_history(
    history: HistoryRepoDep,
    limit: int = Query(50, ge=1, le=500, description="Maximum number of entries to return"),
) -> list[ReservationLogEntry]:
    """Return the most recent reservation changes across all appliances."""
    return history.list_recent(limit)


@router.get("/{appliance_id}", response_model=ApplianceStatus, response_model_exclude_none=True)
def get_appliance(appliance_id: int, service: ReservationServiceDep) -> ApplianceStatus:
    """Return the derived status of one appliance."""
    return service.get_status(appliance_id)


@router.get("/{appliance_id}/history", response_model=list[ReservationLogEntry])
def get_appliance_history(
    appliance_id: int,
    service: ReservationServiceDep,
    history: HistoryRepoDep,
    limit: int = Query(50, ge=1, le=500, description="Maximum number of entries to return"),
) -> list[ReservationLogEntry]:
    """Return the most recent reservation changes for one appliance."""
    service.get_status(appliance_id)
    return history.list_for_appliance(appliance_id, limit)


@router.post(
    "/{appliance_id}/reservation",
    response_model=ReservationResponse,
    response_model_exclude_none=True,
)
def reserve_appliance(
    appliance_id: int,
    payload: ReservationRequest,
    service: ReservationServiceDep,
) -> ReservationResponse:
    """Reserve an appliance for the requested number of minutes.

    An active reservation is replaced; the latest request wins.
    """
    status = service.reserve(appliance_id, payload.duration_minutes)
    return ReservationResponse(
        appliance=status,
        message=f"Reserved {status.name} for {int(payload.duration_minutes)} minutes",
    )


@router.delete(
    "/{appliance_id}/reservation",
    response_model=ReservationResponse,
    response_model_exclude_none=True,
)
def release_appliance(appliance_id: int, service: ReservationServiceDep) -> ReservationResponse:
    """Release an appliance; releasing an available appliance succeeds too."""
    status = service.release(appliance_id)
    return ReservationResponse(appliance=status, message=f"{status.name} is now available")
