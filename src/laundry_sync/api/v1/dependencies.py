"""Shared API dependencies for the reservation endpoints."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from laundry_sync.core.clock import Clock, system_clock
from laundry_sync.core.settings import settings
from laundry_sync.db.session import get_db
from laundry_sync.repositories.appliance_repo import ApplianceRepository
from laundry_sync.repositories.history_repo import ReservationHistoryRepository
from laundry_sync.services.push import PushNotifier, get_push_notifier
from laundry_sync.services.reservations import ReservationService
from laundry_sync.services.sweeper import ExpirationSweeper

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_clock() -> Clock:
    """Return the time source used by request handlers."""
    return system_clock


def get_push_notifier_dep() -> PushNotifier:
    """Return the shared push notifier."""
    return get_push_notifier()


ClockDep = Annotated[Clock, Depends(get_clock)]
PushNotifierDep = Annotated[PushNotifier, Depends(get_push_notifier_dep)]


def get_history_repository(db: SessionDep) -> ReservationHistoryRepository:
    """Return the audit trail repository bound to the request session."""
    return ReservationHistoryRepository(db)


HistoryRepoDep = Annotated[ReservationHistoryRepository, Depends(get_history_repository)]


def get_reservation_service(
    db: SessionDep,
    clock: ClockDep,
    push: PushNotifierDep,
    history: HistoryRepoDep,
) -> ReservationService:
    """Build a reservation service for one request.

    Args:
        db: Database session
        clock: Time source for reservation ends and event stamps
        push: Notifier delivering change events to connected observers
        history: Audit trail, used when reservation history is enabled

    Returns:
        ReservationService bound to the request session
    """
    return ReservationService(
        ApplianceRepository(db),
        push,
        clock=clock,
        history=history if settings.reservation_history_enabled else None,
    )


ReservationServiceDep = Annotated[ReservationService, Depends(get_reservation_service)]


def get_sweeper(request: Request) -> ExpirationSweeper | None:
    """Return the sweeper started with the application, if any."""
    return getattr(request.app.state, "sweeper", None)


SweeperDep = Annotated[ExpirationSweeper | None, Depends(get_sweeper)]
