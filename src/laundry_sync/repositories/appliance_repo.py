"""Data access for appliance records.

``ApplianceStore`` is the contract the availability core depends on.
``ApplianceRepository`` implements it on a SQLAlchemy session; the
client-only variant lives in ``laundry_sync.repositories.shared_store``.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Protocol, TypeVar

from sqlalchemy import case, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from laundry_sync.models.appliance import Appliance
from laundry_sync.schemas.appliance import ApplianceRecord, validate_appliance_name
from laundry_sync.services.errors import ApplianceNotFoundError, StoreUnavailableError

__all__ = ["ApplianceStore", "ApplianceRepository", "store_guard"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ApplianceStore(Protocol):
    """Persistence collaborator used by the reservation service and the sweeper.

    Every method raises ``StoreUnavailableError`` when the backing store
    cannot be reached.
    """

    def get_all(self) -> list[ApplianceRecord]:
        """Return every appliance ordered by id."""
        ...

    def get_by_id(self, appliance_id: int) -> ApplianceRecord | None:
        """Return one appliance or None."""
        ...

    def apply_reservation(self, appliance_id: int, end: int, now: int) -> ApplianceRecord:
        """Set the reservation end; raise ``ApplianceNotFoundError`` when missing."""
        ...

    def clear_reservation(self, appliance_id: int, now: int) -> ApplianceRecord:
        """Clear the reservation end; raise ``ApplianceNotFoundError`` when missing."""
        ...

    def bulk_clear_expired(self, appliance_ids: Sequence[int], now: int) -> int:
        """Clear reservations that have ended for the given ids in one batch."""
        ...


def _touched(now: int):
    # updated_at never drops below created_at, even with a lagging caller clock.
    return case((Appliance.created_at > now, Appliance.created_at), else_=now)


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
    """Translate database connectivity failures into ``StoreUnavailableError``."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        logger.warning("Appliance store unavailable during %s: %s", operation, exc)
        raise StoreUnavailableError(f"Appliance store unavailable during {operation}") from exc


class ApplianceRepository:
    """SQL implementation of ``ApplianceStore`` on a synchronous session.

    Each write is a single-row UPDATE committed immediately; the database's
    row atomicity is the only isolation between concurrent reservations.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def _run(self, operation: str, func: Callable[[], T]) -> T:
        with store_guard(operation):
            try:
                return func()
            except (OperationalError, InterfaceError):
                self.session.rollback()
                raise

    def get_all(self) -> list[ApplianceRecord]:
        """Return every appliance ordered by id."""

        def _query() -> list[ApplianceRecord]:
            rows = self.session.scalars(select(Appliance).order_by(Appliance.id)).all()
            return [ApplianceRecord.model_validate(row) for row in rows]

        return self._run("get_all", _query)

    def get_by_id(self, appliance_id: int) -> ApplianceRecord | None:
        """Return one appliance or None."""

        def _query() -> ApplianceRecord | None:
            row = self.session.get(Appliance, appliance_id)
            return ApplianceRecord.model_validate(row) if row is not None else None

        return self._run("get_by_id", _query)

    def get_by_name(self, name: str) -> ApplianceRecord | None:
        """Return the appliance with the given name, if any."""

        def _query() -> ApplianceRecord | None:
            row = self.session.scalars(select(Appliance).where(Appliance.name == name)).first()
            return ApplianceRecord.model_validate(row) if row is not None else None

        return self._run("get_by_name", _query)

    def create(self, name: str, now: int) -> ApplianceRecord:
        """Insert a new available appliance."""
        name = validate_appliance_name(name)

        def _insert() -> ApplianceRecord:
            row = Appliance(name=name, created_at=now, updated_at=now)
            self.session.add(row)
            self.session.commit()
            self.session.refresh(row)
            return ApplianceRecord.model_validate(row)

        return self._run("create", _insert)

    def apply_reservation(self, appliance_id: int, end: int, now: int) -> ApplianceRecord:
        """Set ``reservation_end`` for one appliance and return the stored record."""
        return self._update_one("apply_reservation", appliance_id, end, now)

    def clear_reservation(self, appliance_id: int, now: int) -> ApplianceRecord:
        """Clear ``reservation_end`` for one appliance and return the stored record."""
        return self._update_one("clear_reservation", appliance_id, None, now)

    def bulk_clear_expired(self, appliance_ids: Sequence[int], now: int) -> int:
        """Clear ended reservations for ``appliance_ids`` in a single statement.

        Rows re-reserved since the caller read them are left alone, so a sweep
        never wipes a reservation made while it was running.
        """
        ids = list(appliance_ids)
        if not ids:
            return 0

        def _update() -> int:
            result = self.session.execute(
                update(Appliance)
                .where(
                    Appliance.id.in_(ids),
                    Appliance.reservation_end.is_not(None),
                    Appliance.reservation_end <= now,
                )
                .values(reservation_end=None, updated_at=_touched(now))
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            self.session.expire_all()
            return int(result.rowcount or 0)

        return self._run("bulk_clear_expired", _update)

    def _update_one(
        self, operation: str, appliance_id: int, end: int | None, now: int
    ) -> ApplianceRecord:
        def _update() -> ApplianceRecord:
            result = self.session.execute(
                update(Appliance)
                .where(Appliance.id == appliance_id)
                .values(reservation_end=end, updated_at=_touched(now))
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                self.session.rollback()
                raise ApplianceNotFoundError(appliance_id)
            self.session.commit()
            self.session.expire_all()
            row = self.session.get(Appliance, appliance_id)
            if row is None:  # pragma: no cover - deleted between statements
                raise ApplianceNotFoundError(appliance_id)
            return ApplianceRecord.model_validate(row)

        return self._run(operation, _update)
