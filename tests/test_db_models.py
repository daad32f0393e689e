# tests/test_db_models.py
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from laundry_sync.models import Appliance, ReservationLog
from laundry_sync.repositories.appliance_repo import ApplianceRepository, store_guard
from laundry_sync.repositories.history_repo import ReservationHistoryRepository
from laundry_sync.schemas.appliance import APPLIANCE_NAME_MAX_LENGTH
from laundry_sync.scripts.seed import seed_default_appliances
from laundry_sync.services.errors import ApplianceNotFoundError, StoreUnavailableError


def test_appliance_has_no_status_column():
    assert "status" not in Appliance.__table__.columns
    assert Appliance.__table__.columns["reservation_end"].nullable


def test_name_length_limit_is_shared_with_schemas():
    assert Appliance.__table__.columns["name"].type.length == APPLIANCE_NAME_MAX_LENGTH


def test_appliance_name_is_unique(db_session, repo, clock):
    repo.create("Washer 1", clock.now())
    db_session.add(Appliance(name="Washer 1", created_at=clock.now(), updated_at=clock.now()))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_create_validates_name(repo, clock):
    with pytest.raises(ValueError):
        repo.create("", clock.now())
    with pytest.raises(ValueError):
        repo.create("x" * 101, clock.now())


def test_update_missing_row_raises_not_found(repo, clock, appliances):
    with pytest.raises(ApplianceNotFoundError):
        repo.apply_reservation(99, clock.now() + 60, clock.now())
    with pytest.raises(ApplianceNotFoundError):
        repo.clear_reservation(99, clock.now())


def test_updated_at_never_precedes_created_at(repo, clock, appliances):
    record = repo.apply_reservation(1, clock.now() + 60, clock.now() - 3600)
    assert record.updated_at == record.created_at


def test_bulk_clear_skips_unended_reservations(repo, clock, appliances):
    now = clock.now()
    repo.apply_reservation(1, now + 10, now)
    repo.apply_reservation(2, now + 100, now)

    assert repo.bulk_clear_expired([1, 2], now + 10) == 1
    assert repo.get_by_id(1).reservation_end is None
    assert repo.get_by_id(2).reservation_end == now + 100
    assert repo.bulk_clear_expired([], now) == 0


def test_store_guard_maps_operational_errors():
    with pytest.raises(StoreUnavailableError):
        with store_guard("get_all"):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_repository_rolls_back_on_connectivity_loss(db_session, mocker):
    repo = ApplianceRepository(db_session)
    mocker.patch.object(
        db_session, "scalars", side_effect=OperationalError("SELECT", {}, Exception("gone"))
    )
    rollback = mocker.spy(db_session, "rollback")

    with pytest.raises(StoreUnavailableError):
        repo.get_all()
    rollback.assert_called_once()


def test_history_rejects_bad_entries(db_session, appliances):
    history = ReservationHistoryRepository(db_session)
    with pytest.raises(ValueError):
        history.record(appliances[0], "explode", 1)
    with pytest.raises(ValueError):
        history.record(appliances[0], "reserve", 1)
    with pytest.raises(ValueError):
        history.record(appliances[0], "release", 1, duration_minutes=5)


def test_history_counts(db_session, appliances, clock):
    history = ReservationHistoryRepository(db_session)
    history.record(appliances[0], "reserve", clock.now(), 30)
    history.record(appliances[0], "expire", clock.now())

    assert history.counts_by_action() == {"reserve": 1, "release": 0, "expire": 1}
    assert db_session.query(ReservationLog).count() == 2


def test_seed_is_idempotent(db_session, clock):
    assert seed_default_appliances(db_session, clock) == 5
    assert seed_default_appliances(db_session, clock) == 0
    assert [r.name for r in ApplianceRepository(db_session).get_all()][:2] == ["Washer 1", "Washer 2"]
