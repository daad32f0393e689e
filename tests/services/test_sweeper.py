import asyncio

import pytest

from laundry_sync.repositories.history_repo import ReservationHistoryRepository
from laundry_sync.services.errors import StoreUnavailableError
from laundry_sync.services.reservations import ReservationService
from laundry_sync.services.sweeper import ExpirationSweeper, SweeperState


@pytest.fixture
def service(repo, clock):
    # Reservations in these tests are set up silently; only sweeper events are observed.
    return ReservationService(repo, _NullNotifier(), clock=clock, max_minutes=120)


@pytest.fixture
def sweeper(repo, notifier, clock):
    return ExpirationSweeper(notifier, repo, clock=clock, origin_id="server_test", interval_seconds=0.05)


class _NullNotifier:
    def publish(self, event):
        pass


def test_sweep_clears_only_ended_reservations(sweeper, service, repo, notifier, clock, appliances):
    service.reserve(1, 10)
    service.reserve(2, 20)
    service.reserve(3, 60)

    clock.advance(minutes=30)
    events = sweeper.sweep_once()

    assert sorted(e.record_id for e in events) == [1, 2]
    assert notifier.kinds == ["Expired", "Expired"]
    for event in events:
        assert event.status.status == "available"
        assert event.origin_id == "server_test"

    assert repo.get_by_id(1).reservation_end is None
    assert repo.get_by_id(2).reservation_end is None
    assert repo.get_by_id(3).reservation_end is not None
    assert sweeper.stats.expired_total == 2
    assert sweeper.state is SweeperState.IDLE


def test_status_is_available_before_the_sweep_runs(sweeper, service, repo, clock, appliances):
    service.reserve(4, 5)
    clock.advance(minutes=5)

    # The stored end still lingers, but derivation already reports available.
    assert repo.get_by_id(4).reservation_end is not None
    assert service.get_status(4).status == "available"

    sweeper.sweep_once()
    assert repo.get_by_id(4).reservation_end is None


def test_noop_sweep_writes_and_emits_nothing(sweeper, service, repo, notifier, clock, appliances, mocker):
    service.reserve(1, 60)
    clock.advance(minutes=10)
    spy = mocker.spy(repo, "bulk_clear_expired")

    assert sweeper.sweep_once() == []

    spy.assert_not_called()
    assert notifier.events == []
    assert sweeper.stats.runs == 1


def test_sweep_ignores_rereserved_appliance(sweeper, service, repo, notifier, clock, appliances, mocker):
    service.reserve(1, 10)
    service.reserve(2, 10)
    clock.advance(minutes=15)

    original = repo.bulk_clear_expired

    def racing_clear(ids, now):
        # Appliance 1 is reserved again between the read and the batch write.
        repo.apply_reservation(1, now + 600, now)
        return original(ids, now)

    mocker.patch.object(repo, "bulk_clear_expired", side_effect=racing_clear)

    events = sweeper.sweep_once()

    assert [e.record_id for e in events] == [2]
    assert repo.get_by_id(1).reservation_end == clock.now() + 600


def test_overlapping_tick_is_skipped(sweeper, notifier, appliances):
    sweeper._sweep_lock.acquire()
    try:
        assert sweeper.sweep_once() == []
    finally:
        sweeper._sweep_lock.release()

    assert sweeper.stats.skipped == 1
    assert sweeper.stats.runs == 0


def test_tick_logs_store_failure_and_keeps_going(notifier, clock, mocker):
    store = mocker.Mock()
    store.get_all.side_effect = StoreUnavailableError("database down")
    sweeper = ExpirationSweeper(notifier, store, clock=clock)

    assert sweeper.tick() == 0
    assert sweeper.stats.failures == 1
    assert sweeper.stats.last_error == "database down"
    assert sweeper.state is SweeperState.IDLE
    assert notifier.events == []


def test_sweeper_opens_its_own_session_and_logs_expiry(
    service, notifier, clock, appliances, session_factory, db_session
):
    service.reserve(5, 10)
    clock.advance(minutes=11)

    sweeper = ExpirationSweeper(notifier, clock=clock, session_factory=session_factory)
    events = sweeper.sweep_once()

    assert [e.record_id for e in events] == [5]
    entries = ReservationHistoryRepository(db_session).list_for_appliance(5)
    assert [e.action for e in entries] == ["expire"]


@pytest.mark.asyncio
async def test_start_runs_first_tick_immediately_and_stop_waits(sweeper, service, notifier, clock, appliances):
    service.reserve(1, 10)
    clock.advance(minutes=10)

    await sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if sweeper.stats.runs:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert not sweeper.running
    assert notifier.kinds == ["Expired"]


@pytest.mark.asyncio
async def test_start_twice_is_harmless(sweeper, appliances):
    await sweeper.start()
    await sweeper.start()
    await sweeper.stop()
    await sweeper.stop()
    assert not sweeper.running


@pytest.mark.asyncio
async def test_unexpected_tick_error_does_not_end_the_schedule(notifier, clock, mocker):
    store = mocker.Mock()
    store.get_all.side_effect = RuntimeError("WRONGTYPE Operation against a key")
    sweeper = ExpirationSweeper(notifier, store, clock=clock, interval_seconds=0.02)

    await sweeper.start()
    for _ in range(100):
        if store.get_all.call_count >= 3:
            break
        await asyncio.sleep(0.01)

    assert sweeper.running
    assert store.get_all.call_count >= 3
    assert sweeper.stats.failures >= 3
    assert sweeper.stats.last_error == "WRONGTYPE Operation against a key"

    await sweeper.stop()
    assert not sweeper.running
