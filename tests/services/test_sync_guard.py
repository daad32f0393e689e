import json

import pytest

from laundry_sync.services.errors import MalformedEventError
from laundry_sync.services.sync_guard import SyncGuard, parse_event


def wire_event(
    *,
    kind: str = "Reserved",
    record_id: int = 1,
    emitted_at: int = 1_000,
    origin_id: str = "tab_other",
    status: str = "in-use",
    remaining_ms: int | None = 60_000,
) -> dict:
    snapshot = {"id": record_id, "name": f"Washer {record_id}", "status": status}
    if remaining_ms is not None:
        snapshot["remainingMs"] = remaining_ms
    return {
        "kind": kind,
        "recordId": record_id,
        "status": snapshot,
        "emittedAt": emitted_at,
        "originId": origin_id,
    }


@pytest.fixture
def guard():
    return SyncGuard("tab_self")


def test_accepts_newer_event_and_advances(guard):
    event = guard.admit(json.dumps(wire_event(emitted_at=1_500)))

    assert event is not None
    assert event.record_id == 1
    assert event.status.remaining_ms == 60_000
    assert guard.last_accepted_at == 1_500


def test_accepts_mapping_payloads(guard):
    assert guard.admit(wire_event()) is not None


def test_rejects_own_events(guard):
    assert guard.admit(json.dumps(wire_event(origin_id="tab_self"))) is None
    assert guard.last_accepted_at == 0
    assert guard.rejected_self == 1


def test_same_event_is_applied_exactly_once(guard):
    payload = json.dumps(wire_event(emitted_at=2_000))
    assert guard.admit(payload) is not None
    assert guard.admit(payload) is None
    assert guard.accepted == 1
    assert guard.rejected_stale == 1


def test_rejects_older_and_equal_timestamps(guard):
    guard.admit(wire_event(emitted_at=5_000))

    assert guard.admit(wire_event(emitted_at=4_999, record_id=2)) is None
    assert guard.admit(wire_event(emitted_at=5_000, record_id=3)) is None
    assert guard.admit(wire_event(emitted_at=5_001, record_id=4)) is not None


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps(wire_event(kind="Exploded")),
        json.dumps(wire_event(record_id=0)),
        json.dumps(wire_event(origin_id="")),
        json.dumps(wire_event(emitted_at=True)),
        json.dumps({**wire_event(), "recordId": 2}),
        json.dumps(wire_event(kind="Released")),
        json.dumps({key: value for key, value in wire_event().items() if key != "status"}),
        json.dumps(wire_event(emitted_at="1500")),
    ],
)
def test_malformed_payloads_are_dropped(guard, payload):
    assert guard.admit(payload) is None
    assert guard.last_accepted_at == 0
    assert guard.rejected_malformed == 1


def test_malformed_event_logs_a_warning(guard, caplog):
    with caplog.at_level("WARNING", logger="laundry_sync.services.sync_guard"):
        guard.admit(json.dumps(wire_event(kind="Exploded")))
    assert "malformed" in caplog.text


def test_parse_event_raises_malformed():
    with pytest.raises(MalformedEventError):
        parse_event('{"kind": "Reserved"}')


def test_fast_forward_never_moves_backwards(guard):
    guard.fast_forward(10_000)
    assert guard.last_accepted_at == 10_000
    guard.fast_forward(5_000)
    assert guard.last_accepted_at == 10_000

    assert guard.admit(wire_event(emitted_at=9_000)) is None
    assert guard.admit(wire_event(emitted_at=10_001)) is not None


def test_available_event_without_remaining_time_is_valid(guard):
    event = guard.admit(wire_event(kind="Expired", status="available", remaining_ms=None))
    assert event is not None
    assert event.kind == "Expired"
    assert "remainingMs" not in event.to_wire()["status"]
