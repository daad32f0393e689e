import asyncio
import json

import pytest

from laundry_sync.schemas.appliance import ApplianceStatus
from laundry_sync.services.notifier import build_event
from laundry_sync.services.push import ChannelClosedError, format_message


def parse_frame(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):-2])


@pytest.fixture
def reserved_event(clock):
    status = ApplianceStatus(id=1, name="Washer 1", status="in-use", remaining_ms=60_000)
    return build_event("Reserved", status, "server_test", clock)


def test_format_message_is_a_single_sse_frame():
    frame = format_message("ping", {"timestamp": 5})
    assert frame == 'data: {"type":"ping","data":{"timestamp":5}}\n\n'


@pytest.mark.asyncio
async def test_publish_reaches_every_observer(push, reserved_event):
    first = push.connect()
    second = push.connect()

    push.publish(reserved_event)

    for channel in (first, second):
        message = parse_frame(await channel.receive(timeout=1))
        assert message["type"] == "status_update"
        assert message["data"] == reserved_event.to_wire()
    assert push.client_count == 2


@pytest.mark.asyncio
async def test_wire_payload_shape(push, reserved_event):
    channel = push.connect()
    push.publish(reserved_event)

    data = parse_frame(await channel.receive(timeout=1))["data"]
    assert set(data) == {"kind", "recordId", "status", "emittedAt", "originId"}
    assert data["status"] == {"id": 1, "name": "Washer 1", "status": "in-use", "remainingMs": 60_000}


@pytest.mark.asyncio
async def test_closed_observer_is_dropped(push, reserved_event):
    gone = push.connect()
    alive = push.connect()
    gone.close()

    push.publish(reserved_event)

    assert push.client_ids() == [alive.client_id]
    assert parse_frame(await alive.receive(timeout=1))["type"] == "status_update"
    with pytest.raises(ChannelClosedError):
        gone.send("data: {}\n\n")


@pytest.mark.asyncio
async def test_slow_observer_is_dropped_without_blocking_others(push, reserved_event):
    slow = push.connect()
    fast = push.connect()

    for _ in range(push.max_pending):
        push.publish(reserved_event)
        await asyncio.sleep(0)
        assert await fast.receive(timeout=1) is not None

    push.publish(reserved_event)
    await asyncio.sleep(0)

    assert slow.client_id not in push.client_ids()
    assert fast.client_id in push.client_ids()
    assert await fast.receive(timeout=1) is not None


@pytest.mark.asyncio
async def test_publish_from_worker_thread(push, reserved_event):
    channel = push.connect()

    await asyncio.to_thread(push.publish, reserved_event)

    assert parse_frame(await channel.receive(timeout=1))["data"]["recordId"] == 1


@pytest.mark.asyncio
async def test_stream_sends_connection_snapshot_updates_and_pings(push, reserved_event):
    channel = push.connect(client_id="client_test")
    snapshot = [ApplianceStatus(id=1, name="Washer 1", status="available")]
    stream = push.stream(channel, snapshot)

    connection = parse_frame(await anext(stream))
    assert connection["type"] == "connection"
    assert connection["data"]["clientId"] == "client_test"

    initial = parse_frame(await anext(stream))
    assert initial["type"] == "initial_status"
    assert initial["data"]["appliances"] == [{"id": 1, "name": "Washer 1", "status": "available"}]

    push.publish(reserved_event)
    update = parse_frame(await anext(stream))
    assert update["type"] == "status_update"

    ping = parse_frame(await anext(stream))
    assert ping["type"] == "ping"

    await stream.aclose()
    assert push.client_count == 0


@pytest.mark.asyncio
async def test_stream_ends_when_observer_disconnects(push):
    channel = push.connect()
    stream = push.stream(channel, [])
    await anext(stream)
    await anext(stream)

    push.disconnect(channel.client_id)

    with pytest.raises(StopAsyncIteration):
        await anext(stream)


@pytest.mark.asyncio
async def test_ping_stats_and_close_all(push):
    channel = push.connect(client_id="client_a")

    assert push.ping() == 1
    assert parse_frame(await channel.receive(timeout=1))["type"] == "ping"

    stats = push.stats()
    assert stats["connectedClients"] == 1
    assert stats["clientIds"] == ["client_a"]
    assert stats["maxPending"] == 10

    push.close_all()
    assert push.client_count == 0
    assert channel.closed


@pytest.mark.asyncio
async def test_receive_times_out_with_none(push):
    channel = push.connect()
    assert await channel.receive(timeout=0.01) is None


def test_connect_accepts_an_explicit_loop(push):
    loop = asyncio.new_event_loop()
    try:
        channel = push.connect(loop=loop)
        assert push.client_ids() == [channel.client_id]
    finally:
        push.disconnect(channel.client_id)
        loop.close()
