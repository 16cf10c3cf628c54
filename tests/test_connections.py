"""Tests for the SSE connection registry and heartbeat broadcast."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from api.connections import ConnectionRegistry
from gateway.streaming import SseEvent


class RecordingSink:
    def __init__(self):
        self.frames = []
        self.closed = False

    async def send(self, frame: str) -> None:
        self.frames.append(frame)

    def close(self) -> None:
        self.closed = True


async def collect(iterator):
    return [item async for item in iterator]


@pytest.mark.asyncio
async def test_broadcast_survives_a_failing_sink():
    registry = ConnectionRegistry()
    good, other = RecordingSink(), RecordingSink()
    registry.add("good", good)
    broken = Mock(send=AsyncMock(side_effect=ConnectionResetError("peer went away")))
    registry.add("broken", broken)
    registry.add("other", other)

    delivered = await registry.broadcast(SseEvent("notice", {"n": 1}))

    assert delivered == 2
    assert good.frames == ['event: notice\ndata: {"n": 1}\n\n']
    assert other.frames == good.frames
    broken.send.assert_awaited_once()
    assert "broken" not in registry.active_connections
    assert registry.connection_count == 2


@pytest.mark.asyncio
async def test_connect_and_receive():
    registry = ConnectionRegistry(queue_size=4)
    connection = registry.connect()
    assert registry.connection_count == 1

    await registry.broadcast_event("hello", {"x": 1}, event_id="7")
    frames = connection.frames()
    assert await frames.__anext__() == 'event: hello\nid: 7\ndata: {"x": 1}\n\n'

    registry.disconnect(connection.connection_id)
    registry.disconnect(connection.connection_id)
    assert registry.connection_count == 0


@pytest.mark.asyncio
async def test_slow_consumer_is_dropped():
    registry = ConnectionRegistry(queue_size=1)
    connection = registry.connect()

    assert await registry.broadcast_event("a", {}) == 1
    assert await registry.broadcast_event("b", {}) == 0
    assert connection.connection_id not in registry.active_connections
    assert connection.closed

    # the open stream ends instead of waiting forever on its queue
    remaining = await asyncio.wait_for(collect(connection.frames()), timeout=1.0)
    assert remaining == []


@pytest.mark.asyncio
async def test_heartbeat_loop():
    registry = ConnectionRegistry()
    sink = RecordingSink()
    registry.add("c1", sink)
    stop_event = asyncio.Event()

    task = asyncio.create_task(registry.heartbeat_loop(0.01, stop_event))
    await asyncio.sleep(0.05)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert sink.frames
    assert all(frame.startswith("event: heartbeat\n") for frame in sink.frames)
    assert '"connections": 1' in sink.frames[0]


@pytest.mark.asyncio
async def test_disconnect_ends_stream_after_pending_frames():
    registry = ConnectionRegistry(queue_size=4)
    connection = registry.connect()
    await registry.broadcast_event("one", {})

    registry.disconnect(connection.connection_id)

    frames = await asyncio.wait_for(collect(connection.frames()), timeout=1.0)
    assert frames == ["event: one\ndata: {}\n\n"]
    with pytest.raises(ConnectionError):
        await connection.send("late")
