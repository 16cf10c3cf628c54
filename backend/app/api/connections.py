import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from gateway.streaming import SseEvent, format_sse_event

logger = logging.getLogger(__name__)


class FrameSink(Protocol):
    async def send(self, frame: str) -> None: ...

    def close(self) -> None: ...


_CLOSED = object()


class SseConnection:
    """One open GET /mcp/sse stream, fed through a bounded queue."""

    def __init__(self, connection_id: str, queue_size: int = 32):
        self.connection_id = connection_id
        self.connected_at = datetime.now(timezone.utc)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    async def send(self, frame: str) -> None:
        if self.closed:
            raise ConnectionError(f"SSE connection {self.connection_id} is closed")
        # a client that stops reading fills its queue and gets dropped
        self._queue.put_nowait(frame)

    def close(self) -> None:
        """End the stream: frames() returns once it reaches the close marker."""
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            # the reader is already too far behind; make room for the marker
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is _CLOSED:
                return
            yield frame


class ConnectionRegistry:
    def __init__(self, queue_size: int = 32):
        self.queue_size = queue_size
        self.active_connections: Dict[str, FrameSink] = {}

    def connect(self) -> SseConnection:
        connection = SseConnection(f"sse-{str(uuid.uuid4())[:8]}", self.queue_size)
        self.add(connection.connection_id, connection)
        return connection

    def add(self, connection_id: str, sink: FrameSink) -> None:
        self.active_connections[connection_id] = sink
        logger.info(f"SSE connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, connection_id: str) -> None:
        sink = self.active_connections.pop(connection_id, None)
        if sink is not None:
            sink.close()
            logger.info(f"SSE disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, event: SseEvent) -> int:
        frame = format_sse_event(event)
        delivered = 0
        disconnected = []
        # iterate over a copy: connect/disconnect may run while a send is awaited
        for connection_id, sink in list(self.active_connections.items()):
            try:
                await sink.send(frame)
                delivered += 1
            except Exception as e:
                logger.error(f"Error broadcasting to {connection_id}: {e}")
                disconnected.append(connection_id)

        for connection_id in disconnected:
            self.disconnect(connection_id)
        return delivered

    async def broadcast_event(self, event_type: str, data: Any, event_id: Optional[str] = None) -> int:
        return await self.broadcast(SseEvent(event_type, data, id=event_id))

    async def heartbeat_loop(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        logger.info(f"SSE heartbeat started — interval={interval_seconds}s")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                await self.broadcast_event(
                    "heartbeat",
                    {
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "connections": self.connection_count,
                    },
                )

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)


_registry_instance: Optional[ConnectionRegistry] = None


def get_connection_registry() -> ConnectionRegistry:
    global _registry_instance
    if _registry_instance is None:
        from config import get_settings

        _registry_instance = ConnectionRegistry(get_settings().SSE_CONNECTION_QUEUE_SIZE)
    return _registry_instance
