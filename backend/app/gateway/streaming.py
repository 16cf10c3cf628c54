"""
Streaming framing for tools/call results.

  tool producer ──► FragmentChannel (bounded) ──► ChunkEmitter.chunks()
                                                     ├── sse()           text/event-stream
                                                     └── chunked_json()  [chunk,chunk,...]

SSE stream:

    event: connected              {"requestId": ..., "tool": ...}
    event: chunk   id: 1..n       StreamChunk
    event: complete               JSON-RPC result {"status": "complete", "totalChunks": n}
    (or event: error              if the producer raised)

Chunked JSON stream: "[" then one StreamChunk object per write, each after
the first prefixed by its separator, then "]". The body is not valid JSON until
the closing bracket arrives.

The emitter looks one fragment ahead so the final chunk can be marked
isLast with its total. Every frame is produced as one string, so a transport
flush never splits a chunk.
"""
import asyncio
import json
import logging
from contextlib import aclosing, suppress
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models.jsonrpc import RequestId

from .envelope import encode_result
from .errors import ChannelClosedError

logger = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


# ── Wire types ────────────────────────────────────────────────────────────────

@dataclass
class SseEvent:
    event: str
    data: Any
    id: Optional[str] = None


def format_sse_event(event: SseEvent) -> str:
    data = event.data if isinstance(event.data, str) else json.dumps(event.data, default=str)
    lines = [f"event: {event.event}"]
    if event.id is not None:
        lines.append(f"id: {event.id}")
    lines.append(f"data: {data}")
    return "\n".join(lines) + "\n\n"


class StreamChunk(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_id: RequestId = None
    sequence: int
    total: Optional[int] = None
    is_last: bool = False
    payload: Any = None

    def to_wire(self) -> dict:
        return {"type": "chunk", **self.model_dump(by_alias=True)}


# ── Fragment channel ──────────────────────────────────────────────────────────

class _Closed:
    __slots__ = ("error",)

    def __init__(self, error: Optional[BaseException]):
        self.error = error


class FragmentChannel:
    """
    Bounded single-producer/single-consumer queue of fragments.

    The producer sends fragments and closes the channel exactly once,
    optionally with the error that ended it. The consumer iterates; a close
    with an error re-raises that error on the consumer side.
    """

    def __init__(self, maxsize: int = 1):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, fragment: Any) -> None:
        if self._closed:
            raise ChannelClosedError("send on a closed fragment channel")
        await self._queue.put(fragment)

    async def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            raise ChannelClosedError("fragment channel already closed")
        self._closed = True
        await self._queue.put(_Closed(error))

    def __aiter__(self) -> "FragmentChannel":
        return self

    async def __anext__(self) -> Any:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            # keep the sentinel so further reads also terminate
            self._queue.put_nowait(item)
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item


async def pump(source: AsyncIterable[Any], channel: FragmentChannel) -> None:
    """Drain `source` into `channel`, closing it once with any producer error."""
    try:
        async for fragment in source:
            await channel.send(fragment)
    except Exception as e:
        await channel.close(e)
        return
    await channel.close()


# ── Emitter ───────────────────────────────────────────────────────────────────

class ChunkEmitter:
    def __init__(
        self,
        request_id: RequestId,
        fragments: AsyncIterable[Any],
        is_disconnected: Optional[DisconnectProbe] = None,
        channel_size: int = 1,
    ):
        self.request_id = request_id
        self._fragments = fragments
        self._is_disconnected = is_disconnected
        self._channel_size = channel_size
        self.disconnected = False
        self.emitted = 0
        self._elements = 0

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        """
        Yield StreamChunks in producer order with sequence numbers from 1.

        A producer error is re-raised after the pending fragment has been
        yielded as a non-final chunk. A client disconnect ends iteration
        without a final chunk. The producer task never outlives this generator.
        """
        channel = FragmentChannel(self._channel_size)
        producer = asyncio.create_task(pump(self._fragments, channel))
        try:
            try:
                pending = await channel.__anext__()
            except StopAsyncIteration:
                yield self._chunk(None, is_last=True)
                return

            while True:
                if await self._client_gone():
                    return
                try:
                    upcoming = await channel.__anext__()
                except StopAsyncIteration:
                    yield self._chunk(pending, is_last=True)
                    return
                except Exception:
                    yield self._chunk(pending, is_last=False)
                    raise
                yield self._chunk(pending, is_last=False)
                pending = upcoming
        finally:
            if not producer.done():
                producer.cancel()
                with suppress(asyncio.CancelledError):
                    await producer

    async def sse(self, **connected: Any) -> AsyncIterator[str]:
        yield format_sse_event(SseEvent("connected", {"requestId": self.request_id, **connected}))
        try:
            async with aclosing(self.chunks()) as chunks:
                async for chunk in chunks:
                    yield format_sse_event(SseEvent("chunk", chunk.to_wire(), id=str(chunk.sequence)))
        except Exception as e:
            logger.warning(f"Stream [{self.request_id}] producer failed after {self.emitted} chunk(s): {e}")
            yield format_sse_event(SseEvent("error", self._error_payload(e)))
            return

        if self.disconnected:
            return
        terminal = encode_result(self.request_id, {"status": "complete", "totalChunks": self.emitted})
        yield format_sse_event(SseEvent("complete", terminal.decode("utf-8")))

    async def chunked_json(self) -> AsyncIterator[str]:
        yield "["
        try:
            async with aclosing(self.chunks()) as chunks:
                async for chunk in chunks:
                    yield self._separated(json.dumps(chunk.to_wire(), default=str))
        except Exception as e:
            logger.warning(f"Stream [{self.request_id}] producer failed after {self.emitted} chunk(s): {e}")
            yield self._separated(json.dumps(self._error_payload(e), default=str))
            yield "]"
            return

        if not self.disconnected:
            yield "]"

    # ── Internals ──────────────────────────────────────────────────────────────

    def _chunk(self, payload: Any, is_last: bool) -> StreamChunk:
        self.emitted += 1
        return StreamChunk(
            request_id=self.request_id,
            sequence=self.emitted,
            total=self.emitted if is_last else None,
            is_last=is_last,
            payload=payload,
        )

    def _separated(self, frame: str) -> str:
        # first element of the array carries no separator
        self._elements += 1
        return frame if self._elements == 1 else "," + frame

    def _error_payload(self, error: BaseException) -> dict:
        return {
            "type": "error",
            "requestId": self.request_id,
            "afterSequence": self.emitted,
            "message": str(error) or type(error).__name__,
        }

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        if await self._is_disconnected():
            self.disconnected = True
            logger.info(f"Stream [{self.request_id}] client disconnected after {self.emitted} chunk(s)")
            return True
        return False
