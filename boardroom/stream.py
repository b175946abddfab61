"""Per-session ordered event channel with a bounded buffer and SSE framing.

The orchestrator is the only producer. Events are numbered in emission order
and delivered exactly once, in that order, to the single consumer. ``emit``
waits when the buffer is full. After ``close`` further emits are dropped; the
consumer still drains what was already buffered. ``disconnect`` is the
consumer going away: it closes the stream and discards the buffer.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator

from boardroom.events import SessionEvent

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 64


@dataclass(frozen=True)
class StreamRecord:
    sequence: int
    session_id: str
    event: SessionEvent

    def to_dict(self) -> dict:
        payload = self.event.to_dict()
        payload["sequence"] = self.sequence
        payload["sessionId"] = self.session_id
        return payload


class EventStream:
    def __init__(self, session_id: str, maxsize: int = DEFAULT_BUFFER_SIZE) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue[StreamRecord] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()
        self._next_sequence = 0
        self._disconnected = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def emit(self, event: SessionEvent) -> bool:
        """Queue an event. Returns False if the stream is closed and the event was dropped."""
        if self.closed:
            self.dropped += 1
            logger.debug("Dropping %s event on closed stream %s", event.type, self.session_id)
            return False

        record = StreamRecord(self._next_sequence, self.session_id, event)
        put = asyncio.ensure_future(self._queue.put(record))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
        if not put.done() or self._disconnected:
            # Stream closed while we were blocked on a full buffer.
            put.cancel()
            self._discard()
            self.dropped += 1
            return False
        self._next_sequence += 1
        return True

    def close(self) -> None:
        """Idempotent. Buffered events remain readable."""
        if not self.closed:
            logger.debug("Closing event stream %s", self.session_id)
            self._closed.set()

    def disconnect(self) -> None:
        """Consumer went away: close and discard anything still buffered."""
        self._disconnected = True
        self.close()
        self._discard()

    def _discard(self) -> None:
        if not self._disconnected:
            return
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[StreamRecord]:
        return self

    async def __anext__(self) -> StreamRecord:
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            raise StopAsyncIteration

        get = asyncio.ensure_future(self._queue.get())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
        if get.done():
            return get.result()
        get.cancel()
        if not self._queue.empty():
            return self._queue.get_nowait()
        raise StopAsyncIteration


def format_sse(record: StreamRecord) -> str:
    return f"data: {json.dumps(record.to_dict(), ensure_ascii=False)}\n\n"


async def sse_frames(stream: EventStream) -> AsyncIterator[str]:
    """Yield each record as a ``data: {json}`` server-sent-event frame."""
    async for record in stream:
        yield format_sse(record)
