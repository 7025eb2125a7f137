"""
Channel/task pair for streaming remote execution.

Provider SDKs report code output through plain synchronous callbacks while
callers consume an async iterator. EventChannel bridges the two: async
producers get backpressure from a bounded buffer, synchronous callbacks
append without blocking, and the reader sees every event in emission order.

stream_execution() runs the remote call as a background task feeding a
channel and yields from it. When the reader stops early the task is
cancelled, so no further SDK calls are made; a process already started on
the remote side may keep running until it exits on its own.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Generic, TypeVar

from .models import CodeExecutionEvent, ExecutionEventType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised when sending on a closed channel."""


class EventChannel(Generic[T]):
    """
    Ordered event buffer between one producer task and one reader.

    send() waits while maxsize events are buffered; send_nowait() never
    waits so it can be used from SDK callbacks. Events sent after close()
    are rejected.
    """

    def __init__(self, maxsize: int = 256) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._maxsize = maxsize
        self._items: deque[T] = deque()
        self._closed = False
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def __len__(self) -> int:
        return len(self._items)

    async def send(self, event: T) -> None:
        """Append an event, waiting for room in the buffer."""
        while not self._closed and len(self._items) >= self._maxsize:
            self._writable.clear()
            await self._writable.wait()
        self._append(event)

    def send_nowait(self, event: T) -> None:
        """Append an event without waiting (buffer may exceed maxsize)."""
        self._append(event)

    def send_threadsafe(self, event: T) -> None:
        """Append an event from a thread other than the event loop's."""
        if self._loop is None:
            raise RuntimeError("channel is not bound to an event loop yet")
        self._loop.call_soon_threadsafe(self._append_if_open, event)

    def bind_loop(self) -> None:
        """Remember the running loop for send_threadsafe()."""
        self._loop = asyncio.get_running_loop()

    def close(self) -> None:
        """Mark the end of the stream; buffered events can still be read."""
        self._closed = True
        self._readable.set()
        self._writable.set()

    async def receive(self) -> T:
        """
        Return the next event.

        Raises:
            ChannelClosed: When the channel is closed and drained
        """
        while not self._items:
            if self._closed:
                raise ChannelClosed("channel closed")
            self._readable.clear()
            await self._readable.wait()
        event = self._items.popleft()
        if len(self._items) < self._maxsize:
            self._writable.set()
        return event

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.receive()
            except ChannelClosed:
                return

    def _append(self, event: T) -> None:
        if self._closed:
            raise ChannelClosed("channel closed")
        self._items.append(event)
        self._readable.set()

    def _append_if_open(self, event: T) -> None:
        if not self._closed:
            self._append(event)


ExecuteFn = Callable[[EventChannel[CodeExecutionEvent]], Awaitable[None]]


async def stream_execution(
    execute: ExecuteFn,
    *,
    maxsize: int = 256,
) -> AsyncIterator[CodeExecutionEvent]:
    """
    Run a remote execution in the background and stream its events.

    Args:
        execute: Coroutine function that feeds the channel it is given
        maxsize: Channel buffer bound

    Yields:
        Events in emission order. An exception raised by execute becomes a
        single error event; the stream always ends with exactly one done
        event. Done events sent by execute itself are dropped.
    """
    channel: EventChannel[CodeExecutionEvent] = EventChannel(maxsize)

    async def runner() -> None:
        channel.bind_loop()
        try:
            await execute(channel)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Remote execution failed: %s", exc)
            channel.send_nowait(
                CodeExecutionEvent(
                    type=ExecutionEventType.ERROR,
                    content=str(exc),
                    metadata={"exception": type(exc).__name__},
                )
            )
        finally:
            channel.close()

    task = asyncio.create_task(runner())
    try:
        async for event in channel:
            if event.type == ExecutionEventType.DONE:
                continue
            yield event
        yield CodeExecutionEvent(type=ExecutionEventType.DONE)
    finally:
        if not task.done():
            task.cancel()
            logger.debug("Reader stopped early; cancelled remote execution task")
        await asyncio.wait({task})
