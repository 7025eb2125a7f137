"""
Realtime fan-out of orchestrator events.

Clients follow a session over named channels:

    session:{session_id}:stream     every StreamEvent
    session:{session_id}:status     phase changes only

EventPublisher is the seam to a hosted pub/sub service; InMemoryBroker is
the in-process implementation used by the CLI and the tests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol, runtime_checkable

from vibeforge.core.agent.models import StreamEvent, StreamEventType

logger = logging.getLogger(__name__)


def session_channel(session_id: str, kind: str = "stream") -> str:
    """Channel name for one aspect of a session."""
    return f"session:{session_id}:{kind}"


@runtime_checkable
class EventPublisher(Protocol):
    """Publishes JSON-serialisable payloads to named channels."""

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """
        Publish a payload.

        Returns:
            Number of subscribers the payload was delivered to
        """
        ...


class Subscription:
    """Queue of payloads for one subscriber of one channel."""

    def __init__(self, broker: InMemoryBroker, channel: str) -> None:
        self.channel = channel
        self._broker = broker
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def deliver(self, payload: dict[str, Any] | None) -> None:
        self._queue.put_nowait(payload)

    async def get(self) -> dict[str, Any] | None:
        """Next payload, or None once the subscription is closed."""
        return await self._queue.get()

    def get_nowait(self) -> dict[str, Any]:
        """
        Next payload without waiting.

        Raises:
            asyncio.QueueEmpty: If nothing is buffered
        """
        payload = self._queue.get_nowait()
        if payload is None:
            raise asyncio.QueueEmpty
        return payload

    def close(self) -> None:
        self._broker.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            payload = await self.get()
            if payload is None:
                return
            yield payload


class InMemoryBroker:
    """In-process pub/sub with one unbounded queue per subscriber."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(self, channel: str) -> Subscription:
        subscription = Subscription(self, channel)
        self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.channel, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
            subscription.deliver(None)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        subscribers = list(self._subscribers.get(channel, []))
        for subscription in subscribers:
            subscription.deliver(dict(payload))
        return len(subscribers)


async def relay(
    stream: AsyncIterator[StreamEvent],
    publisher: EventPublisher,
    session_id: str,
) -> AsyncIterator[StreamEvent]:
    """
    Yield each event of a stream after publishing it.

    Every event goes to the session's stream channel; phase changes are
    also published on its status channel. A failed publish is logged and
    the stream carries on.
    """
    stream_channel = session_channel(session_id)
    status_channel = session_channel(session_id, "status")

    async with aclosing(stream):
        async for event in stream:
            await _publish(publisher, stream_channel, event.model_dump(mode="json", exclude_none=True))
            if event.type == StreamEventType.PHASE_CHANGE and event.phase is not None:
                await _publish(
                    publisher,
                    status_channel,
                    {"status": event.phase.value, "timestamp": event.timestamp},
                )
            yield event


async def _publish(publisher: EventPublisher, channel: str, payload: dict[str, Any]) -> None:
    try:
        await publisher.publish(channel, payload)
    except Exception as e:
        logger.warning("Failed to publish to %s: %s", channel, e)
