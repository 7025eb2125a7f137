"""Realtime event fan-out."""

from .broker import EventPublisher, InMemoryBroker, Subscription, relay, session_channel

__all__ = [
    "EventPublisher",
    "InMemoryBroker",
    "Subscription",
    "relay",
    "session_channel",
]
