"""Session events delivered to subscribers.

The session publishes status, params, aliases, captured and error events
into an EventChannel. Each subscriber owns a bounded queue; a slow
subscriber loses its oldest events rather than blocking the session.

Example:
    async with session.events.subscribe() as events:
        async for event in events:
            print(event.kind, event.payload)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import TracebackType
from typing import Any

from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_QUEUE_SIZE",
    "EventChannel",
    "SessionEvent",
    "SessionEventKind",
    "Subscription",
]

DEFAULT_QUEUE_SIZE = 256


class SessionEventKind(str, Enum):
    STATUS = "status"
    PARAMS = "params"
    ALIASES = "aliases"
    CAPTURED = "captured"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """One published event.

    Attributes:
        kind: What happened.
        payload: JSON-ready body.
        generation: Session generation the event belongs to.
        timestamp: UTC publish time.
    """

    kind: SessionEventKind
    payload: dict[str, Any]
    generation: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "payload": self.payload,
            "generation": self.generation,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """A subscriber's queue. Async-iterable until closed."""

    def __init__(self, channel: EventChannel, maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue(maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: SessionEvent) -> None:
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> SessionEvent:
        """Next event.

        Raises:
            StopAsyncIteration: The subscription was closed.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def get_nowait(self) -> SessionEvent | None:
        """Next queued event, or None when nothing is queued."""
        try:
            event = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return event

    def close(self) -> None:
        """Stop receiving events and wake a waiting reader."""
        if self._closed:
            return
        self._closed = True
        self._channel._unsubscribe(self)
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> SessionEvent:
        return await self.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class EventChannel:
    """Fan-out of session events to subscriber queues."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._queue_size)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: SessionEvent) -> None:
        for subscription in list(self._subscribers):
            subscription.deliver(event)
        logger.debug(
            "Event published",
            kind=event.kind.value,
            generation=event.generation,
            subscribers=len(self._subscribers),
        )

    def close(self) -> None:
        """Close every subscription."""
        for subscription in list(self._subscribers):
            subscription.close()
