"""Fan-out of agent events to live subscriber connections."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

from levered_agent.errors import SinkClosedError
from levered_agent.events import ConnectedEvent, Event

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Anything that accepts a pushed event."""

    def push(self, event: Event) -> None: ...


class SubscriberSink(EventSink, Protocol):
    """A sink backed by a connection that can be closed."""

    def close(self) -> None: ...


class QueueSink:
    """Per-connection sink feeding an SSE response.

    ``push`` never blocks: events are queued and drained by ``stream()``
    at the pace of the client. Once closed, pushes raise
    ``SinkClosedError`` so the broadcaster drops the subscriber.
    """

    def __init__(self, close_on_terminal: bool = True) -> None:
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._closed = False
        self._close_on_terminal = close_on_terminal

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: Event) -> None:
        if self._closed:
            raise SinkClosedError("Subscriber connection is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[Event]:
        """Yield queued events until closed or a terminal event is delivered."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if self._close_on_terminal and event.is_terminal:
                self._closed = True
                return

    async def stream(self) -> AsyncIterator[str]:
        """Yield queued events as SSE frames."""
        async for event in self.events():
            yield event.to_sse()


@dataclass
class Subscriber:
    """A registered connection."""

    id: str
    sink: SubscriberSink
    connected_at: float = field(default_factory=time.time)


class EventBroadcaster:
    """Tracks subscribers and multicasts events to them.

    Delivery is at-most-once per push: a subscriber whose sink fails is
    removed and misses everything after. Nothing is buffered or replayed.
    None of the methods await, so on a single event loop they never
    interleave with each other.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscriber_ids(self) -> list[str]:
        return list(self._subscribers)

    def has_subscriber(self, subscriber_id: str) -> bool:
        return subscriber_id in self._subscribers

    def add_subscriber(self, subscriber_id: str, sink: SubscriberSink) -> Subscriber:
        """Register ``sink`` and acknowledge the connection to it alone."""
        subscriber = Subscriber(id=subscriber_id, sink=sink)
        self._subscribers[subscriber_id] = subscriber
        logger.info("Subscriber connected", extra={"client_id": subscriber_id})
        self._deliver(subscriber, ConnectedEvent(client_id=subscriber_id))
        return subscriber

    def broadcast(self, event: Event) -> None:
        """Push ``event`` to every current subscriber."""
        for subscriber in list(self._subscribers.values()):
            self._deliver(subscriber, event)

    # The broadcaster is itself the sink handed to the process supervisor.
    push = broadcast

    def send_to_one(self, subscriber_id: str, event: Event) -> None:
        """Push ``event`` to a single subscriber if it is still registered."""
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is not None:
            self._deliver(subscriber, event)

    def remove_subscriber(self, subscriber_id: str) -> None:
        """Close and forget a subscriber. Unknown ids are ignored."""
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return
        try:
            subscriber.sink.close()
        except Exception as e:
            logger.debug(f"Error closing subscriber {subscriber_id}: {e}")
        logger.info("Subscriber disconnected", extra={"client_id": subscriber_id})

    def close_all(self) -> None:
        """Remove every subscriber."""
        for subscriber_id in list(self._subscribers):
            self.remove_subscriber(subscriber_id)

    def _deliver(self, subscriber: Subscriber, event: Event) -> None:
        try:
            subscriber.sink.push(event)
        except Exception as e:
            logger.warning(
                f"Dropping subscriber after failed delivery of {event.type.value}: {e}",
                extra={"client_id": subscriber.id},
            )
            self.remove_subscriber(subscriber.id)
