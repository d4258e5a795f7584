"""
Notification Bus - live, in-memory lifecycle signaling.

Handles:
- Fan-out of SyncEvents to subscribers filtered by event kind
- Bounded per-subscriber queues (slow subscribers lose events, never block publishers)
- Bounded recent-history buffer for clients that missed live delivery
"""

import asyncio
from collections import deque
from collections.abc import Iterable

from autoorganize.config import NotificationConfig
from autoorganize.models.events import SyncEvent, SyncEventType
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


class Subscription:
    """
    Stream of events for one subscriber.

    Iterate with ``async for``; iteration ends after :meth:`close`.
    """

    def __init__(self, bus: "NotificationBus", kinds: set[SyncEventType] | None, maxsize: int):
        self._bus = bus
        self.kinds = kinds
        self.queue: asyncio.Queue[SyncEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def accepts(self, event: SyncEvent) -> bool:
        return not self.kinds or event.event_type in self.kinds

    def offer(self, event: SyncEvent) -> bool:
        """Queue an event without blocking; returns False if it was dropped."""
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self, timeout: float | None = None) -> SyncEvent | None:
        """
        Next event, or None once closed.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout``
        """
        if self.closed and self.queue.empty():
            return None
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus.unsubscribe(self)
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass  # get() sees `closed` once the backlog drains

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SyncEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class NotificationBus:
    """
    Publish/subscribe bus for pipeline lifecycle events.

    Not durable: events exist only in subscriber queues and the bounded
    history buffer, and are lost on restart.
    """

    def __init__(self, config: NotificationConfig | None = None):
        """
        Initialize notification bus.

        Args:
            config: Notification configuration (history and queue sizes)
        """
        self.config = config or NotificationConfig()
        self._history: deque[SyncEvent] = deque(maxlen=self.config.history_size)
        self._subscribers: list[Subscription] = []

    def publish(self, event: SyncEvent) -> int:
        """
        Publish an event to the history buffer and matching subscribers.

        Args:
            event: Event to publish

        Returns:
            Number of subscribers the event was delivered to
        """
        self._history.append(event)
        delivered = 0
        for subscription in list(self._subscribers):
            if not subscription.accepts(event):
                continue
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    "Subscriber queue full, dropping event",
                    extra={"event_type": event.event_type.value, "dropped": subscription.dropped},
                )
        logger.debug(
            f"Published {event.event_type.value}",
            extra={"event_id": event.id, "delivered": delivered},
        )
        return delivered

    def subscribe(self, kinds: Iterable[SyncEventType] | None = None) -> Subscription:
        """
        Subscribe to live events.

        Args:
            kinds: Event kinds to receive (all kinds when empty or None)

        Returns:
            Subscription to iterate; close it when done
        """
        subscription = Subscription(
            self, set(kinds) if kinds else None, self.config.subscriber_queue_size
        )
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def list(
        self, limit: int | None = None, kinds: Iterable[SyncEventType] | None = None
    ) -> list[SyncEvent]:
        """
        Recent events from the history buffer, newest first.

        Args:
            limit: Maximum number of events
            kinds: Optional event-kind filter
        """
        wanted = set(kinds) if kinds else None
        events = [e for e in reversed(self._history) if wanted is None or e.event_type in wanted]
        return events[:limit] if limit is not None else events

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        """Close every subscription."""
        for subscription in list(self._subscribers):
            subscription.close()
