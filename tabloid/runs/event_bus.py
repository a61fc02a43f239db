"""In-memory pub/sub of run lifecycle events.

One bounded asyncio.Queue per subscriber (one per open stream
connection). publish() is synchronous fan-out: it never awaits, so a slow
subscriber cannot stall the producer. A subscriber whose queue is full is
dropped; its stream drains what it already has and ends, and the client
reconnects.

No persistence, no replay. Per-subscriber order equals publish order.
"""

import asyncio
import itertools
import logging
from typing import Any, Optional, Union

from tabloid.runs.schemas import EventType, RunEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_ids = itertools.count(1)


class Subscription:
    """One subscriber's mailbox."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.id = next(_ids)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = False

    def offer(self, message: dict[str, Any]) -> bool:
        """Non-blocking enqueue. False when the mailbox is full or closed."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            # Wake a reader blocked on an empty queue
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def get(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Next message; None once closed and drained.

        Raises asyncio.TimeoutError if `timeout` elapses with nothing to read.
        """
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def pending(self) -> int:
        return self._queue.qsize()


class EventBus:
    """Registry of live subscriptions with explicit fan-out."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: dict[int, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(maxsize=self.queue_size)
        self._subscribers[sub.id] = sub
        logger.info(f"Subscriber {sub.id} connected ({self.subscriber_count} live)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if self._subscribers.pop(sub.id, None) is not None:
            logger.info(f"Subscriber {sub.id} disconnected ({self.subscriber_count} live)")
        sub.close()

    def publish(self, event: RunEvent) -> int:
        """Fan one event out to every subscriber. Returns deliveries made."""
        message = event.to_message()
        delivered = 0
        for sub in list(self._subscribers.values()):
            if sub.offer(message):
                delivered += 1
                continue
            self._subscribers.pop(sub.id, None)
            sub.dropped = True
            sub.close()
            logger.warning(
                f"Dropped unresponsive subscriber {sub.id} ({sub.pending()} messages backlog)"
            )
        return delivered

    def emit(self, type: Union[EventType, str], run_id: Optional[str] = None, **payload: Any) -> RunEvent:
        """Build and publish an event in one call."""
        event = RunEvent(type=EventType(type), run_id=run_id, payload=payload)
        self.publish(event)
        return event

    def close_all(self) -> None:
        for sub in list(self._subscribers.values()):
            self.unsubscribe(sub)


# Singleton instance
_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create the global EventBus instance."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
