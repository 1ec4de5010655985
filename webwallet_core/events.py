"""
Wallet event broadcasting.

Fans out WalletEvents from the status watcher to in-process subscribers
(e.g. a websocket dispatcher in the API layer). Each subscriber gets its
own bounded asyncio.Queue; a subscriber that stops draining its queue is
dropped instead of blocking the watcher.
"""

import asyncio
import logging
from typing import List, Optional, Protocol, Set

from .models.schemas import WalletEvent

logger = logging.getLogger("Webwallet.Events")


class EventSink(Protocol):
    """Anything the status watcher can publish wallet events to."""

    async def broadcast(self, event: WalletEvent) -> int: ...


class EventBroadcaster:
    """Manages subscriber queues and event broadcasting."""

    def __init__(self, max_history: int = 100, queue_size: int = 256):
        self._subscribers: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()
        self._history: List[WalletEvent] = []
        self._max_history = max_history
        self._queue_size = queue_size

    async def subscribe(self) -> asyncio.Queue:
        """Register a new subscriber and return its queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._subscribers.add(queue)
            logger.info(f"Subscriber added. Total subscribers: {len(self._subscribers)}")
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Remove a subscriber."""
        async with self._lock:
            self._subscribers.discard(queue)
            logger.info(f"Subscriber removed. Total subscribers: {len(self._subscribers)}")

    async def broadcast(self, event: WalletEvent) -> int:
        """
        Broadcast an event to all subscribers.

        Returns the number of subscribers that received the event.
        """
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        sent_count = 0
        overflowing = []

        async with self._lock:
            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                    sent_count += 1
                except asyncio.QueueFull:
                    logger.warning("Subscriber queue full, dropping subscriber")
                    overflowing.append(queue)

            for queue in overflowing:
                self._subscribers.discard(queue)

        logger.debug(
            f"Broadcast {event.event_type.value} for wallet {event.wallet_id} "
            f"to {sent_count}/{len(self._subscribers)} subscribers"
        )
        return sent_count

    def get_history(self, limit: int = 50, owner: Optional[str] = None) -> List[WalletEvent]:
        """Get recent events, optionally only those of one owner."""
        events = self._history
        if owner is not None:
            events = [e for e in events if e.owner == owner]
        return events[-limit:]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
