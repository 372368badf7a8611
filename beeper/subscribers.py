import asyncio
import logging
from typing import AsyncIterator, Optional, Set

from . import metrics

logger = logging.getLogger(__name__)

UPDATE_EVENT = "update"


class Subscription:
    """A single observer connection, fed through a bounded queue."""

    def __init__(self, maxsize: int = 100):
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def push(self, event: str) -> None:
        if self.closed:
            raise RuntimeError("subscription closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # drop the backlog so the reader sees the end marker
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[str]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class SubscriberRegistry:
    def __init__(self, queue_size: int = 100):
        self._subscribers: Set[Subscription] = set()
        self._queue_size = queue_size

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(maxsize=self._queue_size)
        self._subscribers.add(sub)
        metrics.active_subscribers.set(len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        sub.close()
        metrics.active_subscribers.set(len(self._subscribers))

    def broadcast(self, event: str = UPDATE_EVENT) -> None:
        for sub in list(self._subscribers):
            try:
                sub.push(event)
            except Exception as exc:
                logger.debug("dropping %r for a subscriber: %s", event, exc)
        metrics.broadcasts_total.inc()

    def close_all(self) -> None:
        for sub in list(self._subscribers):
            self.unsubscribe(sub)
