"""Bounded work queue shared by the scanner, the watcher and the workers."""

from __future__ import annotations

import asyncio
import logging
import os

from bookbots.constants import QUEUE_CAPACITY
from bookbots.errors import QueueClosedError

logger = logging.getLogger(__name__)

# Stop marker placed behind pending work; one per worker.
STOP = object()


class WorkQueue:
    """Non-blocking, drop-on-full queue of item keys (file paths).

    Producers call :meth:`offer`, which never waits: when the queue is full
    the item is dropped and found again by the next periodic scan. Once
    :meth:`close` has been called an offer is a programming error and
    raises :class:`QueueClosedError`.
    """

    def __init__(self, capacity: int = QUEUE_CAPACITY) -> None:
        self.capacity = capacity
        # Unbounded underneath; capacity is enforced on items via _pending so
        # stop markers always fit.
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._pending = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._pending

    def offer(self, item: str) -> bool:
        """Enqueue *item* without blocking; return False if it was dropped."""
        if self._closed:
            raise QueueClosedError(f"offer after close: {item}")
        if self._pending >= self.capacity:
            logger.info(
                "Job queue full, skipping %s for now (will be picked up by periodic scan)",
                os.path.basename(item),
            )
            return False
        self._pending += 1
        self._queue.put_nowait(item)
        return True

    async def get(self) -> object:
        """Wait for the next item or the :data:`STOP` marker."""
        item = await self._queue.get()
        if item is not STOP:
            self._pending -= 1
        return item

    def close(self, consumers: int) -> None:
        """Refuse further offers and post one stop marker per consumer.

        Markers land behind every pending item, so consumers drain the
        queue before they exit.
        """
        self._closed = True
        for _ in range(consumers):
            self._queue.put_nowait(STOP)
