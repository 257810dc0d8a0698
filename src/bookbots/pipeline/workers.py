"""Fixed-size pool of asyncio workers draining a :class:`WorkQueue`."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable

from bookbots.pipeline.locks import ProcessingLocks
from bookbots.pipeline.queue import STOP, WorkQueue

logger = logging.getLogger(__name__)

Action = Callable[[str], Awaitable[object]]


class WorkerPool:
    """Long-lived workers applying one domain action to each queued item.

    A failure on one item is logged and the worker moves on; nothing an
    action raises can take the process down.

    Usage::

        pool = WorkerPool(queue, converter.process, size=2)
        pool.start()
        ...
        await pool.stop()  # only after every producer has stopped
    """

    def __init__(
        self,
        queue: WorkQueue,
        action: Action,
        size: int,
        locks: ProcessingLocks | None = None,
        name: str = "worker",
    ) -> None:
        self.queue = queue
        self.action = action
        self.size = max(1, size)
        self.locks = locks or ProcessingLocks()
        self.name = name
        self._tasks: list[asyncio.Task[None]] = []
        self.processed = 0
        self.failed = 0

    def start(self) -> None:
        for worker_id in range(1, self.size + 1):
            task = asyncio.create_task(self._run(worker_id), name=f"{self.name}-{worker_id}")
            self._tasks.append(task)
        logger.info("Started %d %s workers", self.size, self.name)

    async def stop(self) -> None:
        """Close the queue, let workers drain it, and wait for them to exit."""
        self.queue.close(consumers=len(self._tasks))
        await asyncio.gather(*self._tasks)
        self._tasks.clear()
        logger.info("All %s workers stopped", self.name)

    async def handle(self, item: str, worker_id: int = 0) -> None:
        """Process one item under its processing lock."""
        name = os.path.basename(item)
        with self.locks.claim(item) as owned:
            if not owned:
                logger.info("Skipping %s: already being processed by another worker", name)
                return
            logger.info("Worker %d: processing %s", worker_id, name)
            try:
                await self.action(item)
                self.processed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error("Worker %d: error processing %s: %s", worker_id, name, e)

    async def _run(self, worker_id: int) -> None:
        while True:
            item = await self.queue.get()
            if item is STOP:
                return
            await self.handle(item, worker_id)
