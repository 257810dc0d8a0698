"""Live filesystem watcher that admits new files into the work queue.

watchdog delivers events on its observer thread; each event is handed to
the asyncio loop with ``call_soon_threadsafe`` and becomes an admission
task there: extension filter, stability wait, then a non-blocking offer.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from bookbots.pipeline.queue import WorkQueue
from bookbots.pipeline.scanner import DirectoryScanner
from bookbots.pipeline.stability import StabilityDetector

logger = logging.getLogger(__name__)


class _CreationHandler(FileSystemEventHandler):
    """Forwards creation and move-into events to the owning watcher."""

    def __init__(self, watcher: DirectoryWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        path = os.fsdecode(event.src_path)
        if isinstance(event, DirCreatedEvent) or event.is_directory:
            # Recursive observers add watches for new directories themselves.
            logger.info("Watching new directory: %s", path)
            return
        if isinstance(event, FileCreatedEvent):
            self._watcher.notify(path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not isinstance(event, FileMovedEvent):
            return
        self._watcher.notify(os.fsdecode(event.dest_path))


class DirectoryWatcher:
    """Watches a directory tree and enqueues files once they are stable.

    Usage::

        watcher = DirectoryWatcher(scanner, detector)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(self, scanner: DirectoryScanner, detector: StabilityDetector) -> None:
        self.root: Path = scanner.root
        self.scanner = scanner
        self.queue: WorkQueue = scanner.queue
        self.detector = detector
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task[bool]] = set()
        self._stopping = False

    async def start(self) -> None:
        """Start the observer thread on the root, recursively."""
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        observer = Observer()
        observer.schedule(_CreationHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching directory: %s", self.root)

    async def stop(self) -> None:
        """Stop the observer and abandon files still waiting for stability."""
        self._stopping = True
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Watcher stopped")

    def notify(self, path: str) -> None:
        """Called from the observer thread for each new file."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule, path)

    def _schedule(self, path: str) -> None:
        if self._stopping:
            return
        task = asyncio.create_task(self.admit(path))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def admit(self, path: str) -> bool:
        """Filter, wait for stability, then offer *path*; True if queued."""
        name = os.path.basename(path)
        if not self.scanner.accepts(name):
            return False

        logger.info("Detected new file: %s, waiting for write to complete...", name)
        if not await self.detector.wait_until_stable(path):
            logger.info("File %s not stable or deleted, skipping", name)
            return False

        if self._stopping or self.queue.closed:
            logger.info("Shutdown in progress, not queueing %s", name)
            return False

        if self.queue.offer(path):
            logger.info("Queued %s", name)
            return True
        return False
