"""Scan + watch + worker pool assembly shared by the file-driven daemons.

Shutdown ordering:

1. the shutdown event is set (signal handler)
2. the periodic scan ticker is stopped and awaited
3. the watcher is stopped (no more admissions)
4. the action's cancel hook runs (kills running external processes)
5. the queue is closed and every worker is joined

Producers are always fully stopped before the queue is closed; an offer
after close raises and is treated as a bug, not a condition to handle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

from bookbots.pipeline.locks import ProcessingLocks
from bookbots.pipeline.queue import WorkQueue
from bookbots.pipeline.scanner import DirectoryScanner
from bookbots.pipeline.stability import StabilityDetector
from bookbots.pipeline.watcher import DirectoryWatcher
from bookbots.pipeline.workers import WorkerPool

logger = logging.getLogger(__name__)


class FileAction(Protocol):
    """Domain action plugged into a :class:`FileDaemon`."""

    async def process(self, path: str) -> object: ...

    async def is_handled(self, path: str) -> bool: ...

    def cancel(self) -> None: ...


def install_signal_handlers(shutdown: asyncio.Event) -> None:
    """First SIGINT/SIGTERM sets *shutdown*; a second one exits immediately."""
    loop = asyncio.get_running_loop()
    count = 0

    def _handler(sig: signal.Signals) -> None:
        nonlocal count
        count += 1
        if count == 1:
            logger.warning("Received signal %s, initiating shutdown...", sig.name)
            shutdown.set()
        else:
            logger.warning("Forced shutdown. Exiting immediately.")
            raise SystemExit(1)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handler, sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Could not set signal handler for %s", sig.name)


class FileDaemon:
    """Runs one file action behind a scanner, a watcher and a worker pool.

    Usage::

        daemon = FileDaemon(
            name="converter",
            root=config.watch_path,
            extensions=config.input_extensions,
            action=converter,
            workers=config.max_concurrent,
            scan_interval=config.scan_interval,
            detector=StabilityDetector(config.stability_wait),
        )
        await daemon.run(shutdown_event)
    """

    def __init__(
        self,
        name: str,
        root: Path,
        extensions: tuple[str, ...],
        action: FileAction,
        workers: int,
        scan_interval: float,
        detector: StabilityDetector,
        exclude_extensions: tuple[str, ...] = (),
        queue_capacity: int = 100,
        watch: bool = True,
        locks: ProcessingLocks | None = None,
    ) -> None:
        self.name = name
        self.action = action
        self.scan_interval = scan_interval
        self.queue = WorkQueue(queue_capacity)
        self.scanner = DirectoryScanner(
            root,
            extensions,
            self.queue,
            action.is_handled,
            exclude_extensions=exclude_extensions,
        )
        self.watcher = DirectoryWatcher(self.scanner, detector) if watch else None
        self.pool = WorkerPool(self.queue, action.process, workers, locks=locks, name=name)

    async def run(
        self,
        shutdown: asyncio.Event,
        on_started: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Run until *shutdown* is set, then stop in producer-first order."""
        self.pool.start()

        logger.info("Performing initial scan...")
        await self._safe_scan()
        logger.info("Initial scan completed")

        ticker = asyncio.create_task(self._scan_periodically(shutdown), name=f"{self.name}-scan")
        watcher_started = False
        try:
            if self.watcher is not None:
                logger.info("Starting file watcher...")
                try:
                    await self.watcher.start()
                    watcher_started = True
                except OSError as e:
                    logger.error("Error watching directory %s: %s", self.scanner.root, e)

            if on_started is not None:
                await on_started()

            await shutdown.wait()
        finally:
            shutdown.set()
            logger.info("Waiting for periodic scanner to stop...")
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

            if self.watcher is not None and watcher_started:
                await self.watcher.stop()

            self.action.cancel()

            logger.info("Shutting down workers...")
            await self.pool.stop()
            logger.info("%s shutdown complete", self.name)

    async def _scan_periodically(self, shutdown: asyncio.Event) -> None:
        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.scan_interval)
                return
            except TimeoutError:
                pass
            logger.info("Performing periodic scan...")
            await self._safe_scan()

    async def _safe_scan(self) -> None:
        try:
            await self.scanner.scan()
        except OSError as e:
            logger.error("Error during scan: %s", e)
