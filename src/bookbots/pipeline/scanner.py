"""One-shot recursive directory scan feeding the work queue.

The scan is the correctness backstop for the live watcher: anything the
watcher missed (daemon restart, dropped events, full queue) is found here on
the next periodic pass.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from bookbots.pipeline.queue import WorkQueue

logger = logging.getLogger(__name__)

HandledCheck = Callable[[str], Awaitable[bool]]


def matches_extension(filename: str, extensions: Iterable[str]) -> bool:
    """Case-insensitive suffix match against an extension allow-list."""
    lower = filename.lower()
    return any(lower.endswith(ext.strip().lower()) for ext in extensions if ext.strip())


@dataclass
class ScanSummary:
    """Counts from one scan pass."""

    candidates: int = 0
    queued: int = 0
    dropped: int = 0
    handled: int = 0
    errors: int = 0

    @property
    def summary(self) -> str:
        return (
            f"candidates={self.candidates}, queued={self.queued}, "
            f"dropped={self.dropped}, already_handled={self.handled}, errors={self.errors}"
        )


class DirectoryScanner:
    """Walks a root directory and enqueues files that still need work.

    Usage::

        scanner = DirectoryScanner(root, (".pdf",), queue, converter.is_handled)
        summary = await scanner.scan()
    """

    def __init__(
        self,
        root: Path,
        extensions: Iterable[str],
        queue: WorkQueue,
        is_handled: HandledCheck,
        exclude_extensions: Iterable[str] = (),
    ) -> None:
        self.root = Path(root)
        self.extensions = tuple(extensions)
        self.exclude_extensions = tuple(exclude_extensions)
        self.queue = queue
        self.is_handled = is_handled

    def accepts(self, filename: str) -> bool:
        """True for names on the allow-list that are not excluded."""
        if self.exclude_extensions and matches_extension(filename, self.exclude_extensions):
            return False
        return matches_extension(filename, self.extensions)

    def discover_candidates(self) -> list[Path]:
        """Recursively list regular files with an accepted extension.

        Errors on individual entries are logged and skipped; they never
        abort the walk.
        """
        matched: list[Path] = []

        def _on_error(err: OSError) -> None:
            logger.warning("Error accessing path %s: %s", err.filename, err.strerror or err)

        for dirpath, _dirnames, filenames in os.walk(str(self.root), onerror=_on_error):
            current = Path(dirpath)
            for filename in filenames:
                if not self.accepts(filename):
                    continue
                full_path = current / filename
                if not full_path.is_file():
                    continue
                matched.append(full_path)

        logger.debug("Discovered %d candidate files under %s", len(matched), self.root)
        return matched

    async def scan(self) -> ScanSummary:
        """Walk once and offer every unhandled candidate to the queue."""
        summary = ScanSummary()
        for path in await asyncio.to_thread(self.discover_candidates):
            summary.candidates += 1
            key = str(path)
            try:
                if await self.is_handled(key):
                    summary.handled += 1
                    continue
            except Exception as e:
                summary.errors += 1
                logger.error("Error checking status for %s: %s", key, e)
                continue

            if self.queue.offer(key):
                summary.queued += 1
            else:
                summary.dropped += 1

        logger.info("Scan of %s complete: %s", self.root, summary.summary)
        return summary
