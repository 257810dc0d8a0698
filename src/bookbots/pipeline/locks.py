"""In-memory guard against two workers handling the same key at once."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ProcessingLocks:
    """Set of keys currently being processed, guarded by a single mutex.

    The ledger prevents repeating work across runs; this prevents two
    workers of the same run from picking up the same key concurrently.
    One instance is created per daemon and handed to its worker pool.
    """

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._active: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._mutex:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: str) -> None:
        with self._mutex:
            self._active.discard(key)

    def is_held(self, key: str) -> bool:
        with self._mutex:
            return key in self._active

    @contextmanager
    def claim(self, key: str) -> Iterator[bool]:
        """Yield True if *key* was claimed; the claim is released on exit."""
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)
