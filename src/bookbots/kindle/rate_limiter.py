"""Sliding one-hour window over past send times.

Not a token bucket: up to ``max_per_hour`` sends are allowed within any
trailing hour, measured from the actual send instants rather than from
wall-clock hour boundaries.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

from bookbots.constants import RATE_LIMIT_WINDOW_SECONDS


class SlidingWindowRateLimiter:
    """Counts sends in the trailing window; safe to share across workers.

    Usage::

        limiter = SlidingWindowRateLimiter(max_per_hour=20)
        if limiter.can_send():
            send()
            limiter.record_send()
        else:
            wait = limiter.time_until_next_slot()
    """

    def __init__(
        self,
        max_per_hour: int,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_per_hour = max_per_hour
        self.window_seconds = window_seconds
        self._clock = clock
        self._sends: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._sends and self._sends[0] <= cutoff:
            self._sends.popleft()

    def can_send(self) -> bool:
        with self._lock:
            self._prune(self._clock())
            return len(self._sends) < self.max_per_hour

    def record_send(self) -> None:
        with self._lock:
            self._sends.append(self._clock())

    def sent_in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._sends)

    def remaining(self) -> int:
        """Sends still allowed in the current window."""
        return max(0, self.max_per_hour - self.sent_in_window())

    def time_until_next_slot(self) -> float:
        """Seconds until a send is allowed again; 0.0 if one is allowed now."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._sends) < self.max_per_hour or not self._sends:
                return 0.0
            return max(0.0, self._sends[0] + self.window_seconds - now)
