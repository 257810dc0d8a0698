"""File stability detection for freshly created files.

A file copied over the network appears long before its last byte lands.
The detector samples the file size once per poll interval and accepts the
file only after it stayed at the same non-zero size for a required number
of consecutive samples.

The polling loop is a ``tenacity.AsyncRetrying`` that keeps retrying while
the sample reports "not yet stable", with a fixed wait between samples and
a hard stop after the maximum wait.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from tenacity import AsyncRetrying, retry_if_result, stop_after_delay, wait_fixed

from bookbots.constants import MAX_STABILITY_WAIT_SECONDS, STABILITY_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class FileNotStableError(Exception):
    """Raised from a sample when the file can never become stable."""


@dataclass
class _Progress:
    last_size: int = -1
    stable_count: int = 0


class StabilityDetector:
    """Waits for a file's size to stop changing.

    Rules, evaluated on every sample:

    * missing file or stat error -- reject immediately
    * two consecutive zero-byte samples -- reject (placeholder file)
    * same non-zero size as the previous sample -- one more stable sample
    * anything else -- stable count resets to zero
    * ``max_wait`` elapsed -- reject

    Usage::

        detector = StabilityDetector(required_stable=5)
        if await detector.wait_until_stable("/media/books/new.pdf"):
            queue.offer("/media/books/new.pdf")
    """

    def __init__(
        self,
        required_stable: int,
        poll_interval: float = STABILITY_POLL_INTERVAL_SECONDS,
        max_wait: float = MAX_STABILITY_WAIT_SECONDS,
    ) -> None:
        self.required_stable = max(1, required_stable)
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    async def wait_until_stable(self, path: str | os.PathLike[str]) -> bool:
        """Return True once *path* held a stable non-zero size long enough."""
        name = os.path.basename(os.fspath(path))
        progress = _Progress()
        retrying = AsyncRetrying(
            wait=wait_fixed(self.poll_interval),
            stop=stop_after_delay(self.max_wait),
            retry=retry_if_result(lambda stable: not stable),
            retry_error_callback=lambda _state: False,
        )
        try:
            stable = await retrying(self._sample, os.fspath(path), progress)
        except FileNotStableError as e:
            logger.info("File %s: %s", name, e)
            return False

        if not stable:
            logger.info(
                "File %s: stability wait exceeded maximum time of %.0fs",
                name,
                self.max_wait,
            )
        return stable

    async def _sample(self, path: str, progress: _Progress) -> bool:
        try:
            current = os.stat(path).st_size
        except OSError as e:
            raise FileNotStableError(f"disappeared or unreadable ({e.strerror or e})") from e

        if current == 0 and progress.last_size == 0:
            raise FileNotStableError("rejecting empty file (0 bytes)")

        if current == progress.last_size and current > 0:
            progress.stable_count += 1
        else:
            progress.stable_count = 0
        progress.last_size = current

        return progress.stable_count >= self.required_stable
