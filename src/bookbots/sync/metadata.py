"""Best-effort cache priming against the secondary metadata provider.

Requesting ``/work/{id}`` and ``/author/{id}`` makes the provider fetch and
cache the records in the background, so the following Bookshelf lookup can
find them. Every failure here is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from bookbots.constants import METADATA_SETTLE_SECONDS

logger = logging.getLogger(__name__)


class MetadataClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        settle_seconds: float = METADATA_SETTLE_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.settle_seconds = settle_seconds
        self._sleep = sleep

    async def prime(self, work_id: int, author_id: int) -> dict[str, Any] | None:
        """Prime work and author caches; return the work document if decoded."""
        work: dict[str, Any] | None = None

        if work_id > 0:
            try:
                async with self.session.get(f"{self.base_url}/work/{work_id}") as response:
                    if response.status == 200:
                        data = await response.json(content_type=None)
                        if isinstance(data, dict):
                            work = data
                            logger.info("Primed metadata cache for work ID %d", work_id)
                    else:
                        logger.info(
                            "Work lookup returned status %d for ID %d", response.status, work_id
                        )
            except (aiohttp.ClientError, TimeoutError, ValueError) as e:
                logger.debug("Work priming failed for ID %d: %s", work_id, e)

        if author_id > 0:
            try:
                async with self.session.get(f"{self.base_url}/author/{author_id}") as response:
                    if response.status == 200:
                        logger.info("Primed metadata cache for author ID %d", author_id)
            except (aiohttp.ClientError, TimeoutError) as e:
                logger.debug("Author priming failed for ID %d: %s", author_id, e)

        # The provider loads primed records asynchronously.
        await self._sleep(self.settle_seconds)
        return work
