"""Kindle delivery action for the sender daemon.

Checks run in a fixed order for every file:

1. size ceiling (oversized files are tracked, never sent)
2. delivery ledger (already sent files are skipped)
3. rate limiter (rate-limited files stay put for a later scan)
4. send, then record in the ledger and the limiter
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import aiosqlite

from bookbots.config import SenderConfig
from bookbots.database import DeliveryLedger
from bookbots.errors import DeliveryError
from bookbots.kindle.mailer import SmtpMailer, build_message
from bookbots.kindle.metrics import SenderMetrics
from bookbots.kindle.rate_limiter import SlidingWindowRateLimiter
from bookbots.models import DeliveryOutcome, OversizedRecord

logger = logging.getLogger(__name__)


class KindleSender:
    """Mails one file per call to :meth:`process`.

    Usage::

        async with DeliveryLedger(config.db_path) as ledger:
            sender = KindleSender(config, ledger, limiter, mailer, metrics)
            outcome = await sender.process("/media/books/book.epub")
    """

    def __init__(
        self,
        config: SenderConfig,
        ledger: DeliveryLedger,
        limiter: SlidingWindowRateLimiter,
        mailer: SmtpMailer,
        metrics: SenderMetrics,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.limiter = limiter
        self.mailer = mailer
        self.metrics = metrics
        # Rate check, send and record must not interleave across workers.
        self._send_lock = asyncio.Lock()

    async def is_handled(self, path: str) -> bool:
        return await self.ledger.is_sent(path)

    def cancel(self) -> None:
        """Nothing to interrupt; an in-flight SMTP session runs to completion."""

    async def process(self, file_path: str) -> DeliveryOutcome:
        """Send *file_path* to the Kindle address unless a check stops it.

        Raises:
            DeliveryError: The file could not be read or the relay refused it.
                The ledger is not written.
        """
        try:
            file_size = os.stat(file_path).st_size
        except OSError as e:
            raise DeliveryError(f"failed to stat file: {e}") from e

        name = os.path.basename(file_path)
        max_size = self.config.max_file_size_bytes
        if file_size > max_size:
            await self._track_oversized(file_path, name, file_size, max_size)
            return DeliveryOutcome.OVERSIZED

        if await self.ledger.is_sent(file_path):
            logger.info("Skipping %s: already sent", file_path)
            return DeliveryOutcome.ALREADY_SENT

        async with self._send_lock:
            if not self.limiter.can_send():
                wait = self.limiter.time_until_next_slot()
                self.metrics.rate_limited.set(1)
                logger.info(
                    "Rate limit reached (%d/%d per hour). %s will be sent in %.0f minutes",
                    self.limiter.sent_in_window(),
                    self.config.max_books_per_hour,
                    name,
                    wait / 60,
                )
                return DeliveryOutcome.RATE_LIMITED

            self.metrics.rate_limited.set(0)
            self.metrics.files_sent_this_hour.set(self.limiter.sent_in_window())

            try:
                data = await asyncio.to_thread(Path(file_path).read_bytes)
            except OSError as e:
                self.metrics.send_errors.inc()
                raise DeliveryError(f"failed to read attachment: {e}") from e

            message = build_message(
                self.config.sender_email, self.config.kindle_email, Path(file_path), data
            )
            logger.info("Sending %s to %s...", name, self.config.kindle_email)
            try:
                await self.mailer.deliver(message)
            except DeliveryError:
                self.metrics.send_errors.inc()
                raise

            self.limiter.record_send()
            await self.ledger.mark_sent(file_path, file_size)

        sent = self.limiter.sent_in_window()
        self.metrics.files_sent_this_hour.set(sent)
        self.metrics.files_sent.inc()
        logger.info(
            "Successfully sent %s (%d/%d this hour)", name, sent, self.config.max_books_per_hour
        )
        return DeliveryOutcome.SENT

    async def _track_oversized(
        self, file_path: str, name: str, file_size: int, max_size: int
    ) -> None:
        try:
            already_tracked = await self.ledger.is_oversized(file_path)
        except aiosqlite.Error as e:
            logger.error("Error checking oversized status: %s", e)
            already_tracked = False

        record = OversizedRecord(
            file_path=file_path, file_name=name, file_size=file_size, max_size=max_size
        )
        try:
            await self.ledger.mark_oversized(record)
        except aiosqlite.Error as e:
            logger.error("Error tracking oversized file: %s", e)

        if already_tracked:
            logger.info("Skipping %s: already tracked as too large", name)
            return

        self.metrics.track_oversized(record)
        logger.warning(
            "File too large (tracked for dashboard): %s (%s MB, max: %d MB)",
            name,
            record.size_mb,
            self.config.max_file_size_mb,
        )
