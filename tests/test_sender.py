"""Tests for the Kindle delivery action."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from bookbots.config import SenderConfig
from bookbots.database import DeliveryLedger
from bookbots.errors import DeliveryError
from bookbots.kindle import KindleSender, SenderMetrics, SlidingWindowRateLimiter
from bookbots.models import DeliveryOutcome


def _sample(metrics: SenderMetrics, name: str, labels: dict[str, str] | None = None) -> float:
    value = metrics.registry.get_sample_value(name, labels or {})
    return 0.0 if value is None else value


@pytest.fixture
def mailer() -> MagicMock:
    mailer = MagicMock()
    mailer.deliver = AsyncMock()
    return mailer


@pytest.fixture
def metrics() -> SenderMetrics:
    return SenderMetrics()


@pytest.fixture
def make_sender(sender_config: SenderConfig, delivery_ledger: DeliveryLedger, mailer, metrics, clock):
    def _make(max_per_hour: int = 3) -> KindleSender:
        limiter = SlidingWindowRateLimiter(max_per_hour, clock=clock)
        return KindleSender(sender_config, delivery_ledger, limiter, mailer, metrics)

    return _make


def _book(root: Path, name: str = "Dune.epub", size: int = 2048) -> Path:
    path = root / name
    path.write_bytes(b"e" * size)
    return path


class TestProcess:
    @pytest.mark.asyncio
    async def test_sends_and_records(self, make_sender, mailer, metrics, delivery_ledger, watch_dir) -> None:
        book = _book(watch_dir)
        sender = make_sender()

        assert await sender.process(str(book)) is DeliveryOutcome.SENT

        mailer.deliver.assert_awaited_once()
        message = mailer.deliver.await_args.args[0]
        assert message["To"] == "reader_kindle@kindle.com"
        assert message["From"] == "reader@example.com"
        assert await delivery_ledger.is_sent(str(book))
        assert _sample(metrics, "kindle_sender_files_sent_total") == 1
        assert _sample(metrics, "kindle_sender_files_sent_this_hour") == 1
        assert await sender.is_handled(str(book))

    @pytest.mark.asyncio
    async def test_already_sent_skipped(self, make_sender, mailer, delivery_ledger, watch_dir) -> None:
        book = _book(watch_dir)
        await delivery_ledger.mark_sent(str(book), 2048)

        assert await make_sender().process(str(book)) is DeliveryOutcome.ALREADY_SENT
        mailer.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_tracked_once(self, make_sender, mailer, metrics, delivery_ledger, watch_dir) -> None:
        book = _book(watch_dir, "Huge.pdf", size=2 * 1024 * 1024)
        sender = make_sender()

        assert await sender.process(str(book)) is DeliveryOutcome.OVERSIZED
        assert await sender.process(str(book)) is DeliveryOutcome.OVERSIZED

        mailer.deliver.assert_not_awaited()
        assert not await delivery_ledger.is_sent(str(book))
        assert await delivery_ledger.oversized_count() == 1
        assert _sample(metrics, "kindle_sender_files_too_large_total") == 1
        labels = {"file_path": str(book), "file_name": "Huge.pdf", "file_size_mb": "2.00"}
        assert _sample(metrics, "kindle_sender_file_too_large", labels) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_file_left_for_next_scan(self, make_sender, mailer, metrics, delivery_ledger, watch_dir) -> None:
        sender = make_sender(max_per_hour=1)
        first, second = _book(watch_dir, "a.epub"), _book(watch_dir, "b.epub")

        assert await sender.process(str(first)) is DeliveryOutcome.SENT
        assert await sender.process(str(second)) is DeliveryOutcome.RATE_LIMITED

        assert mailer.deliver.await_count == 1
        assert not await delivery_ledger.is_sent(str(second))
        assert _sample(metrics, "kindle_sender_rate_limited") == 1

    @pytest.mark.asyncio
    async def test_rate_limit_recovers_after_window(self, make_sender, clock, metrics, watch_dir) -> None:
        sender = make_sender(max_per_hour=1)
        await sender.process(str(_book(watch_dir, "a.epub")))
        clock.advance(3601)

        assert await sender.process(str(_book(watch_dir, "b.epub"))) is DeliveryOutcome.SENT
        assert _sample(metrics, "kindle_sender_rate_limited") == 0

    @pytest.mark.asyncio
    async def test_delivery_failure_leaves_no_ledger_row(self, make_sender, mailer, metrics, delivery_ledger, watch_dir) -> None:
        mailer.deliver.side_effect = DeliveryError("relay said no")
        book = _book(watch_dir)
        sender = make_sender()

        with pytest.raises(DeliveryError):
            await sender.process(str(book))

        assert not await delivery_ledger.is_sent(str(book))
        assert sender.limiter.sent_in_window() == 0
        assert _sample(metrics, "kindle_sender_send_errors_total") == 1

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, make_sender, watch_dir) -> None:
        with pytest.raises(DeliveryError, match="failed to stat file"):
            await make_sender().process(str(watch_dir / "gone.epub"))

    @pytest.mark.asyncio
    async def test_concurrent_sends_respect_limit(self, make_sender, mailer, watch_dir) -> None:
        async def slow_deliver(message) -> None:
            await asyncio.sleep(0.01)

        mailer.deliver.side_effect = slow_deliver
        sender = make_sender(max_per_hour=2)
        books = [_book(watch_dir, f"{i}.epub") for i in range(5)]

        outcomes = await asyncio.gather(*(sender.process(str(b)) for b in books))

        assert outcomes.count(DeliveryOutcome.SENT) == 2
        assert outcomes.count(DeliveryOutcome.RATE_LIMITED) == 3
        assert mailer.deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_ledger_failure_after_send_still_counts_against_limit(
        self, make_sender, mailer, delivery_ledger, watch_dir
    ) -> None:
        sender = make_sender(max_per_hour=1)
        delivery_ledger.mark_sent = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))

        with pytest.raises(aiosqlite.OperationalError):
            await sender.process(str(_book(watch_dir, "a.epub")))

        assert mailer.deliver.await_count == 1
        assert sender.limiter.sent_in_window() == 1
        assert await sender.process(str(_book(watch_dir, "b.epub"))) is DeliveryOutcome.RATE_LIMITED
