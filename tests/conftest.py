"""Shared pytest fixtures for the bookbots daemons.

Provides temporary ledgers (file-based for WAL support), a watch
directory, per-daemon configs and a controllable clock.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from bookbots.config import ConverterConfig, SenderConfig, SyncConfig
from bookbots.database import ConversionLedger, DeliveryLedger, SyncLedger


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def watch_dir(tmp_path: Path) -> Path:
    root = tmp_path / "books"
    root.mkdir()
    return root


@pytest.fixture
def converter_config(tmp_path: Path, watch_dir: Path) -> ConverterConfig:
    return ConverterConfig(
        watch_path=watch_dir,
        db_path=tmp_path / "data" / "converter.db",
        stability_wait=1,
        conversion_timeout=5,
    )


@pytest.fixture
def sender_config(tmp_path: Path, watch_dir: Path) -> SenderConfig:
    return SenderConfig(
        smtp_host="smtp.example.com",
        smtp_user="reader@example.com",
        smtp_password="hunter2",
        kindle_email="reader_kindle@kindle.com",
        watch_path=watch_dir,
        db_path=tmp_path / "data" / "sender.db",
        max_file_size_mb=1,
        max_books_per_hour=3,
        metrics_port=0,
    )


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        hardcover_api_key="hc-key",
        bookshelf_api_key="bs-key",
        bookshelf_url="http://bookshelf.test:8787",
        metadata_url="http://metadata.test",
        db_path=tmp_path / "data" / "sync.db",
    )


@pytest_asyncio.fixture
async def conversion_ledger(tmp_path: Path):
    async with ConversionLedger(tmp_path / "data" / "converter.db") as ledger:
        yield ledger


@pytest_asyncio.fixture
async def delivery_ledger(tmp_path: Path):
    async with DeliveryLedger(tmp_path / "data" / "sender.db") as ledger:
        yield ledger


@pytest_asyncio.fixture
async def sync_ledger(tmp_path: Path):
    async with SyncLedger(tmp_path / "data" / "sync.db") as ledger:
        yield ledger
