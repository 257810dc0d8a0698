"""Async SQLite ledgers recording work that must not be repeated.

Wraps aiosqlite to provide one small ledger per daemon. A row's presence
means "already handled, do not reprocess". Rows are written only after the
corresponding side effect succeeded and are never deleted by the daemons.

Each write method commits immediately -- no transactions are held across
``await`` boundaries, so concurrent workers sharing one ledger never block
each other for longer than a single statement.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from bookbots.models import ConversionRecord, OversizedRecord, SentRecord, SyncedBook

logger = logging.getLogger(__name__)

CONVERTER_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS converted_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    input_path TEXT UNIQUE NOT NULL,
    output_path TEXT NOT NULL,
    input_size INTEGER NOT NULL,
    output_size INTEGER NOT NULL,
    converted_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    duration_ms INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_input_path ON converted_files(input_path);
"""

SENDER_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sent_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT UNIQUE NOT NULL,
    file_size INTEGER NOT NULL,
    sent_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_file_path ON sent_files(file_path);

CREATE TABLE IF NOT EXISTS oversized_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT UNIQUE NOT NULL,
    file_name TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    max_size INTEGER NOT NULL,
    detected_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_oversized_file_path ON oversized_files(file_path);
"""

SYNC_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS synced_books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hardcover_id INTEGER UNIQUE NOT NULL,
    title TEXT NOT NULL,
    synced_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_hardcover_id ON synced_books(hardcover_id);
"""


class Ledger:
    """Base class: connection lifecycle, pragmas and schema setup.

    Usage::

        async with ConversionLedger("data/converter.db") as ledger:
            if not await ledger.is_converted(path):
                ...
    """

    schema_sql: str = ""

    def __init__(self, db_path: str | Path, read_only: bool = False) -> None:
        self.db_path = str(db_path)
        self.read_only = read_only
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database, enable WAL mode and create the schema.

        A read-only ledger opens an existing file as-is: no pragmas, no schema.
        """
        if self.read_only:
            uri = f"{Path(self.db_path).resolve().as_uri()}?mode=ro"
            self._db = await aiosqlite.connect(uri, uri=True)
            self._db.row_factory = aiosqlite.Row
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.execute("PRAGMA busy_timeout=5000")

        async with self._db.execute("PRAGMA journal_mode") as cursor:
            row = await cursor.fetchone()
        if row is not None and row[0] != "wal" and self.db_path != ":memory:":
            logger.warning("WAL mode not enabled, got: %s", row[0])

        await self._db.executescript(self.schema_sql)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    async def _exists(self, sql: str, params: tuple) -> bool:
        db = self._ensure_connected()
        async with db.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return row is not None

    async def _write(self, sql: str, params: tuple) -> None:
        db = self._ensure_connected()
        await db.execute(sql, params)
        await db.commit()

    async def _count(self, table: str) -> int:
        db = self._ensure_connected()
        async with db.execute(f"SELECT COUNT(*) AS cnt FROM {table}") as cursor:
            row = await cursor.fetchone()
        return row["cnt"]


class ConversionLedger(Ledger):
    """Ledger of inputs the converter has handled."""

    schema_sql = CONVERTER_SCHEMA_SQL

    async def is_converted(self, input_path: str) -> bool:
        return await self._exists(
            "SELECT 1 FROM converted_files WHERE input_path = ?", (input_path,)
        )

    async def mark_converted(self, record: ConversionRecord) -> None:
        """Record a handled input. A second insert for the same path is ignored."""
        await self._write(
            """INSERT OR IGNORE INTO converted_files
               (input_path, output_path, input_size, output_size, duration_ms)
               VALUES (?, ?, ?, ?, ?)""",
            (
                record.input_path,
                record.output_path,
                record.input_size,
                record.output_size,
                record.duration_ms,
            ),
        )

    async def get_record(self, input_path: str) -> ConversionRecord | None:
        db = self._ensure_connected()
        async with db.execute(
            """SELECT input_path, output_path, input_size, output_size,
                      duration_ms, converted_at
               FROM converted_files WHERE input_path = ?""",
            (input_path,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return ConversionRecord(**dict(row))

    async def recent(self, limit: int = 10) -> list[ConversionRecord]:
        db = self._ensure_connected()
        async with db.execute(
            """SELECT input_path, output_path, input_size, output_size,
                      duration_ms, converted_at
               FROM converted_files ORDER BY id DESC LIMIT ?""",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [ConversionRecord(**dict(r)) for r in rows]

    async def count(self) -> int:
        return await self._count("converted_files")


class DeliveryLedger(Ledger):
    """Ledger of files mailed to the Kindle, plus oversized files seen."""

    schema_sql = SENDER_SCHEMA_SQL

    async def is_sent(self, file_path: str) -> bool:
        return await self._exists("SELECT 1 FROM sent_files WHERE file_path = ?", (file_path,))

    async def mark_sent(self, file_path: str, file_size: int) -> None:
        await self._write(
            "INSERT OR IGNORE INTO sent_files (file_path, file_size) VALUES (?, ?)",
            (file_path, file_size),
        )

    async def is_oversized(self, file_path: str) -> bool:
        return await self._exists(
            "SELECT 1 FROM oversized_files WHERE file_path = ?", (file_path,)
        )

    async def mark_oversized(self, record: OversizedRecord) -> None:
        """Insert or refresh an oversized file entry (size and detection time)."""
        await self._write(
            """INSERT INTO oversized_files (file_path, file_name, file_size, max_size)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(file_path) DO UPDATE SET
                   file_name = excluded.file_name,
                   file_size = excluded.file_size,
                   max_size = excluded.max_size,
                   detected_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')""",
            (record.file_path, record.file_name, record.file_size, record.max_size),
        )

    async def list_oversized(self) -> list[OversizedRecord]:
        db = self._ensure_connected()
        async with db.execute(
            """SELECT file_path, file_name, file_size, max_size, detected_at
               FROM oversized_files ORDER BY file_path"""
        ) as cursor:
            rows = await cursor.fetchall()
        return [OversizedRecord(**dict(r)) for r in rows]

    async def recent(self, limit: int = 10) -> list[SentRecord]:
        db = self._ensure_connected()
        async with db.execute(
            "SELECT file_path, file_size, sent_at FROM sent_files ORDER BY id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [SentRecord(**dict(r)) for r in rows]

    async def count(self) -> int:
        return await self._count("sent_files")

    async def oversized_count(self) -> int:
        return await self._count("oversized_files")


class SyncLedger(Ledger):
    """Ledger of Hardcover books already mirrored into Bookshelf."""

    schema_sql = SYNC_SCHEMA_SQL

    async def is_synced(self, hardcover_id: int) -> bool:
        return await self._exists(
            "SELECT 1 FROM synced_books WHERE hardcover_id = ?", (hardcover_id,)
        )

    async def mark_synced(self, hardcover_id: int, title: str) -> None:
        await self._write(
            "INSERT OR IGNORE INTO synced_books (hardcover_id, title) VALUES (?, ?)",
            (hardcover_id, title),
        )

    async def recent(self, limit: int = 10) -> list[SyncedBook]:
        db = self._ensure_connected()
        async with db.execute(
            "SELECT hardcover_id, title, synced_at FROM synced_books ORDER BY id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [SyncedBook(**dict(r)) for r in rows]

    async def count(self) -> int:
        return await self._count("synced_books")
