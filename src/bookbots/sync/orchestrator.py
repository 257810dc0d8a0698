"""Hardcover want-to-read to Bookshelf sync cycle.

Per book not yet in the ledger:

1. prime the metadata provider with the work and author ids
2. skip (and record) the book if its title is already in the library
3. search by ISBN, falling back to title + author when that finds nothing
4. resolve an author record, or build one from the primed work data
5. submit the create request built from the first search result
6. record the book in the ledger, then pause briefly

A failure on one book is logged and counted; the cycle moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import aiosqlite
from pydantic import ValidationError

from bookbots.config import SyncConfig
from bookbots.constants import SYNC_ITEM_DELAY_SECONDS
from bookbots.database import SyncLedger
from bookbots.errors import RemoteAPIError
from bookbots.models import SyncOutcome
from bookbots.sync.bookshelf import BookshelfClient
from bookbots.sync.hardcover import HardcoverClient
from bookbots.sync.metadata import MetadataClient
from bookbots.sync.schemas import AuthorPayload, BookCreateRequest, HardcoverBook

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Counts from one sync cycle."""

    synced: int = 0
    skipped: int = 0
    already_present: int = 0
    errors: int = 0

    @property
    def summary(self) -> str:
        return (
            f"{self.synced} new books synced, {self.already_present} already in library, "
            f"{self.skipped} skipped (already synced), {self.errors} errors"
        )


def pick_author(results: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    """Exact case-insensitive name, else the last substring match, else the first result."""
    if not results:
        return None
    target = name.lower()
    partial: dict[str, Any] | None = None
    for record in results:
        candidate = record.get("authorName")
        if not isinstance(candidate, str):
            continue
        if candidate.lower() == target:
            return record
        if target in candidate.lower():
            partial = record
    return partial if partial is not None else results[0]


def title_in_library(library: list[dict[str, Any]], title: str) -> bool:
    wanted = title.casefold()
    return any(
        isinstance(book.get("title"), str) and book["title"].casefold() == wanted
        for book in library
    )


class SyncOrchestrator:
    """Runs sync cycles against injected clients.

    Usage::

        orchestrator = SyncOrchestrator(config, ledger, hardcover, bookshelf, metadata)
        summary = await orchestrator.run_cycle()
    """

    def __init__(
        self,
        config: SyncConfig,
        ledger: SyncLedger,
        hardcover: HardcoverClient,
        bookshelf: BookshelfClient,
        metadata: MetadataClient,
        item_delay: float = SYNC_ITEM_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.hardcover = hardcover
        self.bookshelf = bookshelf
        self.metadata = metadata
        self.item_delay = item_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> SyncSummary:
        """Sync every want-to-read book once.

        Raises:
            RemoteAPIError: The want-to-read list itself could not be fetched.
        """
        logger.info("Starting book sync...")
        books = await self.hardcover.fetch_want_to_read()
        logger.info("Found %d books in want-to-read list", len(books))

        summary = SyncSummary()
        for book in books:
            try:
                if await self.ledger.is_synced(book.id):
                    summary.skipped += 1
                    continue
            except aiosqlite.Error as e:
                logger.error("Error checking sync status for book %d: %s", book.id, e)
                summary.errors += 1
                continue

            try:
                outcome = await self.sync_book(book)
            except RemoteAPIError as e:
                logger.error("Error adding book '%s' to Bookshelf: %s", book.title, e)
                summary.errors += 1
                continue

            try:
                await self.ledger.mark_synced(book.id, book.title)
            except aiosqlite.Error as e:
                logger.error("Error marking book %d as synced: %s", book.id, e)
                summary.errors += 1
                continue

            if outcome is SyncOutcome.ALREADY_PRESENT:
                summary.already_present += 1
            else:
                summary.synced += 1
                logger.info(
                    "Successfully synced book: %s by %s (ID: %d)", book.title, book.author, book.id
                )
            await self._sleep(self.item_delay)

        logger.info("Sync completed: %s", summary.summary)
        return summary

    async def run_forever(self, shutdown: asyncio.Event | None = None) -> None:
        """Initial cycle, then one per ``sync_interval`` until *shutdown* is set."""
        shutdown = shutdown or asyncio.Event()
        logger.info("Performing initial sync...")
        await self._safe_cycle()
        logger.info("Initial sync completed")

        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.config.sync_interval)
                return
            except TimeoutError:
                pass
            await self._safe_cycle()

    async def _safe_cycle(self) -> SyncSummary | None:
        try:
            return await self.run_cycle()
        except (RemoteAPIError, aiosqlite.Error) as e:
            logger.error("Error during sync: %s", e)
            return None
        except Exception:
            logger.exception("Unexpected error during sync")
            return None

    # ------------------------------------------------------------------
    # Per-book flow
    # ------------------------------------------------------------------

    async def sync_book(self, book: HardcoverBook) -> SyncOutcome:
        work = await self.metadata.prime(book.id, book.author_id)

        try:
            library = await self.bookshelf.list_library()
        except RemoteAPIError as e:
            logger.warning("Library request failed: %s", e)
            library = []
        if title_in_library(library, book.title):
            logger.info("Book already exists in Bookshelf library: %s", book.title)
            return SyncOutcome.ALREADY_PRESENT

        results = await self._search(book)
        try:
            author = await self.resolve_author(book, work)
            request = BookCreateRequest.build(
                results[0],
                self.config.quality_profile_id,
                self.config.metadata_profile_id,
                author=author,
            )
        except ValidationError as e:
            raise RemoteAPIError(f"unusable lookup data for {book.title}: {e}") from e
        await self.bookshelf.add_book(request)
        logger.info("Successfully added book to Bookshelf: %s", book.title)
        return SyncOutcome.ADDED

    async def _search(self, book: HardcoverBook) -> list[dict[str, Any]]:
        if book.isbn:
            logger.info("Searching for book by ISBN: %s", book.isbn)
            results = await self.bookshelf.lookup_books(book.isbn)
            if not results:
                logger.info("ISBN search returned no results, trying title + author...")
                try:
                    results = await self.bookshelf.lookup_books(book.title_author_term)
                except RemoteAPIError as e:
                    logger.warning("Title + author search failed: %s", e)
        else:
            logger.info("Searching for book by title/author: %s", book.title_author_term)
            results = await self.bookshelf.lookup_books(book.title_author_term)

        if not results:
            raise RemoteAPIError(f"no search results found for: {book.title} (ISBN: {book.isbn})")
        return results

    async def resolve_author(
        self, book: HardcoverBook, work: dict[str, Any] | None
    ) -> AuthorPayload | None:
        """Existing Bookshelf author, else work-data author, else None."""
        if book.author:
            try:
                candidates = await self.bookshelf.lookup_authors(book.author)
            except RemoteAPIError as e:
                logger.warning("Author lookup failed for '%s': %s", book.author, e)
                candidates = []

            record = pick_author(candidates, book.author)
            if record is not None:
                if record.get("id") is not None:
                    logger.info(
                        "Using existing author from Bookshelf: %s (id: %s)",
                        record.get("authorName"),
                        record["id"],
                    )
                    return AuthorPayload.from_record(
                        record,
                        self.config.quality_profile_id,
                        self.config.metadata_profile_id,
                        self.config.root_folder_path,
                    )
                logger.info(
                    "Author '%s' found in lookup but not in database (id=null), "
                    "will try work endpoint",
                    record.get("authorName"),
                )

        author = AuthorPayload.from_work_data(
            work,
            self.config.quality_profile_id,
            self.config.metadata_profile_id,
            self.config.root_folder_path,
        )
        if author is not None:
            logger.info("Using author data from work endpoint: %s", author.author_name)
        else:
            logger.info("No author resolved for '%s', submitting without author", book.title)
        return author
