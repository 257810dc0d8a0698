"""Tests for the Hardcover to Bookshelf sync: schemas, author choice, cycle flow."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookbots.config import SyncConfig
from bookbots.database import SyncLedger
from bookbots.errors import RemoteAPIError
from bookbots.sync import (
    AuthorPayload,
    BookCreateRequest,
    HardcoverBook,
    SyncOrchestrator,
    pick_author,
)
from bookbots.sync.schemas import HardcoverWork

DUNE = HardcoverBook(id=42, title="Dune", author="Frank Herbert", author_id=7, isbn="")

DUNE_LOOKUP = {
    "title": "Dune",
    "foreignBookId": "hc:42",
    "foreignEditionId": "ed-9",
    "author": {"authorName": "Frank Herbert"},
}

HERBERT = {"id": 3, "authorName": "Frank Herbert", "foreignAuthorId": "hc-a-7"}


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class TestHardcoverBook:
    def test_prefers_isbn13(self) -> None:
        work = HardcoverWork.model_validate(
            {
                "id": 1,
                "title": "Dune",
                "contributions": [{"author": {"id": 7, "name": "Frank Herbert"}}],
                "editions": [{"isbn_13": "9780441013593", "isbn_10": "0441013597"}],
            }
        )
        book = HardcoverBook.from_work(work)
        assert (book.author, book.author_id, book.isbn) == ("Frank Herbert", 7, "9780441013593")

    def test_falls_back_to_isbn10(self) -> None:
        work = HardcoverWork.model_validate(
            {"id": 1, "title": "Dune", "editions": [{"isbn_13": None, "isbn_10": "0441013597"}]}
        )
        assert HardcoverBook.from_work(work).isbn == "0441013597"

    def test_no_contributions_or_editions(self) -> None:
        book = HardcoverBook.from_work(HardcoverWork.model_validate({"id": 5, "title": "Anon"}))
        assert (book.author, book.author_id, book.isbn) == ("", 0, "")
        assert book.title_author_term == "Anon"

    def test_title_author_term(self) -> None:
        assert DUNE.title_author_term == "Dune Frank Herbert"


class TestBookCreateRequest:
    def test_editions_built_from_foreign_edition_id(self) -> None:
        payload = BookCreateRequest.build(DUNE_LOOKUP, 2, 3).to_payload()

        assert payload["editions"] == [
            {"foreignEditionId": "ed-9", "title": "Dune", "monitored": True}
        ]
        assert payload["qualityProfileId"] == 2
        assert payload["metadataProfileId"] == 3
        assert payload["monitored"] is True
        assert payload["addOptions"] == {"searchForNewBook": True}
        assert payload["foreignBookId"] == "hc:42"

    def test_lookup_editions_kept(self) -> None:
        lookup = {"title": "Dune", "editions": [{"foreignEditionId": "x", "isbn13": "978"}]}
        payload = BookCreateRequest.build(lookup, 1, 1).to_payload()
        assert payload["editions"] == [{"foreignEditionId": "x", "isbn13": "978"}]

    def test_null_keys_outside_author_survive(self) -> None:
        lookup = {
            "title": "Dune",
            "seriesTitle": None,
            "editions": [{"foreignEditionId": "x", "isbn13": None}],
        }
        author = AuthorPayload.from_record(
            {"id": 3, "authorName": "Frank Herbert", "overview": None}, 1, 1, "/media/books/"
        )
        payload = BookCreateRequest.build(lookup, 1, 1, author=author).to_payload()

        assert payload["seriesTitle"] is None
        assert payload["editions"] == [{"foreignEditionId": "x", "isbn13": None}]
        assert "overview" not in payload["author"]

    def test_without_author_has_no_author_key(self) -> None:
        payload = BookCreateRequest.build(DUNE_LOOKUP, 1, 1, author=None).to_payload()
        assert "author" not in payload

    def test_existing_author_record_keeps_its_keys(self) -> None:
        author = AuthorPayload.from_record(HERBERT, 1, 2, "/media/books/")
        payload = BookCreateRequest.build(DUNE_LOOKUP, 1, 2, author=author).to_payload()

        assert payload["author"] == {
            "id": 3,
            "foreignAuthorId": "hc-a-7",
            "authorName": "Frank Herbert",
            "qualityProfileId": 1,
            "metadataProfileId": 2,
            "monitored": False,
            "monitorNewItems": "none",
            "rootFolderPath": "/media/books/",
        }

    def test_author_from_work_data(self) -> None:
        work = {"Authors": [{"ForeignId": 7, "Name": "Frank Herbert", "Description": "SF author"}]}
        author = AuthorPayload.from_work_data(work, 1, 1, "/media/books/")

        assert author is not None
        dumped = author.model_dump(by_alias=True, exclude_none=True)
        assert dumped["foreignAuthorId"] == "7"
        assert dumped["authorName"] == "Frank Herbert"
        assert dumped["overview"] == "SF author"
        assert "id" not in dumped

    @pytest.mark.parametrize("work", [None, {}, {"Authors": []}, {"Authors": ["x"]}])
    def test_author_from_unusable_work_data(self, work) -> None:
        assert AuthorPayload.from_work_data(work, 1, 1, "/") is None


class TestPickAuthor:
    def test_exact_match_case_insensitive(self) -> None:
        results = [{"authorName": "Frank Herbert Jr."}, {"authorName": "frank herbert", "id": 9}]
        assert pick_author(results, "Frank Herbert")["id"] == 9

    def test_last_substring_match(self) -> None:
        results = [
            {"authorName": "Brian Herbert"},
            {"authorName": "Frank Herbert Estate", "n": 1},
            {"authorName": "The Frank Herbert Society", "n": 2},
        ]
        assert pick_author(results, "Frank Herbert")["n"] == 2

    def test_first_result_fallback(self) -> None:
        results = [{"authorName": "Someone"}, {"authorName": "Else"}]
        assert pick_author(results, "Frank Herbert") is results[0]

    def test_empty(self) -> None:
        assert pick_author([], "Frank Herbert") is None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture
def clients():
    hardcover = MagicMock()
    hardcover.fetch_want_to_read = AsyncMock(return_value=[DUNE])
    bookshelf = MagicMock()
    bookshelf.list_library = AsyncMock(return_value=[{"title": "Neuromancer"}])
    bookshelf.lookup_books = AsyncMock(return_value=[dict(DUNE_LOOKUP)])
    bookshelf.lookup_authors = AsyncMock(return_value=[dict(HERBERT)])
    bookshelf.add_book = AsyncMock()
    metadata = MagicMock()
    metadata.prime = AsyncMock(return_value=None)
    return hardcover, bookshelf, metadata


@pytest.fixture
def orchestrator(sync_config: SyncConfig, sync_ledger: SyncLedger, clients) -> SyncOrchestrator:
    hardcover, bookshelf, metadata = clients
    return SyncOrchestrator(
        sync_config, sync_ledger, hardcover, bookshelf, metadata, sleep=AsyncMock()
    )


def _submitted(bookshelf) -> dict:
    request: BookCreateRequest = bookshelf.add_book.await_args.args[0]
    return request.to_payload()


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_dune_scenario(self, orchestrator, clients, sync_ledger) -> None:
        _, bookshelf, metadata = clients

        summary = await orchestrator.run_cycle()

        assert (summary.synced, summary.errors) == (1, 0)
        metadata.prime.assert_awaited_once_with(42, 7)
        bookshelf.lookup_books.assert_awaited_once_with("Dune Frank Herbert")
        bookshelf.lookup_authors.assert_awaited_once_with("Frank Herbert")
        payload = _submitted(bookshelf)
        assert payload["author"]["id"] == 3
        assert payload["author"]["rootFolderPath"] == "/media/books/"
        assert await sync_ledger.is_synced(42)
        orchestrator._sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_already_synced_skipped(self, orchestrator, clients, sync_ledger) -> None:
        _, bookshelf, metadata = clients
        await sync_ledger.mark_synced(42, "Dune")

        summary = await orchestrator.run_cycle()

        assert summary.skipped == 1
        metadata.prime.assert_not_awaited()
        bookshelf.add_book.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_title_in_library_recorded_without_create(self, orchestrator, clients, sync_ledger) -> None:
        _, bookshelf, _ = clients
        bookshelf.list_library.return_value = [{"title": "DUNE"}]

        summary = await orchestrator.run_cycle()

        assert summary.already_present == 1
        bookshelf.lookup_books.assert_not_awaited()
        bookshelf.add_book.assert_not_awaited()
        assert await sync_ledger.is_synced(42)

    @pytest.mark.asyncio
    async def test_library_failure_is_not_fatal(self, orchestrator, clients) -> None:
        _, bookshelf, _ = clients
        bookshelf.list_library.side_effect = RemoteAPIError("GET /api/v1/book failed")

        summary = await orchestrator.run_cycle()

        assert summary.synced == 1
        bookshelf.add_book.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_isbn_search_falls_back_to_title_author(self, orchestrator, clients) -> None:
        hardcover, bookshelf, _ = clients
        hardcover.fetch_want_to_read.return_value = [DUNE.model_copy(update={"isbn": "9780441013593"})]
        bookshelf.lookup_books.side_effect = [[], [dict(DUNE_LOOKUP)]]

        summary = await orchestrator.run_cycle()

        assert summary.synced == 1
        terms = [call.args[0] for call in bookshelf.lookup_books.await_args_list]
        assert terms == ["9780441013593", "Dune Frank Herbert"]

    @pytest.mark.asyncio
    async def test_no_search_results_is_per_item_error(self, orchestrator, clients, sync_ledger) -> None:
        _, bookshelf, _ = clients
        bookshelf.lookup_books.return_value = []

        summary = await orchestrator.run_cycle()

        assert (summary.synced, summary.errors) == (0, 1)
        assert not await sync_ledger.is_synced(42)

    @pytest.mark.asyncio
    async def test_author_without_id_uses_work_data(self, orchestrator, clients) -> None:
        _, bookshelf, metadata = clients
        bookshelf.lookup_authors.return_value = [{"authorName": "Frank Herbert", "id": None}]
        metadata.prime.return_value = {
            "Authors": [{"ForeignId": "hc-a-7", "Name": "Frank Herbert", "Description": "x"}]
        }

        await orchestrator.run_cycle()

        author = _submitted(bookshelf)["author"]
        assert author["foreignAuthorId"] == "hc-a-7"
        assert "id" not in author

    @pytest.mark.asyncio
    async def test_submits_without_author_when_unresolved(self, orchestrator, clients, sync_ledger) -> None:
        _, bookshelf, _ = clients
        bookshelf.lookup_authors.side_effect = RemoteAPIError("author lookup 500")

        summary = await orchestrator.run_cycle()

        assert summary.synced == 1
        assert "author" not in _submitted(bookshelf)
        assert await sync_ledger.is_synced(42)

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_cycle(self, orchestrator, clients, sync_ledger) -> None:
        hardcover, bookshelf, _ = clients
        other = HardcoverBook(id=43, title="Hyperion", author="Dan Simmons", author_id=8)
        hardcover.fetch_want_to_read.return_value = [DUNE, other]
        bookshelf.add_book.side_effect = [RemoteAPIError("bookshelf API returned status 400"), None]

        summary = await orchestrator.run_cycle()

        assert (summary.synced, summary.errors) == (1, 1)
        assert not await sync_ledger.is_synced(42)
        assert await sync_ledger.is_synced(43)

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_but_safe_cycle_logs(self, orchestrator, clients) -> None:
        hardcover, _, _ = clients
        hardcover.fetch_want_to_read.side_effect = RemoteAPIError("hardcover API returned status 401")

        with pytest.raises(RemoteAPIError):
            await orchestrator.run_cycle()
        assert await orchestrator._safe_cycle() is None

    @pytest.mark.asyncio
    async def test_malformed_lookup_data_is_per_item_error(self, orchestrator, clients, sync_ledger) -> None:
        hardcover, bookshelf, _ = clients
        other = HardcoverBook(id=43, title="Hyperion", author="Dan Simmons", author_id=8)
        hardcover.fetch_want_to_read.return_value = [DUNE, other]
        bookshelf.lookup_authors.side_effect = [
            [{"authorName": "Frank Herbert", "id": "not-a-number"}],
            [{"authorName": "Dan Simmons", "id": 5}],
        ]

        summary = await orchestrator.run_cycle()

        assert (summary.synced, summary.errors) == (1, 1)
        assert not await sync_ledger.is_synced(42)
        assert await sync_ledger.is_synced(43)

    @pytest.mark.asyncio
    async def test_unexpected_cycle_error_does_not_stop_loop(self, orchestrator, clients) -> None:
        hardcover, _, _ = clients
        hardcover.fetch_want_to_read.side_effect = [KeyError("me"), [DUNE]]
        orchestrator.config.sync_interval = 0.01
        shutdown = asyncio.Event()

        async def stop_after_second_cycle(*args) -> None:
            shutdown.set()

        orchestrator._sleep.side_effect = stop_after_second_cycle

        await asyncio.wait_for(orchestrator.run_forever(shutdown), timeout=5)

        assert hardcover.fetch_want_to_read.await_count == 2
