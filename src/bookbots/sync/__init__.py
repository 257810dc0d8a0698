"""Hardcover want-to-read to Bookshelf mirror."""

from bookbots.sync.bookshelf import BookshelfClient
from bookbots.sync.hardcover import HardcoverClient
from bookbots.sync.metadata import MetadataClient
from bookbots.sync.orchestrator import SyncOrchestrator, SyncSummary, pick_author
from bookbots.sync.schemas import AuthorPayload, BookCreateRequest, HardcoverBook

__all__ = [
    "AuthorPayload",
    "BookCreateRequest",
    "BookshelfClient",
    "HardcoverBook",
    "HardcoverClient",
    "MetadataClient",
    "SyncOrchestrator",
    "SyncSummary",
    "pick_author",
]
