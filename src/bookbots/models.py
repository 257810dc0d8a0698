"""Data models and outcome enums shared across the daemons."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class ConversionOutcome(str, Enum):
    """Result of handing one file to the converter."""

    CONVERTED = "converted"
    ALREADY_CONVERTED = "already_converted"
    OUTPUT_EXISTS = "output_exists"
    IGNORED = "ignored"
    CANCELLED = "cancelled"


class DeliveryOutcome(str, Enum):
    """Result of handing one file to the Kindle sender."""

    SENT = "sent"
    ALREADY_SENT = "already_sent"
    OVERSIZED = "oversized"
    RATE_LIMITED = "rate_limited"


class SyncOutcome(str, Enum):
    """Result of mirroring one want-to-read book into Bookshelf."""

    ADDED = "added"
    ALREADY_PRESENT = "already_present"


@dataclass(slots=True)
class ConversionRecord:
    """One row of the converter ledger."""

    input_path: str
    output_path: str
    input_size: int
    output_size: int
    duration_ms: int
    converted_at: str | None = None

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class SentRecord:
    """One row of the sender ledger."""

    file_path: str
    file_size: int
    sent_at: str | None = None


@dataclass(slots=True)
class OversizedRecord:
    """A file that exceeds the Kindle size ceiling; kept for observability."""

    file_path: str
    file_name: str
    file_size: int
    max_size: int
    detected_at: str | None = None

    @property
    def size_mb(self) -> str:
        """Size in MB formatted to two decimals, as exported in metric labels."""
        return f"{self.file_size / (1024 * 1024):.2f}"


@dataclass(slots=True)
class SyncedBook:
    """One row of the sync ledger, keyed by the Hardcover book id."""

    hardcover_id: int
    title: str
    synced_at: str | None = None
