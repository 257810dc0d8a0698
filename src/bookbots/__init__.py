"""Personal media automation daemons: ebook converter, Kindle sender, Hardcover sync."""

__version__ = "0.1.0"

from bookbots.models import ConversionRecord, OversizedRecord, SyncedBook

__all__ = [
    "ConversionRecord",
    "OversizedRecord",
    "SyncedBook",
    "__version__",
]
