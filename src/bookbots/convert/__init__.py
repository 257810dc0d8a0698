"""Ebook-to-EPUB converter daemon."""

from bookbots.convert.converter import (
    EbookConverter,
    ensure_converter_available,
    output_path_for,
    temp_path_for,
)

__all__ = ["EbookConverter", "ensure_converter_available", "output_path_for", "temp_path_for"]
