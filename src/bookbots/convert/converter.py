"""Ebook conversion action for the converter daemon.

Runs the external converter as ``<bin> <input> <temp-output>``, checks the
result against a minimum size floor, renames the temp file into place,
records the conversion in the ledger and only then deletes the original.

Idempotency rules:

* an input already in the ledger is skipped without touching the tool
* an input whose derived output already exists is recorded with the
  existing output's size and a duration of ``-1`` and left on disk
"""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from bookbots.config import ConverterConfig
from bookbots.constants import SKIPPED_DURATION_MS
from bookbots.database import ConversionLedger
from bookbots.errors import (
    ConfigError,
    ConversionCancelled,
    ConversionError,
    ConversionTimeoutError,
)
from bookbots.models import ConversionOutcome, ConversionRecord

logger = logging.getLogger(__name__)


def output_path_for(input_path: str | os.PathLike[str], output_format: str) -> str:
    """Same directory, same base name, *output_format* extension.

    A name without a stem (``.hidden``) keeps the whole name as the stem.
    """
    path = Path(input_path)
    stem = path.stem if path.suffix else path.name
    return str(path.with_name(f"{stem}.{output_format.lstrip('.')}"))


def temp_path_for(output_path: str) -> str:
    """Collision-proof temp path next to *output_path* (same filesystem)."""
    return f"{output_path}.{secrets.token_hex(8)}.tmp"


def remove_temp_file(temp_path: str) -> None:
    try:
        os.remove(temp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temp file %s: %s", temp_path, e)


def ensure_converter_available(binary: str) -> str:
    """Return the resolved converter path or raise :class:`ConfigError`."""
    resolved = shutil.which(binary)
    if resolved is None:
        raise ConfigError(f"{binary} not found in PATH")
    return resolved


class EbookConverter:
    """Converts one input file per call to :meth:`process`.

    Usage::

        async with ConversionLedger(config.db_path) as ledger:
            converter = EbookConverter(config, ledger)
            outcome = await converter.process("/media/books/book.pdf")
    """

    def __init__(
        self,
        config: ConverterConfig,
        ledger: ConversionLedger,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self._clock = clock
        self._active: set[asyncio.subprocess.Process] = set()
        self._cancelled = False

    async def is_handled(self, path: str) -> bool:
        """True when the ledger has *path* or its output already exists."""
        if await self.ledger.is_converted(path):
            return True
        return os.path.exists(output_path_for(path, self.config.output_format))

    def cancel(self) -> None:
        """Kill running conversions and refuse new ones (daemon shutdown)."""
        self._cancelled = True
        for proc in list(self._active):
            if proc.returncode is None:
                logger.info("Terminating converter process %d", proc.pid)
                proc.kill()

    async def process(self, input_path: str) -> ConversionOutcome:
        """Convert *input_path* unless it was already handled.

        Raises:
            ConversionError: The tool failed, timed out, or produced an
                undersized output. The ledger is not written.
        """
        name = os.path.basename(input_path)
        if input_path.lower().endswith(self.config.output_extension):
            return ConversionOutcome.IGNORED

        if self._cancelled:
            logger.info("Skipping %s: shutdown in progress", name)
            return ConversionOutcome.CANCELLED

        if await self.ledger.is_converted(input_path):
            logger.info("Skipping %s: already converted", name)
            return ConversionOutcome.ALREADY_CONVERTED

        try:
            input_size = os.stat(input_path).st_size
        except OSError as e:
            raise ConversionError(f"failed to stat input file: {e}") from e

        output_path = output_path_for(input_path, self.config.output_format)
        try:
            existing_size = os.stat(output_path).st_size
        except FileNotFoundError:
            existing_size = None

        if existing_size is not None:
            logger.info(
                "Skipping %s: output file %s already exists",
                name,
                os.path.basename(output_path),
            )
            await self.ledger.mark_converted(
                ConversionRecord(
                    input_path=input_path,
                    output_path=output_path,
                    input_size=input_size,
                    output_size=existing_size,
                    duration_ms=SKIPPED_DURATION_MS,
                )
            )
            return ConversionOutcome.OUTPUT_EXISTS

        logger.info("Converting %s...", name)
        try:
            output_size, duration_ms = await self.convert(input_path, output_path)
        except ConversionCancelled:
            logger.info("Conversion of %s cancelled by shutdown", name)
            return ConversionOutcome.CANCELLED

        await self.ledger.mark_converted(
            ConversionRecord(
                input_path=input_path,
                output_path=output_path,
                input_size=input_size,
                output_size=output_size,
                duration_ms=duration_ms,
            )
        )

        try:
            os.remove(input_path)
            logger.info("Deleted original file: %s", name)
        except OSError as e:
            logger.warning("Failed to delete original file %s: %s", name, e)

        logger.info("Successfully converted %s -> %s", name, os.path.basename(output_path))
        return ConversionOutcome.CONVERTED

    async def convert(self, input_path: str, output_path: str) -> tuple[int, int]:
        """Run the tool into a temp file and move it to *output_path*.

        Returns:
            ``(output_size_bytes, duration_ms)``

        Raises:
            ConversionCancelled: :meth:`cancel` ran before the tool finished.
        """
        temp_path = temp_path_for(output_path)
        started = self._clock()
        try:
            returncode, output = await self._run_tool(input_path, temp_path)
        except (ConversionError, ConversionCancelled):
            remove_temp_file(temp_path)
            raise
        if self._cancelled:
            remove_temp_file(temp_path)
            raise ConversionCancelled(input_path)
        duration_ms = int(round((self._clock() - started) * 1000))

        if returncode != 0:
            remove_temp_file(temp_path)
            raise ConversionError(
                f"{self.config.converter_bin} failed with exit code {returncode}",
                output=output,
            )

        try:
            temp_size = os.stat(temp_path).st_size
        except OSError as e:
            remove_temp_file(temp_path)
            raise ConversionError(f"failed to stat temp output file: {e}", output=output) from e

        if temp_size < self.config.min_output_size:
            remove_temp_file(temp_path)
            raise ConversionError(
                f"output file too small: {temp_size} bytes (min: {self.config.min_output_size})",
                output=output,
            )

        try:
            os.replace(temp_path, output_path)
        except OSError as e:
            remove_temp_file(temp_path)
            raise ConversionError(f"failed to rename temp file: {e}") from e

        logger.info(
            "Converted %s -> %s (size: %d bytes, duration: %dms)",
            os.path.basename(input_path),
            os.path.basename(output_path),
            temp_size,
            duration_ms,
        )
        return temp_size, duration_ms

    async def _run_tool(self, input_path: str, temp_path: str) -> tuple[int, str]:
        """Run the converter with a wall-clock timeout.

        Returns:
            ``(returncode, combined_output)``
        """
        if self._cancelled:
            raise ConversionCancelled(input_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.config.converter_bin,
                input_path,
                temp_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ConversionError(f"failed to start {self.config.converter_bin}: {e}") from e

        self._active.add(proc)
        if self._cancelled:
            proc.kill()
        try:
            stdout, _ = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.conversion_timeout
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise ConversionTimeoutError(
                f"{self.config.converter_bin} timed out after {self.config.conversion_timeout}s"
            ) from None
        finally:
            self._active.discard(proc)

        return proc.returncode, (stdout or b"").decode("utf-8", errors="replace")
