"""Environment-driven configuration for the three daemons.

Each daemon reads its settings from environment variables, falling back to
documented defaults when a variable is unset or empty. Secrets are read from
the environment first and from the system keyring second (service
``bookbots``, key = lower-cased variable name).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from bookbots.constants import (
    BYTES_PER_MB,
    CONVERSION_TIMEOUT_SECONDS,
    KEYRING_SERVICE,
    QUEUE_CAPACITY,
)
from bookbots.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_INPUT_EXTENSIONS = ".pdf,.mobi,.azw3,.azw,.djvu,.docx,.rtf,.txt,.html,.htm,.cbz,.cbr"
DEFAULT_KINDLE_EXTENSIONS = ".epub,.mobi,.azw3,.pdf"


def env_str(environ: Mapping[str, str], key: str, default: str) -> str:
    value = environ.get(key, "")
    return value if value else default


def env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    """Read an integer variable; unparsable values fall back to *default*."""
    value = environ.get(key, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using default %d", key, value, default)
        return default


def env_extensions(environ: Mapping[str, str], key: str, default: str) -> tuple[str, ...]:
    """Read a comma-separated extension list, normalised to lower case."""
    raw = env_str(environ, key, default)
    return tuple(ext.strip().lower() for ext in raw.split(",") if ext.strip())


def get_secret(name: str, environ: Mapping[str, str] | None = None) -> str:
    """Get a secret: environment variable first, then the system keyring.

    Args:
        name: Environment variable name, e.g. ``SMTP_PASSWORD``.
        environ: Mapping to read from (defaults to ``os.environ``).

    Returns:
        The secret, or an empty string when neither source has it.
    """
    environ = os.environ if environ is None else environ
    value = environ.get(name, "")
    if value:
        return value

    try:
        stored = keyring.get_password(KEYRING_SERVICE, name.lower())
    except KeyringError as e:
        logger.debug("Keyring unavailable while reading %s: %s", name, e)
        return ""
    return stored or ""


def set_secret(name: str, value: str) -> None:
    """Store a secret in the system keyring under its lower-cased name."""
    keyring.set_password(KEYRING_SERVICE, name.lower(), value)


@dataclass
class ConverterConfig:
    """Settings for the ebook converter daemon."""

    watch_path: Path = field(default_factory=lambda: Path("/media/books"))
    scan_interval: int = 300
    max_concurrent: int = 2
    db_path: Path = field(default_factory=lambda: Path("/data/calibre-converter.db"))
    input_extensions: tuple[str, ...] = field(
        default_factory=lambda: tuple(DEFAULT_INPUT_EXTENSIONS.split(","))
    )
    output_format: str = "epub"
    min_output_size: int = 10240  # 10 KB floor
    stability_wait: int = 5
    converter_bin: str = "ebook-convert"
    conversion_timeout: float = CONVERSION_TIMEOUT_SECONDS
    queue_capacity: int = QUEUE_CAPACITY

    def __post_init__(self) -> None:
        if isinstance(self.watch_path, str):
            self.watch_path = Path(self.watch_path)
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        self.output_format = self.output_format.lstrip(".").lower()

    @property
    def output_extension(self) -> str:
        return f".{self.output_format}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConverterConfig:
        environ = os.environ if environ is None else environ
        return cls(
            watch_path=Path(env_str(environ, "WATCH_PATH", "/media/books")),
            scan_interval=env_int(environ, "SCAN_INTERVAL", 300),
            max_concurrent=env_int(environ, "MAX_CONCURRENT", 2),
            db_path=Path(env_str(environ, "DATABASE_PATH", "/data/calibre-converter.db")),
            input_extensions=env_extensions(environ, "INPUT_EXTENSIONS", DEFAULT_INPUT_EXTENSIONS),
            output_format=env_str(environ, "OUTPUT_FORMAT", "epub"),
            min_output_size=env_int(environ, "MIN_OUTPUT_SIZE", 10240),
            stability_wait=env_int(environ, "STABILITY_WAIT", 5),
            converter_bin=env_str(environ, "CONVERTER_BIN", "ebook-convert"),
            conversion_timeout=env_int(environ, "CONVERSION_TIMEOUT", CONVERSION_TIMEOUT_SECONDS),
        )

    def describe(self) -> dict[str, object]:
        return {
            "Watch Path": self.watch_path,
            "Scan Interval": f"{self.scan_interval} seconds",
            "Max Concurrent": self.max_concurrent,
            "Database Path": self.db_path,
            "Input Extensions": ", ".join(self.input_extensions),
            "Output Format": self.output_format,
            "Min Output Size": f"{self.min_output_size} bytes",
            "Stability Wait": f"{self.stability_wait} seconds",
            "Converter": self.converter_bin,
        }


@dataclass
class SenderConfig:
    """Settings for the Kindle sender daemon."""

    smtp_host: str = ""
    smtp_user: str = ""
    smtp_password: str = ""
    kindle_email: str = ""
    smtp_port: int = 587
    sender_email: str = ""
    watch_path: Path = field(default_factory=lambda: Path("/media/books"))
    scan_interval: int = 300
    max_file_size_mb: int = 50
    file_extensions: tuple[str, ...] = field(
        default_factory=lambda: tuple(DEFAULT_KINDLE_EXTENSIONS.split(","))
    )
    db_path: Path = field(default_factory=lambda: Path("/data/kindle-sender.db"))
    metrics_port: int = 9090
    max_books_per_hour: int = 20
    max_concurrent: int = 1
    stability_wait: int = 2
    smtp_timeout: float = 60.0
    queue_capacity: int = QUEUE_CAPACITY

    def __post_init__(self) -> None:
        if isinstance(self.watch_path, str):
            self.watch_path = Path(self.watch_path)
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if not self.sender_email:
            self.sender_email = self.smtp_user

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * BYTES_PER_MB

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SenderConfig:
        environ = os.environ if environ is None else environ
        smtp_user = env_str(environ, "SMTP_USER", "")
        return cls(
            smtp_host=env_str(environ, "SMTP_HOST", ""),
            smtp_port=env_int(environ, "SMTP_PORT", 587),
            smtp_user=smtp_user,
            smtp_password=get_secret("SMTP_PASSWORD", environ),
            kindle_email=env_str(environ, "KINDLE_EMAIL", ""),
            sender_email=env_str(environ, "SENDER_EMAIL", smtp_user),
            watch_path=Path(env_str(environ, "WATCH_PATH", "/media/books")),
            scan_interval=env_int(environ, "SCAN_INTERVAL", 300),
            max_file_size_mb=env_int(environ, "MAX_FILE_SIZE_MB", 50),
            file_extensions=env_extensions(environ, "FILE_EXTENSIONS", DEFAULT_KINDLE_EXTENSIONS),
            db_path=Path(env_str(environ, "DATABASE_PATH", "/data/kindle-sender.db")),
            metrics_port=env_int(environ, "METRICS_PORT", 9090),
            max_books_per_hour=env_int(environ, "MAX_BOOKS_PER_HOUR", 20),
            max_concurrent=env_int(environ, "MAX_CONCURRENT", 1),
            stability_wait=env_int(environ, "STABILITY_WAIT", 2),
        )

    def validate(self) -> None:
        """Raise ConfigError if SMTP or Kindle settings are incomplete."""
        if not (self.smtp_host and self.smtp_user and self.smtp_password):
            raise ConfigError(
                "SMTP configuration is incomplete. "
                "Please set SMTP_HOST, SMTP_USER, and SMTP_PASSWORD"
            )
        if not self.kindle_email:
            raise ConfigError("KINDLE_EMAIL is not set")

    def describe(self) -> dict[str, object]:
        return {
            "Watch Path": self.watch_path,
            "Scan Interval": f"{self.scan_interval} seconds",
            "Max File Size": f"{self.max_file_size_mb} MB",
            "Max Books Per Hour": self.max_books_per_hour,
            "File Extensions": ", ".join(self.file_extensions),
            "SMTP Host": f"{self.smtp_host}:{self.smtp_port}",
            "Kindle Email": self.kindle_email,
            "Metrics Port": self.metrics_port or "disabled",
        }


@dataclass
class SyncConfig:
    """Settings for the Hardcover to Bookshelf sync daemon."""

    hardcover_api_key: str = ""
    bookshelf_api_key: str = ""
    bookshelf_url: str = "http://bookshelf:8787"
    metadata_url: str = "https://hardcover.bookinfo.pro"
    sync_interval: int = 3600
    db_path: Path = field(default_factory=lambda: Path("/data/hardcover-sync.db"))
    quality_profile_id: int = 1
    metadata_profile_id: int = 1
    root_folder_path: str = "/media/books/"

    def __post_init__(self) -> None:
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        self.bookshelf_url = self.bookshelf_url.rstrip("/")
        self.metadata_url = self.metadata_url.rstrip("/")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SyncConfig:
        environ = os.environ if environ is None else environ
        return cls(
            hardcover_api_key=get_secret("HARDCOVER_API_KEY", environ),
            bookshelf_api_key=get_secret("BOOKSHELF_API_KEY", environ),
            bookshelf_url=env_str(environ, "BOOKSHELF_URL", "http://bookshelf:8787"),
            metadata_url=env_str(environ, "METADATA_URL", "https://hardcover.bookinfo.pro"),
            sync_interval=env_int(environ, "SYNC_INTERVAL", 3600),
            db_path=Path(env_str(environ, "DATABASE_PATH", "/data/hardcover-sync.db")),
            quality_profile_id=env_int(environ, "QUALITY_PROFILE_ID", 1),
            metadata_profile_id=env_int(environ, "METADATA_PROFILE_ID", 1),
            root_folder_path=env_str(environ, "ROOT_FOLDER_PATH", "/media/books/"),
        )

    def validate(self) -> None:
        if not self.hardcover_api_key:
            raise ConfigError("HARDCOVER_API_KEY is not set")
        if not self.bookshelf_api_key:
            raise ConfigError("BOOKSHELF_API_KEY is not set")

    def describe(self) -> dict[str, object]:
        return {
            "Bookshelf URL": self.bookshelf_url,
            "Metadata URL": self.metadata_url,
            "Sync Interval": f"{self.sync_interval} seconds",
            "Database Path": self.db_path,
        }
