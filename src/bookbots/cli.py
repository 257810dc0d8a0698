"""CLI entry point for the bookbots daemons.

Provides commands:
  - convert: Run the ebook converter daemon
  - send: Run the Kindle sender daemon (with metrics endpoint)
  - sync: Run the Hardcover to Bookshelf sync loop (or one cycle with --once)
  - status: Display ledger statistics and recent rows
  - oversized: List files tracked as too large for Kindle delivery
  - config: Manage secrets in the system keyring
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated

import aiohttp
import aiosqlite
import typer
from keyring.errors import KeyringError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bookbots import __version__
from bookbots.config import ConverterConfig, SenderConfig, SyncConfig, set_secret
from bookbots.constants import HTTP_TIMEOUT_SECONDS
from bookbots.convert import EbookConverter, ensure_converter_available
from bookbots.database import ConversionLedger, DeliveryLedger, SyncLedger
from bookbots.errors import ConfigError, RemoteAPIError
from bookbots.kindle import (
    KindleSender,
    MetricsServer,
    SenderMetrics,
    SlidingWindowRateLimiter,
    SmtpMailer,
)
from bookbots.pipeline import FileDaemon, StabilityDetector, install_signal_handlers
from bookbots.sync import (
    BookshelfClient,
    HardcoverClient,
    MetadataClient,
    SyncOrchestrator,
    SyncSummary,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

SECRET_NAMES = ("SMTP_PASSWORD", "HARDCOVER_API_KEY", "BOOKSHELF_API_KEY")

app = typer.Typer(
    help="bookbots - ebook conversion, Kindle delivery and Hardcover sync daemons",
    rich_markup_mode="rich",
)
console = Console()

# Config command group
config_app = typer.Typer(help="Manage secrets stored in the system keyring")
app.add_typer(config_app, name="config")


class LedgerKind(str, Enum):
    converter = "converter"
    sender = "sender"
    sync = "sync"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def log_configuration(settings: dict[str, object]) -> None:
    logger.info("Configuration loaded:")
    for key, value in settings.items():
        logger.info("  %s: %s", key, value)


@app.callback()
def app_callback(
    log_level: Annotated[
        str,
        typer.Option("--log-level", envvar="LOG_LEVEL", help="Logging level"),
    ] = "INFO",
) -> None:
    """Configure logging for every command."""
    configure_logging(log_level)


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"bookbots {__version__}")


# ---------------------------------------------------------------------------
# Daemons
# ---------------------------------------------------------------------------


async def _run_converter(config: ConverterConfig) -> None:
    shutdown = asyncio.Event()
    install_signal_handlers(shutdown)

    async with ConversionLedger(config.db_path) as ledger:
        logger.info("Database initialized")
        converter = EbookConverter(config, ledger)
        daemon = FileDaemon(
            name="converter",
            root=config.watch_path,
            extensions=config.input_extensions,
            action=converter,
            workers=config.max_concurrent,
            scan_interval=config.scan_interval,
            detector=StabilityDetector(config.stability_wait),
            exclude_extensions=(config.output_extension,),
            queue_capacity=config.queue_capacity,
        )
        await daemon.run(shutdown)


@app.command()
def convert() -> None:
    """Watch WATCH_PATH and convert new ebooks to EPUB."""
    logger.info("Calibre Converter starting...")
    config = ConverterConfig.from_env()
    try:
        ensure_converter_available(config.converter_bin)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    log_configuration(config.describe())
    asyncio.run(_run_converter(config))


async def _run_sender(config: SenderConfig) -> None:
    shutdown = asyncio.Event()
    install_signal_handlers(shutdown)

    async with DeliveryLedger(config.db_path) as ledger:
        logger.info("Database initialized")

        metrics = SenderMetrics()
        try:
            metrics.load_oversized(await ledger.list_oversized())
        except aiosqlite.Error as e:
            logger.error("Error loading oversized files metrics: %s", e)

        sender = KindleSender(
            config,
            ledger,
            SlidingWindowRateLimiter(config.max_books_per_hour),
            SmtpMailer(
                config.smtp_host,
                config.smtp_port,
                config.smtp_user,
                config.smtp_password,
                timeout=config.smtp_timeout,
            ),
            metrics,
        )
        daemon = FileDaemon(
            name="kindle-sender",
            root=config.watch_path,
            extensions=config.file_extensions,
            action=sender,
            workers=config.max_concurrent,
            scan_interval=config.scan_interval,
            detector=StabilityDetector(config.stability_wait),
            queue_capacity=config.queue_capacity,
        )

        server: MetricsServer | None = None
        if config.metrics_port:
            server = MetricsServer(metrics, config.metrics_port)
            try:
                await server.start()
            except OSError as e:
                logger.error("Metrics server error: %s", e)
                server = None

        try:
            await daemon.run(shutdown)
        finally:
            if server is not None:
                await server.stop()


@app.command()
def send() -> None:
    """Watch WATCH_PATH and email new books to the Kindle address."""
    logger.info("Kindle Sender starting...")
    config = SenderConfig.from_env()
    try:
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    log_configuration(config.describe())
    asyncio.run(_run_sender(config))


async def _run_sync(config: SyncConfig, once: bool) -> SyncSummary | None:
    timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECONDS)
    async with SyncLedger(config.db_path) as ledger, aiohttp.ClientSession(timeout=timeout) as session:
        logger.info("Database initialized")
        orchestrator = SyncOrchestrator(
            config,
            ledger,
            HardcoverClient(session, config.hardcover_api_key),
            BookshelfClient(session, config.bookshelf_url, config.bookshelf_api_key),
            MetadataClient(session, config.metadata_url),
        )
        if once:
            return await orchestrator.run_cycle()

        shutdown = asyncio.Event()
        install_signal_handlers(shutdown)
        await orchestrator.run_forever(shutdown)
        return None


@app.command()
def sync(
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single sync cycle and exit"),
    ] = False,
) -> None:
    """Mirror the Hardcover want-to-read list into Bookshelf."""
    logger.info("Hardcover Sync starting...")
    config = SyncConfig.from_env()
    try:
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    log_configuration(config.describe())
    try:
        summary = asyncio.run(_run_sync(config, once))
    except RemoteAPIError as e:
        console.print(f"[red]Sync failed:[/red] {e}")
        raise typer.Exit(code=1)

    if summary is not None:
        table = Table(title="Sync Summary")
        table.add_column("Result", style="bold")
        table.add_column("Count", justify="right")
        table.add_row("[green]synced[/green]", str(summary.synced))
        table.add_row("already in library", str(summary.already_present))
        table.add_row("[dim]skipped[/dim]", str(summary.skipped))
        table.add_row("[red]errors[/red]", str(summary.errors))
        console.print(table)


# ---------------------------------------------------------------------------
# Ledger inspection
# ---------------------------------------------------------------------------


async def _load_status(db_path: Path, kind: LedgerKind) -> tuple[dict[str, int], Table]:
    if kind is LedgerKind.converter:
        async with ConversionLedger(db_path, read_only=True) as ledger:
            counts = {"converted": await ledger.count()}
            rows = await ledger.recent()
        table = Table(title="Recent Conversions")
        table.add_column("Input", style="bold")
        table.add_column("Output")
        table.add_column("Input Size", justify="right")
        table.add_column("Output Size", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Converted At", style="dim")
        for r in rows:
            duration = "[dim]skipped[/dim]" if r.duration_ms < 0 else f"{r.duration_ms} ms"
            table.add_row(
                Path(r.input_path).name,
                Path(r.output_path).name,
                str(r.input_size),
                str(r.output_size),
                duration,
                r.converted_at or "",
            )
        return counts, table

    if kind is LedgerKind.sender:
        async with DeliveryLedger(db_path, read_only=True) as ledger:
            counts = {
                "sent": await ledger.count(),
                "oversized": await ledger.oversized_count(),
            }
            rows = await ledger.recent()
        table = Table(title="Recently Sent")
        table.add_column("File", style="bold")
        table.add_column("Size", justify="right")
        table.add_column("Sent At", style="dim")
        for r in rows:
            table.add_row(Path(r.file_path).name, str(r.file_size), r.sent_at or "")
        return counts, table

    async with SyncLedger(db_path, read_only=True) as ledger:
        counts = {"synced": await ledger.count()}
        rows = await ledger.recent()
    table = Table(title="Recently Synced")
    table.add_column("Hardcover ID", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Synced At", style="dim")
    for r in rows:
        table.add_row(str(r.hardcover_id), r.title, r.synced_at or "")
    return counts, table


@app.command()
def status(
    db_path: Annotated[
        Path,
        typer.Option("--db", "-d", help="Path to the daemon's SQLite ledger"),
    ],
    kind: Annotated[
        LedgerKind,
        typer.Option("--kind", "-k", help="Which daemon wrote the ledger"),
    ] = LedgerKind.converter,
) -> None:
    """Display ledger counts and the most recent rows."""
    if not db_path.exists():
        console.print(f"[yellow]Database not found:[/yellow] {db_path}")
        raise typer.Exit(code=1)

    try:
        counts, recent_table = asyncio.run(_load_status(db_path, kind))
    except aiosqlite.Error as e:
        console.print(f"[red]Cannot read {kind.value} ledger {db_path}:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(Panel(f"Database: [bold]{db_path}[/bold]", title=f"{kind.value} ledger"))
    for label, count in counts.items():
        console.print(f"[bold]{label.capitalize()}:[/bold] {count}")
    console.print(recent_table)


async def _load_oversized(db_path: Path):
    async with DeliveryLedger(db_path, read_only=True) as ledger:
        return await ledger.list_oversized()


@app.command()
def oversized(
    db_path: Annotated[
        Path,
        typer.Option("--db", "-d", help="Path to the Kindle sender ledger"),
    ] = Path("/data/kindle-sender.db"),
) -> None:
    """List files that were too large to send to Kindle."""
    if not db_path.exists():
        console.print(f"[yellow]Database not found:[/yellow] {db_path}")
        raise typer.Exit(code=1)

    try:
        records = asyncio.run(_load_oversized(db_path))
    except aiosqlite.Error as e:
        console.print(f"[red]Cannot read sender ledger {db_path}:[/red] {e}")
        raise typer.Exit(code=1)
    if not records:
        console.print("[green]No oversized files tracked.[/green]")
        return

    table = Table(title=f"Oversized Files ({len(records)})")
    table.add_column("File", style="bold")
    table.add_column("Size (MB)", justify="right", style="red")
    table.add_column("Max (MB)", justify="right")
    table.add_column("Path", style="dim")
    table.add_column("Detected At", style="dim")
    for r in records:
        table.add_row(
            r.file_name,
            r.size_mb,
            f"{r.max_size / (1024 * 1024):.0f}",
            r.file_path,
            r.detected_at or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@config_app.command("set-secret")
def set_secret_command(
    name: Annotated[
        str,
        typer.Argument(help=f"Secret name, one of: {', '.join(SECRET_NAMES)}"),
    ],
    value: Annotated[
        str,
        typer.Option("--value", prompt=True, hide_input=True, help="Secret value"),
    ],
) -> None:
    """Store a secret in the system keyring (service: bookbots)."""
    name = name.upper()
    if name not in SECRET_NAMES:
        console.print(
            f"[red]Error:[/red] unknown secret {name!r}; expected one of {', '.join(SECRET_NAMES)}"
        )
        raise typer.Exit(code=1)
    if not value.strip():
        console.print("[red]Error:[/red] secret value cannot be empty")
        raise typer.Exit(code=1)

    try:
        set_secret(name, value)
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to store {name}: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {name} stored in system keyring (service: bookbots)")
