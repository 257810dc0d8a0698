"""Prometheus metrics and the HTTP endpoint serving them.

Metrics live in a registry owned by one :class:`SenderMetrics` instance,
created at startup and passed to whatever records into it, so tests can
build isolated instances.
"""

from __future__ import annotations

import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest

from bookbots.models import OversizedRecord

logger = logging.getLogger(__name__)


class SenderMetrics:
    """Counters and gauges exported by the Kindle sender."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.files_sent = Counter(
            "kindle_sender_files_sent_total",
            "Total number of files successfully sent to Kindle",
            registry=self.registry,
        )
        self.file_too_large = Gauge(
            "kindle_sender_file_too_large",
            "Files that are too large to send (1 = too large, includes file info in labels)",
            ["file_path", "file_name", "file_size_mb"],
            registry=self.registry,
        )
        self.files_too_large_total = Gauge(
            "kindle_sender_files_too_large_total",
            "Total count of files that are too large to send",
            registry=self.registry,
        )
        self.send_errors = Counter(
            "kindle_sender_send_errors_total",
            "Total number of send errors",
            registry=self.registry,
        )
        self.rate_limited = Gauge(
            "kindle_sender_rate_limited",
            "Whether sending is currently rate limited (1 = rate limited)",
            registry=self.registry,
        )
        self.files_sent_this_hour = Gauge(
            "kindle_sender_files_sent_this_hour",
            "Number of files sent in the current hour window",
            registry=self.registry,
        )

    def track_oversized(self, record: OversizedRecord) -> None:
        self.file_too_large.labels(record.file_path, record.file_name, record.size_mb).set(1)
        self.files_too_large_total.inc()

    def load_oversized(self, records: list[OversizedRecord]) -> None:
        """Seed the oversize gauges from the ledger at startup."""
        for record in records:
            self.file_too_large.labels(record.file_path, record.file_name, record.size_mb).set(1)
        self.files_too_large_total.set(len(records))

    def render(self) -> bytes:
        return generate_latest(self.registry)


class MetricsServer:
    """Serves ``/metrics`` and ``/health`` on the given port.

    Usage::

        server = MetricsServer(metrics, port=9090)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, metrics: SenderMetrics, port: int, host: str = "0.0.0.0") -> None:
        self.metrics = metrics
        self.port = port
        self.host = host
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/health", self._handle_health)
        return app

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=self.metrics.render(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Starting metrics server on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
