"""Shared file pipeline: stability, scanning, watching and worker pool."""

from bookbots.pipeline.daemon import FileDaemon, install_signal_handlers
from bookbots.pipeline.locks import ProcessingLocks
from bookbots.pipeline.queue import WorkQueue
from bookbots.pipeline.scanner import DirectoryScanner, ScanSummary, matches_extension
from bookbots.pipeline.stability import StabilityDetector
from bookbots.pipeline.watcher import DirectoryWatcher
from bookbots.pipeline.workers import WorkerPool

__all__ = [
    "DirectoryScanner",
    "DirectoryWatcher",
    "FileDaemon",
    "ProcessingLocks",
    "ScanSummary",
    "StabilityDetector",
    "WorkQueue",
    "WorkerPool",
    "install_signal_handlers",
    "matches_extension",
]
