"""Exception types shared by the daemons.

Resource exhaustion (full queue, rate limit, oversized file) is not an
error and has no exception here; those paths return outcome enums instead.
"""

from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised at startup for configuration that makes a daemon unusable."""


class QueueClosedError(RuntimeError):
    """Raised when a producer offers work after the queue was closed."""


class ConversionError(Exception):
    """Raised when the external converter fails or produces unusable output.

    Attributes:
        output: Combined stdout/stderr captured from the converter, if any.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}, output: {self.output.strip()}"
        return base


class ConversionTimeoutError(ConversionError):
    """Raised when the converter exceeds its wall-clock timeout."""


class ConversionCancelled(Exception):
    """Raised when shutdown stops a conversion before or while the tool runs."""


class DeliveryError(Exception):
    """Raised when an email could not be built or handed to the relay."""


class RemoteAPIError(Exception):
    """Raised on a non-2xx response or an error payload from a remote API."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body
