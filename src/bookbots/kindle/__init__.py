"""Kindle sender: size and rate limited email delivery of finished books."""

from bookbots.kindle.mailer import SmtpMailer, build_message, content_type_for
from bookbots.kindle.metrics import MetricsServer, SenderMetrics
from bookbots.kindle.rate_limiter import SlidingWindowRateLimiter
from bookbots.kindle.sender import KindleSender

__all__ = [
    "KindleSender",
    "MetricsServer",
    "SenderMetrics",
    "SlidingWindowRateLimiter",
    "SmtpMailer",
    "build_message",
    "content_type_for",
]
