"""Tests for the sliding one-hour send window."""

from __future__ import annotations

from bookbots.kindle.rate_limiter import SlidingWindowRateLimiter


class TestSlidingWindow:
    def test_three_sends_fill_window_until_they_age_out(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(max_per_hour=3, clock=clock)
        for _ in range(3):
            limiter.record_send()

        assert not limiter.can_send()

        clock.advance(61 * 60)
        assert limiter.can_send()
        assert limiter.sent_in_window() == 0
        assert limiter.remaining() == 3

    def test_time_until_next_slot(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(max_per_hour=2, clock=clock)
        assert limiter.time_until_next_slot() == 0.0

        limiter.record_send()
        clock.advance(600)
        limiter.record_send()
        clock.advance(600)

        # Oldest send ages out 3600s after it happened.
        assert limiter.time_until_next_slot() == 2400.0

    def test_window_slides_with_send_times(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(max_per_hour=2, clock=clock)
        limiter.record_send()
        clock.advance(1800)
        limiter.record_send()
        assert not limiter.can_send()

        clock.advance(1801)  # first send is now older than an hour
        assert limiter.can_send()
        assert limiter.sent_in_window() == 1

    def test_burst_allowed_up_to_max(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(max_per_hour=5, clock=clock)
        sent = 0
        while limiter.can_send():
            limiter.record_send()
            sent += 1
        assert sent == 5
