"""
Tests for the submit throttle (min interval + per-minute window) with a fake clock.
"""

from __future__ import annotations

import threading

from solxen_bridge.minter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _stopped() -> threading.Event:
    event = threading.Event()
    event.set()
    return event


def test_min_interval_between_submissions():
    clock = FakeClock()
    limiter = RateLimiter(min_interval_sec=2.0, clock=clock)
    assert limiter.acquire() is True
    # Too soon: a set stop event makes acquire give up instead of waiting
    clock.now += 1.0
    assert limiter.acquire(_stopped()) is False
    clock.now += 1.0
    assert limiter.acquire(_stopped()) is True


def test_per_minute_window():
    clock = FakeClock()
    limiter = RateLimiter(min_interval_sec=0.0, max_per_minute=2, clock=clock)
    assert limiter.acquire() is True
    assert limiter.acquire() is True
    assert limiter.acquire(_stopped()) is False
    clock.now += 59.0
    assert limiter.acquire(_stopped()) is False
    clock.now += 1.0
    assert limiter.acquire(_stopped()) is True


def test_unthrottled_never_blocks():
    limiter = RateLimiter(min_interval_sec=0.0, max_per_minute=None, clock=FakeClock())
    assert all(limiter.acquire(_stopped()) for _ in range(100))


def test_acquire_waits_then_succeeds():
    limiter = RateLimiter(min_interval_sec=0.05)
    assert limiter.acquire() is True
    assert limiter.acquire() is True
