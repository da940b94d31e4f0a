"""Submission throttle: minimum spacing between mints and a tx-per-minute window."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

from solxen_bridge.logging import get_logger

logger = get_logger(__name__)

WINDOW_SEC = 60.0


class RateLimiter:
    """
    Thread-safe submit throttle shared by all mint workers.

    acquire() blocks until a submission is permitted and returns True, or
    returns False as soon as stop_event is set while waiting.
    """

    def __init__(
        self,
        min_interval_sec: float = 0.0,
        max_per_minute: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = max(0.0, min_interval_sec)
        self._max_per_minute = max_per_minute
        self._clock = clock
        self._lock = threading.Lock()
        self._last: float | None = None
        self._window: deque[float] = deque()

    def _delay(self, now: float) -> float:
        """Seconds until the next submission is allowed. Caller holds the lock."""
        delay = 0.0
        if self._last is not None:
            delay = max(delay, self._last + self._min_interval - now)
        if self._max_per_minute:
            window_start = now - WINDOW_SEC
            while self._window and self._window[0] <= window_start:
                self._window.popleft()
            if len(self._window) >= self._max_per_minute:
                delay = max(delay, self._window[0] + WINDOW_SEC - now)
        return delay

    def acquire(self, stop_event: threading.Event | None = None) -> bool:
        stop_event = stop_event or threading.Event()
        while True:
            with self._lock:
                now = self._clock()
                delay = self._delay(now)
                if delay <= 0:
                    self._last = now
                    if self._max_per_minute:
                        self._window.append(now)
                    return True
            if stop_event.is_set():
                return False
            if self._max_per_minute and delay > self._min_interval:
                logger.debug("mint_rate_limited", wait_sec=round(delay, 2), max_tx_per_minute=self._max_per_minute)
            if stop_event.wait(delay):
                return False
