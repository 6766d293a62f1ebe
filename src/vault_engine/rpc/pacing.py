"""Call pacing for public RPC endpoints."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Pacer:
    """Enforce a minimum interval between successive calls.

    ``wait()`` sleeps only for the part of the interval that has not already
    elapsed since the previous call, so slow endpoints are not penalised twice.
    ``backoff()`` adds a one-off pause after a rate-limit response.
    """

    def __init__(
        self,
        interval: float,
        *,
        backoff: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval < 0 or backoff < 0:
            raise ValueError("Pacer intervals cannot be negative")
        self.interval = interval
        self.backoff_delay = backoff
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the interval since the previous call has passed."""
        with self._lock:
            now = self._clock()
            delay = 0.0
            if self._last is not None:
                delay = max(0.0, self.interval - (now - self._last))
            if delay > 0:
                self._sleep(delay)
            self._last = self._clock()
            return delay

    def backoff(self) -> float:
        if self.backoff_delay <= 0:
            return 0.0
        logger.warning("Rate limited, backing off for %.1fs", self.backoff_delay)
        self._sleep(self.backoff_delay)
        with self._lock:
            self._last = self._clock()
        return self.backoff_delay

    def reset(self) -> None:
        with self._lock:
            self._last = None
