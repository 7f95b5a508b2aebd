"""Request pacing and rate-ceiling monitoring for provider calls."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Interval limiter using a requests-per-minute target, safe across worker threads."""

    def __init__(
        self,
        *,
        rpm: int,
        jitter_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpm = max(1, int(rpm))
        self.jitter_seconds = max(0.0, float(jitter_seconds))
        self._interval = 60.0 / float(self.rpm)
        self._last_ts = 0.0
        self._sleep = sleep
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = time.monotonic()
            remaining = self._interval - (now - self._last_ts)
            if remaining > 0:
                self._sleep(remaining)
            if self.jitter_seconds > 0:
                self._sleep(random.uniform(0.0, self.jitter_seconds))
            self._last_ts = time.monotonic()


class RequestRateMonitor:
    """Rolling one-second request counter that warns near a provider ceiling.

    It never blocks or rejects; callers keep going after a warning.
    """

    def __init__(
        self,
        *,
        warn_threshold: int,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.warn_threshold = max(1, int(warn_threshold))
        self.name = name
        self._clock = clock
        self._stamps: deque[float] = deque()
        self._lock = threading.Lock()
        self.warnings = 0

    def record(self) -> int:
        """Record one request and return the count within the last second."""
        with self._lock:
            now = self._clock()
            self._stamps.append(now)
            while self._stamps and now - self._stamps[0] >= 1.0:
                self._stamps.popleft()
            count = len(self._stamps)
            if count > self.warn_threshold:
                self.warnings += 1
                logger.warning(
                    "%s request rate %s/s exceeds warning threshold %s/s",
                    self.name,
                    count,
                    self.warn_threshold,
                )
            return count
