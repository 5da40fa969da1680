"""
Keyed request rate limiter shared by outbound HTTP clients.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class KeyedRateLimiter:
    """
    Enforces a minimum interval between requests per key (provider or host).
    """

    def __init__(
        self,
        *,
        default_rate_limit_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._default_rate_limit_per_second = max(0.1, default_rate_limit_per_second)
        self._last_request_by_key: dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def wait(self, *, key: str, rate_limit_per_second: float | None = None) -> None:
        """
        Sleep as needed so requests for `key` respect the configured rate.
        """

        if not key:
            return

        effective_rps = max(0.1, rate_limit_per_second or self._default_rate_limit_per_second)
        min_interval = 1.0 / effective_rps

        with self._lock:
            last_time = self._last_request_by_key.get(key)
            if last_time is not None:
                wait_seconds = min_interval - (self._clock() - last_time)
                if wait_seconds > 0:
                    self._sleep(wait_seconds)
            self._last_request_by_key[key] = self._clock()
