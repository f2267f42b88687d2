"""
Request budgets for the external APIs.

Each API gets a sliding window: at most ``max_requests`` calls in any
``window_seconds``. ``acquire()`` blocks until the next call fits. The
limiters live for the whole process and are shared by every caller, so a
scheduled run and its retries draw from the same budget.

    companies_house   600 / 5 min
    people_data        50 / min
    github             30 / min
"""

import logging
import threading
import time
from collections import deque
from typing import Callable

from sourcing import config

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter, safe to share between threads."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and self._calls[0] <= now - self.window_seconds:
            self._calls.popleft()

    def acquire(self) -> float:
        """Wait until a request fits in the window and record it. Returns seconds waited."""
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._calls) < self.max_requests:
                    self._calls.append(now)
                    return waited
                wait = self._calls[0] + self.window_seconds - now

            if waited == 0.0:
                logger.info("%s budget used up (%d per %ss), waiting %.1fs",
                            self.name, self.max_requests, self.window_seconds, wait)
            self._sleep(wait)
            waited += wait

    def remaining(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return self.max_requests - len(self._calls)

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()


_LIMITERS = {
    "companies_house": RateLimiter(
        "companies_house", config.COMPANIES_HOUSE_RATE_LIMIT, config.COMPANIES_HOUSE_RATE_WINDOW
    ),
    "people_data": RateLimiter("people_data", config.PEOPLE_DATA_RATE_LIMIT, 60),
    "github": RateLimiter("github", config.GITHUB_RATE_LIMIT, 60),
}


def limiter(name: str) -> RateLimiter:
    return _LIMITERS[name]


def reset_all() -> None:
    for item in _LIMITERS.values():
        item.reset()
