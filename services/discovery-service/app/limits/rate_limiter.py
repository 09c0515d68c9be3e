"""In-memory sliding window limiter guarding provider quotas and HTTP endpoints."""

from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def _evict(self, queue: Deque[float], now: float) -> None:
        while queue and now - queue[0] > self._window:
            queue.popleft()

    def allow(self, key: str) -> bool:
        """Return ``True`` and record a hit when ``key`` is within the limit."""
        now = self._clock()
        with self._lock:
            queue = self._events[key]
            self._evict(queue, now)
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True
