"""
Per-client sliding-window rate limiter.

Counters live in an explicit object that the app receives at construction
time, so tests can inject a fake clock and share nothing with other apps.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import math
from threading import Lock
import time
from typing import Callable, Deque, Dict

from .errors import RateLimitError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_after: float  # seconds until the oldest counted hit leaves the window

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }


class SlidingWindowRateLimiter:
    """
    Accept at most `max_requests` hits per `window_seconds` for each key.

    `hit` is an atomic increment-and-check: the lock covers pruning, the
    comparison and the append, so concurrent requests cannot overshoot.
    """

    # idle keys are swept once the table grows past this many entries
    SWEEP_THRESHOLD = 10_000

    def __init__(self, max_requests: int, window_seconds: float, clock: Clock = time.monotonic):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            hits = deque()
            self._hits[key] = hits
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def hit(self, key: str) -> RateLimitStatus:
        """Record one request for `key` or raise `RateLimitError` if the window is full."""
        with self._lock:
            now = self._clock()
            if len(self._hits) > self.SWEEP_THRESHOLD:
                self._sweep_locked(now)
            hits = self._prune(key, now)
            if len(hits) >= self.max_requests:
                retry_after = hits[0] + self.window_seconds - now
                logger.warning("Rate limit exceeded for %s (%d/%d)", key, len(hits), self.max_requests)
                raise RateLimitError(headers={"Retry-After": str(max(1, math.ceil(retry_after)))})
            hits.append(now)
            return RateLimitStatus(
                limit=self.max_requests,
                remaining=self.max_requests - len(hits),
                reset_after=hits[0] + self.window_seconds - now,
            )

    def _sweep_locked(self, now: float) -> int:
        stale = [key for key in list(self._hits) if not self._prune(key, now)]
        for key in stale:
            del self._hits[key]
        return len(stale)

    def sweep(self) -> int:
        """Drop keys with no hits left in the window; returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
