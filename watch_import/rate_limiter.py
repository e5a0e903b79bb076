"""Sliding-window rate limiter for the TMDB API.

TMDB allows roughly 40 requests per 10 seconds. Every catalog call in the
process goes through one shared :class:`RateLimiter`, so the quota is global
rather than per user or per job.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

from .config import TMDB_RATE_LIMIT_MAX_REQUESTS, TMDB_RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    def __init__(
        self,
        max_requests: int = TMDB_RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = TMDB_RATE_LIMIT_WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _wait_time(self) -> float:
        now = self._clock()
        self._cleanup(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(0.0, self._timestamps[0] + self.window_seconds - now)

    async def acquire(self) -> None:
        """Wait until one more request fits in the window, then record it."""
        # Waiters queue on the lock, so only one caller can observe the last
        # free slot at a time.
        async with self._lock:
            wait = self._wait_time()
            if wait > 0:
                log = logger.warning if wait >= 1.0 else logger.debug
                log("TMDB rate limit reached, waiting %.2fs", wait)
                await self._sleep(wait)

            wait = self._wait_time()
            if wait > 0:
                await self._sleep(wait)
                self._cleanup(self._clock())

            self._timestamps.append(self._clock())

    async def execute(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        await self.acquire()
        return await fn(*args, **kwargs)

    def status(self) -> dict:
        wait = self._wait_time()
        return {
            "requests_in_window": len(self._timestamps),
            "max_requests": self.max_requests,
            "wait_seconds": round(wait, 3),
        }

    def reset(self) -> None:
        self._timestamps.clear()
