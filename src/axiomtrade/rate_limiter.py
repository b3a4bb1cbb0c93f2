"""In-process rate limiters: sliding window, token bucket, and per-endpoint.

The sliding window tracks exact request timestamps. ``acquire()`` never
sleeps; it returns how long the caller would have to wait (0 when the
request was admitted), and ``wait_if_needed()`` does the sleeping.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Mapping

import aiorwlock
import httpx

logger = logging.getLogger("axiomtrade.rate_limiter")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class SlidingWindowRateLimiter:
    """At most ``max_requests`` in any rolling ``window`` seconds."""

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = aiorwlock.RWLock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def acquire(self) -> float:
        """Record a request if under capacity; else return seconds to wait."""
        async with self._lock.writer_lock:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) >= self.max_requests:
                # Pruning keeps the oldest entry strictly inside the window, so this is > 0.
                return self._timestamps[0] + self.window - now
            self._timestamps.append(now)
            return 0.0

    async def wait_if_needed(self) -> None:
        while True:
            wait = await self.acquire()
            if wait <= 0:
                return
            logger.debug("Rate limit reached, waiting %.2fs", wait)
            await self._sleep(wait)

    async def request_count(self) -> int:
        """Requests currently inside the window."""
        async with self._lock.reader_lock:
            cutoff = self._clock() - self.window
            return sum(1 for ts in self._timestamps if ts > cutoff)

    async def reset(self) -> None:
        async with self._lock.writer_lock:
            self._timestamps.clear()


class TokenBucketRateLimiter:
    """Continuously refilling bucket; allows bursts up to ``max_tokens``."""

    def __init__(
        self,
        max_tokens: float,
        refill_rate: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate  # tokens per second
        self.tokens = max_tokens
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    async def try_consume(self, count: float = 1.0) -> float | None:
        """Consume ``count`` tokens and return None, or return the wait in seconds."""
        async with self._lock:
            self._refill()
            if self.tokens >= count:
                self.tokens -= count
                return None
            return (count - self.tokens) / self.refill_rate

    async def consume(self, count: float = 1.0) -> None:
        while True:
            wait = await self.try_consume(count)
            if wait is None:
                return
            await self._sleep(wait)


def normalize_endpoint(url_or_path: str) -> str:
    """Limiter key for a URL or path: the path without query or trailing slash."""
    path = httpx.URL(url_or_path).path.rstrip("/")
    return path or "/"


class EndpointRateLimiter:
    """Sliding-window limiter per endpoint path, with a shared default."""

    def __init__(
        self,
        default_limiter: SlidingWindowRateLimiter | None = None,
        limits: Mapping[str, tuple[int, float]] | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self.default_limiter = default_limiter or SlidingWindowRateLimiter(100, 60.0, clock, sleep)
        self._limiters: dict[str, SlidingWindowRateLimiter] = {
            normalize_endpoint(endpoint): SlidingWindowRateLimiter(max_requests, window, clock, sleep)
            for endpoint, (max_requests, window) in (limits or {}).items()
        }
        self._lock = aiorwlock.RWLock()

    async def add_endpoint_limit(self, endpoint: str, max_requests: int, window: float) -> None:
        limiter = SlidingWindowRateLimiter(max_requests, window, self._clock, self._sleep)
        async with self._lock.writer_lock:
            self._limiters[normalize_endpoint(endpoint)] = limiter

    async def limiter_for(self, endpoint: str) -> SlidingWindowRateLimiter:
        async with self._lock.reader_lock:
            return self._limiters.get(normalize_endpoint(endpoint), self.default_limiter)

    async def acquire(self, endpoint: str) -> float:
        return await (await self.limiter_for(endpoint)).acquire()

    async def wait_for_endpoint(self, endpoint: str) -> None:
        await (await self.limiter_for(endpoint)).wait_if_needed()

    async def status(self) -> dict[str, int]:
        """Requests in the current window, per configured endpoint plus ``default``."""
        async with self._lock.reader_lock:
            limiters = dict(self._limiters)
        counts = {path: await limiter.request_count() for path, limiter in limiters.items()}
        counts["default"] = await self.default_limiter.request_count()
        return counts

    async def reset(self) -> None:
        async with self._lock.reader_lock:
            limiters = list(self._limiters.values())
        for limiter in [*limiters, self.default_limiter]:
            await limiter.reset()
