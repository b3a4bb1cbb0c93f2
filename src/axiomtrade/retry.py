"""Bounded exponential-backoff retry for transient failures, driven by tenacity."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from axiomtrade.config import RetryConfig
from axiomtrade.errors import NetworkError, RetryableStatusError

logger = logging.getLogger("axiomtrade.retry")

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RetryPolicy:
    """Retries network errors and 429/5xx statuses; everything else is fatal."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based), capped at max_delay."""
        cfg = self.config
        delay = cfg.initial_delay * cfg.exponential_base ** attempt
        if cfg.jitter:
            delay *= self._rng.uniform(0.5, 1.5)
        return min(delay, cfg.max_delay)

    @staticmethod
    def is_retryable(exc: BaseException) -> bool:
        if isinstance(exc, (NetworkError, httpx.TransportError)):
            return True
        if isinstance(exc, RetryableStatusError):
            return exc.status_code in RETRYABLE_STATUSES
        return False

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.delay(retry_state.attempt_number - 1)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning("Attempt %d failed (%s); retrying in %.2fs", retry_state.attempt_number, exc, wait)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await ``operation()`` up to max_retries + 1 times; re-raise the last error."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(operation)
