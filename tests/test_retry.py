"""Tests for the exponential-backoff retry policy."""

from __future__ import annotations

import random

import httpx
import pytest

from axiomtrade.config import RetryConfig
from axiomtrade.errors import (
    InvalidCredentialsError,
    NetworkError,
    RetryableStatusError,
    TokenExpiredError,
)
from axiomtrade.retry import RetryPolicy


def _policy(sleeps: list[float], **overrides) -> RetryPolicy:
    cfg = RetryConfig(**{"max_retries": 3, "initial_delay": 0.1, "max_delay": 30.0, "jitter": False, **overrides})

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryPolicy(cfg, sleep=sleep)


# --- Delays ---


def test_delay_doubles_and_caps():
    policy = _policy([], max_delay=0.5)
    assert [policy.delay(n) for n in range(5)] == pytest.approx([0.1, 0.2, 0.4, 0.5, 0.5])


def test_jitter_stays_within_half_to_one_and_a_half():
    policy = RetryPolicy(RetryConfig(initial_delay=1.0, jitter=True, max_delay=100), rng=random.Random(3))
    for attempt in range(4):
        base = 2 ** attempt
        for _ in range(20):
            assert 0.5 * base <= policy.delay(attempt) <= 1.5 * base


def test_jitter_never_exceeds_cap():
    policy = RetryPolicy(RetryConfig(initial_delay=1.0, jitter=True, max_delay=1.0), rng=random.Random(5))
    assert all(policy.delay(6) <= 1.0 for _ in range(50))


# --- Classification ---


@pytest.mark.parametrize(
    "exc,expected",
    [
        (NetworkError("reset"), True),
        (httpx.ReadTimeout("slow"), True),
        (RetryableStatusError(429), True),
        (RetryableStatusError(503), True),
        (RetryableStatusError(404), False),
        (TokenExpiredError("expired"), False),
        (InvalidCredentialsError("nope"), False),
        (ValueError("bug"), False),
    ],
)
def test_is_retryable(exc, expected):
    assert RetryPolicy.is_retryable(exc) is expected


# --- Running ---


@pytest.mark.asyncio
async def test_run_returns_first_success():
    sleeps: list[float] = []

    async def op():
        return "ok"

    assert await _policy(sleeps).run(op) == "ok"
    assert sleeps == []


@pytest.mark.asyncio
async def test_run_retries_transient_failures():
    sleeps: list[float] = []
    outcomes = [NetworkError("reset"), RetryableStatusError(502), "done"]

    async def op():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await _policy(sleeps).run(op) == "done"
    assert sleeps == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_run_gives_up_after_max_retries():
    sleeps: list[float] = []
    calls = 0

    async def op():
        nonlocal calls
        calls += 1
        raise RetryableStatusError(503)

    with pytest.raises(RetryableStatusError):
        await _policy(sleeps, max_retries=2).run(op)
    assert calls == 3
    assert sleeps == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_run_does_not_retry_fatal_errors():
    sleeps: list[float] = []
    calls = 0

    async def op():
        nonlocal calls
        calls += 1
        raise TokenExpiredError("expired")

    with pytest.raises(TokenExpiredError):
        await _policy(sleeps).run(op)
    assert calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    calls = 0

    async def op():
        nonlocal calls
        calls += 1
        raise NetworkError("down")

    with pytest.raises(NetworkError):
        await _policy([], max_retries=0).run(op)
    assert calls == 1
