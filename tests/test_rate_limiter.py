"""Tests for the sliding-window, token-bucket and per-endpoint limiters."""

from __future__ import annotations

import pytest

from axiomtrade.rate_limiter import (
    EndpointRateLimiter,
    SlidingWindowRateLimiter,
    TokenBucketRateLimiter,
    normalize_endpoint,
)


@pytest.fixture
def sleeper(fake_clock):
    """Async sleep that advances the fake clock and records each wait."""
    waits: list[float] = []

    async def sleep(seconds: float) -> None:
        waits.append(seconds)
        fake_clock.advance(seconds)

    sleep.waits = waits
    return sleep


# --- Sliding window ---


@pytest.mark.asyncio
async def test_admits_up_to_capacity_then_reports_wait(fake_clock, sleeper):
    limiter = SlidingWindowRateLimiter(3, 10.0, fake_clock, sleeper)
    assert [await limiter.acquire() for _ in range(3)] == [0.0, 0.0, 0.0]
    fake_clock.advance(4)
    assert await limiter.acquire() == pytest.approx(6.0)
    assert await limiter.request_count() == 3


@pytest.mark.asyncio
async def test_window_slides(fake_clock, sleeper):
    limiter = SlidingWindowRateLimiter(2, 10.0, fake_clock, sleeper)
    await limiter.acquire()
    fake_clock.advance(5)
    await limiter.acquire()
    fake_clock.advance(5)
    assert await limiter.acquire() == 0.0
    assert await limiter.request_count() == 2


@pytest.mark.asyncio
async def test_wait_if_needed_sleeps_until_slot_frees(fake_clock, sleeper):
    limiter = SlidingWindowRateLimiter(2, 10.0, fake_clock, sleeper)
    for _ in range(3):
        await limiter.wait_if_needed()
    assert sleeper.waits == [pytest.approx(10.0)]
    assert await limiter.request_count() == 1


@pytest.mark.asyncio
async def test_never_more_than_max_in_any_window(fake_clock, sleeper):
    limiter = SlidingWindowRateLimiter(5, 1.0, fake_clock, sleeper)
    admitted: list[float] = []
    for _ in range(23):
        await limiter.wait_if_needed()
        admitted.append(fake_clock())
        fake_clock.advance(0.07)
    for t in admitted:
        assert sum(1 for u in admitted if t <= u < t + 1.0) <= 5


@pytest.mark.asyncio
async def test_reset(fake_clock, sleeper):
    limiter = SlidingWindowRateLimiter(1, 60.0, fake_clock, sleeper)
    await limiter.acquire()
    await limiter.reset()
    assert await limiter.acquire() == 0.0


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0, 1.0)


# --- Token bucket ---


@pytest.mark.asyncio
async def test_bucket_allows_burst_then_refills(fake_clock, sleeper):
    bucket = TokenBucketRateLimiter(3, 1.0, fake_clock, sleeper)
    for _ in range(3):
        assert await bucket.try_consume() is None
    assert await bucket.try_consume() == pytest.approx(1.0)
    fake_clock.advance(2)
    assert await bucket.try_consume() is None
    assert await bucket.try_consume() is None
    assert await bucket.try_consume() is not None


@pytest.mark.asyncio
async def test_bucket_never_exceeds_capacity(fake_clock, sleeper):
    bucket = TokenBucketRateLimiter(2, 10.0, fake_clock, sleeper)
    fake_clock.advance(100)
    await bucket.try_consume(0)
    assert bucket.tokens == 2


@pytest.mark.asyncio
async def test_bucket_consume_waits(fake_clock, sleeper):
    bucket = TokenBucketRateLimiter(1, 2.0, fake_clock, sleeper)
    await bucket.consume()
    await bucket.consume()
    assert sleeper.waits == [pytest.approx(0.5)]


@pytest.mark.parametrize("max_tokens, refill_rate", [(1, 0), (1, -1.0), (0, 1.0)])
def test_bucket_rejects_non_positive_rates(max_tokens, refill_rate):
    with pytest.raises(ValueError):
        TokenBucketRateLimiter(max_tokens, refill_rate)


# --- Per endpoint ---


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("/api/orders", "/api/orders"),
        ("/api/orders/", "/api/orders"),
        ("https://api6.axiom.trade/api/orders?x=1", "/api/orders"),
        ("", "/"),
    ],
)
def test_normalize_endpoint(raw, expected):
    assert normalize_endpoint(raw) == expected


@pytest.mark.asyncio
async def test_endpoint_limits_are_independent(fake_clock, sleeper):
    limiter = EndpointRateLimiter(
        SlidingWindowRateLimiter(100, 60.0, fake_clock, sleeper),
        limits={"/api/orders": (1, 60.0)},
        clock=fake_clock,
        sleep=sleeper,
    )
    assert await limiter.acquire("https://api2.axiom.trade/api/orders") == 0.0
    assert await limiter.acquire("/api/orders") > 0
    assert await limiter.acquire("/api/portfolio") == 0.0


@pytest.mark.asyncio
async def test_add_endpoint_limit_and_status(fake_clock, sleeper):
    limiter = EndpointRateLimiter(clock=fake_clock, sleep=sleeper)
    await limiter.add_endpoint_limit("/api/trade", 2, 1.0)
    await limiter.wait_for_endpoint("/api/trade")
    await limiter.wait_for_endpoint("/api/other")
    assert await limiter.status() == {"/api/trade": 1, "default": 1}

    await limiter.reset()
    assert await limiter.status() == {"/api/trade": 0, "default": 0}


@pytest.mark.asyncio
async def test_unknown_endpoint_uses_default(fake_clock, sleeper):
    default = SlidingWindowRateLimiter(5, 1.0, fake_clock, sleeper)
    limiter = EndpointRateLimiter(default, clock=fake_clock, sleep=sleeper)
    assert await limiter.limiter_for("/anything") is default
