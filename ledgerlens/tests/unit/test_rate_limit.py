from __future__ import annotations

import asyncio

import pytest

from ledgerlens.apps.api import rate_limit
from ledgerlens.apps.api.rate_limit import InMemoryRateLimiter, RedisRateLimiter, get_rate_limiter


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_quota_then_deny_within_window() -> None:
    clock = _Clock()
    limiter = InMemoryRateLimiter(quota=20, window_s=60, time_provider=clock)

    results = [await limiter.allow("caller-a") for _ in range(20)]
    assert all(results)

    clock.now += 30
    decision = await limiter.check("caller-a")
    assert not decision.allowed
    assert decision.retry_after_ms == 30_000
    assert await limiter.retry_after_ms("caller-a") == 30_000


@pytest.mark.asyncio
async def test_window_resets_after_expiry() -> None:
    clock = _Clock()
    limiter = InMemoryRateLimiter(quota=2, window_s=60, time_provider=clock)

    assert await limiter.allow("caller-a")
    assert await limiter.allow("caller-a")
    assert not await limiter.allow("caller-a")

    clock.now += 60.5
    decision = await limiter.check("caller-a")
    assert decision.allowed
    assert decision.remaining == 1
    assert await limiter.retry_after_ms("caller-a") == 0


@pytest.mark.asyncio
async def test_callers_have_independent_buckets() -> None:
    limiter = InMemoryRateLimiter(quota=1, window_s=60, time_provider=_Clock())

    assert await limiter.allow("caller-a")
    assert not await limiter.allow("caller-a")
    assert await limiter.allow("caller-b")


@pytest.mark.asyncio
async def test_concurrent_checks_never_exceed_quota() -> None:
    limiter = InMemoryRateLimiter(quota=5, window_s=60, time_provider=_Clock())

    results = await asyncio.gather(*(limiter.allow("caller-a") for _ in range(25)))

    assert sum(results) == 5


def test_backend_selection_follows_settings(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "redis")
    rate_limit.get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
    assert isinstance(get_rate_limiter(), RedisRateLimiter)

    monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")
    rate_limit.get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
    assert isinstance(get_rate_limiter(), InMemoryRateLimiter)
