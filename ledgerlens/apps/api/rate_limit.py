from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import time
from typing import Callable, Protocol

from fastapi import HTTPException, Request, Response, status
from redis.asyncio import Redis

from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import RateLimited


logger = logging.getLogger(__name__)

# Idle buckets are swept once the map grows past this size.
_SWEEP_THRESHOLD = 10_000


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome and retry hint for a single caller check.
    allowed: bool
    retry_after_ms: int
    remaining: int


@dataclass
class RateBucket:
    count: int
    window_reset_at: float


class RateLimiter(Protocol):
    async def check(self, caller_id: str) -> RateLimitDecision:
        ...

    async def allow(self, caller_id: str) -> bool:
        ...

    async def retry_after_ms(self, caller_id: str) -> int:
        ...


class InMemoryRateLimiter:
    def __init__(
        self,
        *,
        quota: int,
        window_s: float,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self._quota = quota
        self._window_s = window_s
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.monotonic
        self._buckets: dict[str, RateBucket] = {}
        self._lock = asyncio.Lock()

    def _sweep(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if now > bucket.window_reset_at]
        for key in expired:
            del self._buckets[key]

    async def check(self, caller_id: str) -> RateLimitDecision:
        now = self._time_provider()
        async with self._lock:
            bucket = self._buckets.get(caller_id)
            if bucket is None or now > bucket.window_reset_at:
                if len(self._buckets) >= _SWEEP_THRESHOLD:
                    self._sweep(now)
                self._buckets[caller_id] = RateBucket(count=1, window_reset_at=now + self._window_s)
                return RateLimitDecision(allowed=True, retry_after_ms=0, remaining=self._quota - 1)
            if bucket.count >= self._quota:
                retry_ms = int(math.ceil((bucket.window_reset_at - now) * 1000))
                return RateLimitDecision(allowed=False, retry_after_ms=max(0, retry_ms), remaining=0)
            bucket.count += 1
            return RateLimitDecision(allowed=True, retry_after_ms=0, remaining=self._quota - bucket.count)

    async def allow(self, caller_id: str) -> bool:
        return (await self.check(caller_id)).allowed

    async def retry_after_ms(self, caller_id: str) -> int:
        now = self._time_provider()
        async with self._lock:
            bucket = self._buckets.get(caller_id)
            if bucket is None or now > bucket.window_reset_at or bucket.count < self._quota:
                return 0
            return max(0, int(math.ceil((bucket.window_reset_at - now) * 1000)))


_FIXED_WINDOW_LUA = r"""
local count = redis.call("INCR", KEYS[1])
if count == 1 then
  redis.call("PEXPIRE", KEYS[1], ARGV[1])
end
local ttl = redis.call("PTTL", KEYS[1])
return {count, ttl}
"""


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def _get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            _redis_loop = current_loop
    return _redis_pool


class RedisRateLimiter:
    def __init__(self, *, quota: int, window_s: float, prefix: str) -> None:
        self._quota = quota
        self._window_ms = int(window_s * 1000)
        self._prefix = prefix

    def _key(self, caller_id: str) -> str:
        return f"{self._prefix}:caller:{caller_id}"

    async def check(self, caller_id: str) -> RateLimitDecision:
        # INCR and PEXPIRE run atomically so concurrent instances share one window.
        redis = await _get_redis()
        count, ttl_ms = await redis.eval(_FIXED_WINDOW_LUA, 1, self._key(caller_id), self._window_ms)
        count = int(count)
        if count <= self._quota:
            return RateLimitDecision(allowed=True, retry_after_ms=0, remaining=self._quota - count)
        return RateLimitDecision(allowed=False, retry_after_ms=max(0, int(ttl_ms)), remaining=0)

    async def allow(self, caller_id: str) -> bool:
        return (await self.check(caller_id)).allowed

    async def retry_after_ms(self, caller_id: str) -> int:
        redis = await _get_redis()
        raw = await redis.get(self._key(caller_id))
        if raw is None or int(raw) < self._quota:
            return 0
        return max(0, int(await redis.pttl(self._key(caller_id))))


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    # Cache the limiter so every request shares one bucket map (or Redis pool).
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        if settings.rate_limit_backend.lower() == "redis":
            _rate_limiter = RedisRateLimiter(
                quota=settings.rl_quota,
                window_s=settings.rl_window_s,
                prefix=settings.rl_redis_prefix,
            )
        else:
            _rate_limiter = InMemoryRateLimiter(quota=settings.rl_quota, window_s=settings.rl_window_s)
    return _rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    global _rate_limiter
    _rate_limiter = limiter


def reset_rate_limiter_state() -> None:
    # Reset cached limiter and Redis connections for deterministic test setup.
    global _rate_limiter, _redis_pool, _redis_loop
    _rate_limiter = None
    _redis_pool = None
    _redis_loop = None


def _unavailable_exception() -> HTTPException:
    # Return a stable 503 when rate limit storage is unavailable and fail-closed.
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
    )


async def enforce_rate_limit(*, request: Request, response: Response, caller_id: str) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    limiter = get_rate_limiter()
    try:
        decision = await limiter.check(caller_id)
    except Exception as exc:  # noqa: BLE001 - guard against Redis connectivity failures
        if settings.rl_fail_mode.lower() == "closed":
            raise _unavailable_exception() from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("rate_limit_degraded path=%s", request.url.path)
        return
    if decision.allowed:
        return
    logger.info("rate_limited caller_id=%s retry_after_ms=%s", caller_id, decision.retry_after_ms)
    raise RateLimited(decision.retry_after_ms)
