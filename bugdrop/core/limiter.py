"""Fixed-window rate limiting backed by a shared counter store.

Two independent gates sit in front of POST /api/feedback:

  per-client  key = rl:client:{client_id}:{window_start}
  per-repo    key = rl:repo:{owner/repo}:{window_start}

where window_start = floor(now_ms / window_ms). Counters expire through
the store's TTL; nothing ever deletes them.

The store is Redis in production. INCR is atomic, so concurrent requests
cannot both observe the same count; a request is allowed when its
post-increment count is <= max. Rejected requests still bump the counter,
which only matters inside an already-exhausted window.

Availability beats strict enforcement: when the store errors, the gate
logs a warning and lets the request through. When no store is configured
at all, limiting is skipped.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import structlog
from starlette.requests import Request

from bugdrop.core.errors import RateLimitError

logger = structlog.get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


class CounterStore(Protocol):
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment `key` and return the new value."""
        ...


class RedisCounterStore:
    """CounterStore over redis.asyncio."""

    def __init__(self, redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True))

    async def incr(self, key: str, ttl_seconds: int) -> int:
        # INCR and EXPIRE NX in one MULTI: the first hit in the window sets
        # the TTL and a key never outlives its window.
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    async def aclose(self) -> None:
        await self._redis.aclose()


@dataclass(frozen=True)
class RateLimitRule:
    key_prefix: str
    window_seconds: int
    max_requests: int
    message: str

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    @property
    def retry_after(self) -> int:
        return math.ceil(self.window_ms / 1000)


@dataclass(frozen=True)
class RateLimitDecision:
    limit: int
    remaining: int


def window_start(now_ms: int, window_ms: int) -> int:
    return now_ms // window_ms


def counter_key(prefix: str, identifier: str, now_ms: int, window_ms: int) -> str:
    return f"rl:{prefix}:{identifier}:{window_start(now_ms, window_ms)}"


def get_client_id(request: Request) -> str:
    """Identify the caller for per-client limiting.

    CF-Connecting-IP is set by the edge and cannot be spoofed past it.
    Behind another proxy the first X-Forwarded-For entry is used, and with
    no proxy at all the socket peer address. Unidentifiable clients share
    one bucket instead of bypassing the limit.
    """
    connecting_ip = request.headers.get("cf-connecting-ip", "").strip()
    if connecting_ip:
        return connecting_ip
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


class FixedWindowLimiter:
    def __init__(
        self,
        store: Optional[CounterStore],
        rule: RateLimitRule,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.rule = rule
        self._clock = clock

    async def check(self, identifier: str) -> Optional[RateLimitDecision]:
        """Count one request against `identifier`.

        Returns the remaining quota, or None when limiting was skipped
        (no store) or failed open. Raises RateLimitError when the window
        is exhausted.
        """
        if self.store is None:
            return None

        now_ms = int(self._clock() * 1000)
        key = counter_key(self.rule.key_prefix, identifier, now_ms, self.rule.window_ms)

        try:
            count = await self.store.incr(key, self.rule.retry_after)
        except Exception as exc:
            logger.warning(
                "rate_limit_store_error",
                limiter=self.rule.key_prefix,
                error=str(exc),
            )
            return None

        if count > self.rule.max_requests:
            logger.info(
                "rate_limit_exceeded",
                limiter=self.rule.key_prefix,
                identifier=identifier,
                count=count,
            )
            raise RateLimitError(self.rule.message, retry_after=self.rule.retry_after)

        return RateLimitDecision(
            limit=self.rule.max_requests,
            remaining=self.rule.max_requests - count,
        )


@dataclass
class RateLimiters:
    client: FixedWindowLimiter
    repo: FixedWindowLimiter


def build_rate_limiters(settings, store: Optional[CounterStore]) -> RateLimiters:
    if store is None:
        logger.warning("rate_limit_disabled", reason="no counter store configured")
    return RateLimiters(
        client=FixedWindowLimiter(
            store,
            RateLimitRule(
                key_prefix="client",
                window_seconds=settings.rate_limit_client_window_seconds,
                max_requests=settings.rate_limit_client_max,
                message="Too many requests. Please try again later.",
            ),
        ),
        repo=FixedWindowLimiter(
            store,
            RateLimitRule(
                key_prefix="repo",
                window_seconds=settings.rate_limit_repo_window_seconds,
                max_requests=settings.rate_limit_repo_max,
                message=(
                    "This repository has received too many feedback submissions. "
                    "Please try again later."
                ),
            ),
        ),
    )
