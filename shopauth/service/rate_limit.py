from __future__ import annotations

from dataclasses import dataclass

from shopauth.logging import get_logger
from shopauth.storage.errors import CacheUnavailable
from shopauth.storage.redis_cache import KeyValueStore

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    count: int
    retry_after: int = 0
    degraded: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def rate_limit_key(client: str, path: str) -> str:
    return f"ratelimit:{client}:{path}"


class RateLimiter:
    """Fixed-window request counter per client and route.

    The first hit in a window creates the counter and sets its expiry; later
    hits only increment it, so the window is anchored at the first request.
    A request is throttled once the counter strictly exceeds ``limit``. Up to
    twice the limit can pass across a window boundary.

    When the backing store is unreachable the limiter fails open: the request
    is allowed and a warning is logged.
    """

    def __init__(self, cache: KeyValueStore) -> None:
        self.cache = cache

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        if limit <= 0:
            return RateDecision(allowed=True, limit=limit, count=0)
        if window_seconds <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                key=key,
                window_seconds=window_seconds,
                message="Invalid rate limit window_seconds; defaulting to 60 seconds",
            )
            window_seconds = DEFAULT_WINDOW_SECONDS
        try:
            count = await self.cache.incr(key)
            if count == 1:
                await self.cache.expire(key, window_seconds)
                ttl = window_seconds
            else:
                ttl = await self.cache.ttl(key)
                if ttl < 0:
                    # Counter lost its expiry (expire failed after incr); restart the window
                    await self.cache.expire(key, window_seconds)
                    ttl = window_seconds
        except CacheUnavailable as exc:
            logger.warning(
                "rate_limit_store_unavailable",
                key=key,
                operation=exc.operation,
                error=str(exc.cause or exc),
            )
            return RateDecision(allowed=True, limit=limit, count=0, degraded=True)

        if count > limit:
            logger.info("rate_limit_exceeded", key=key, count=count, limit=limit)
            return RateDecision(
                allowed=False, limit=limit, count=count, retry_after=max(1, ttl)
            )
        return RateDecision(allowed=True, limit=limit, count=count, retry_after=ttl)
