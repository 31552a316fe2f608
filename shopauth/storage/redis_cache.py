from __future__ import annotations

from typing import Any, Awaitable, Optional, Protocol

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from shopauth.storage.errors import CacheUnavailable


class KeyValueStore(Protocol):
    """Key-value capability shared by the revocation store and rate limiter.

    ``ttl`` arguments are whole seconds. Implementations raise
    :class:`CacheUnavailable` when the backend cannot be reached.
    """

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCache:
    """Thin Redis wrapper implementing :class:`KeyValueStore`."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async client off the startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    async def _call(operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except RedisError as exc:
            raise CacheUnavailable(operation, exc) from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", self.client.get(key))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._call("set", self.client.set(key, value, ex=ttl))

    async def incr(self, key: str) -> int:
        return int(await self._call("incr", self.client.incr(key)))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._call("expire", self.client.expire(key, ttl)))

    async def ttl(self, key: str) -> int:
        return int(await self._call("ttl", self.client.ttl(key)))

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", self.client.exists(key)))

    async def delete(self, key: str) -> int:
        return int(await self._call("delete", self.client.delete(key)))

    async def ping(self) -> bool:
        return bool(await self._call("ping", self.client.ping()))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
