from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from shopauth.config import get_settings, reset_settings_cache
from shopauth.logging import get_logger
from shopauth.service.auth import AuthService, UserStore
from shopauth.service.notifications import OutboxNotifier
from shopauth.service.passwords import CredentialVerifier
from shopauth.service.rate_limit import RateLimiter
from shopauth.service.tokens import TokenCodec
from shopauth.storage.memory import MemoryCache, MemoryStore
from shopauth.storage.postgres import PostgresStore
from shopauth.storage.redis_cache import KeyValueStore, RedisCache
from shopauth.storage.revocation import RevocationStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: UserStore = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        cache: Optional[KeyValueStore] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                redis_cache = RedisCache(self.settings.redis_url)
                redis_cache.verify_connection()
                cache = redis_cache
            except Exception as exc:
                redis_error = exc

        if cache is None:
            if (
                not self.settings.test_mode
                and not self.settings.allow_redis_fallback_dev
            ):
                raise RuntimeError(
                    "Redis is required for token revocation and rate limits; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error

            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; revocations and "
                    "rate limits are process-local."
                ),
                mode=fallback_mode,
            )
            cache = MemoryCache()
        self.cache: KeyValueStore = cache

        self.codec = TokenCodec(
            self.settings.jwt_secret,
            algorithm=self.settings.jwt_algorithm.value,
            issuer=self.settings.jwt_issuer,
        )
        self.verifier = CredentialVerifier(
            time_cost=self.settings.password_hash_time_cost,
            memory_cost=self.settings.password_hash_memory_cost,
            parallelism=self.settings.password_hash_parallelism,
        )
        self.revocations = RevocationStore(self.cache)
        self.rate_limiter = RateLimiter(self.cache)
        self.notifier = OutboxNotifier()
        self.auth = AuthService(
            self.store,
            self.revocations,
            self.codec,
            self.verifier,
            self.settings,
            notifier=self.notifier,
        )
        logger.info(
            "runtime_init_completed",
            cache_type=type(self.cache).__name__,
            store_type=store_type,
        )

    async def aclose(self) -> None:
        await self.cache.close()
        close_store = getattr(self.store, "close", None)
        if close_store:
            await asyncio.to_thread(close_store)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process-wide runtime, creating it on first use.

    Double-checked locking: the unlocked read is the fast path, the locked
    re-check prevents two threads from building competing runtimes.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        previous = runtime
        runtime = Runtime()
    if previous is not None and isinstance(previous.cache, RedisCache):
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(previous.cache.close())
        except RuntimeError:
            asyncio.run(previous.cache.close())
    return runtime
