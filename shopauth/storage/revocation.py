from __future__ import annotations

import hmac
from typing import Optional

from shopauth.logging import get_logger
from shopauth.storage.redis_cache import KeyValueStore

logger = get_logger(__name__)


def _blacklist_key(token: str) -> str:
    return f"blacklist:{token}"


def _refresh_key(subject_id: str) -> str:
    return f"refresh:{subject_id}"


def _verify_key(subject_id: str) -> str:
    return f"verify:{subject_id}"


def _reset_key(subject_id: str) -> str:
    return f"reset:{subject_id}"


class RevocationStore:
    """Token revocation and single-use secrets kept in the shared key-value store.

    Every record carries a TTL mirroring the lifetime of the secret it
    describes, so nothing needs explicit cleanup. State is never cached in
    process; every call reaches the store.
    """

    def __init__(self, cache: KeyValueStore) -> None:
        self.cache = cache

    # access token denylist
    async def blacklist(self, token: str, remaining_ttl: int) -> None:
        # An already-expired token is rejected by signature checks anyway
        if remaining_ttl > 0:
            await self.cache.set(_blacklist_key(token), "1", ttl=remaining_ttl)

    async def is_blacklisted(self, token: str) -> bool:
        return await self.cache.exists(_blacklist_key(token))

    # refresh tokens, one per subject
    async def set_refresh_token(self, subject_id: str, token: str, ttl: int) -> None:
        await self.cache.set(_refresh_key(subject_id), token, ttl=ttl)

    async def get_refresh_token(self, subject_id: str) -> Optional[str]:
        return await self.cache.get(_refresh_key(subject_id))

    async def clear_refresh_token(self, subject_id: str) -> None:
        await self.cache.delete(_refresh_key(subject_id))

    # email verification
    async def set_verification_token(self, subject_id: str, token: str, ttl: int) -> None:
        await self.cache.set(_verify_key(subject_id), token, ttl=ttl)

    async def get_verification_token(self, subject_id: str) -> Optional[str]:
        return await self.cache.get(_verify_key(subject_id))

    async def consume_verification_token(self, subject_id: str, token: str) -> bool:
        return await self._consume(_verify_key(subject_id), token)

    # password reset
    async def set_reset_code(self, subject_id: str, code: str, ttl: int) -> None:
        await self.cache.set(_reset_key(subject_id), code, ttl=ttl)

    async def get_reset_code(self, subject_id: str) -> Optional[str]:
        return await self.cache.get(_reset_key(subject_id))

    async def consume_reset_code(self, subject_id: str, code: str) -> bool:
        return await self._consume(_reset_key(subject_id), code)

    async def _consume(self, key: str, presented: str) -> bool:
        """Delete ``key`` if it holds ``presented``.

        Returns True only for the caller whose delete removed the key, so two
        concurrent consumers of the same secret cannot both succeed.
        """
        stored = await self.cache.get(key)
        if stored is None or not hmac.compare_digest(stored.encode(), presented.encode()):
            return False
        removed = await self.cache.delete(key)
        if not removed:
            logger.info("single_use_secret_already_consumed", key_prefix=key.split(":", 1)[0])
        return removed == 1
