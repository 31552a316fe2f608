from __future__ import annotations

import math
import threading
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from shopauth.logging import get_logger
from shopauth.storage.errors import ConstraintViolation
from shopauth.storage.models import Role, User, UserStatus


class MemoryStore:
    """In-process user store used for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        # RLock so helpers can nest acquisitions within one thread
        self._data_lock = threading.RLock()

    def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        *,
        phone_number: Optional[str] = None,
        role: str = Role.CUSTOMER.value,
        status: str = UserStatus.PENDING_VERIFICATION.value,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                first_name=first_name,
                last_name=last_name,
                phone_number=phone_number,
                role=role,
                status=status,
            )
            self.users[user.id] = user
            return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            self.credentials.pop(user_id, None)
            return self.users.pop(user_id, None) is not None

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            user.updated_at = datetime.utcnow()
            return user

    def mark_email_verified(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.status = UserStatus.ACTIVE.value
            user.updated_at = datetime.utcnow()
            return user

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    def ping(self) -> bool:
        return True


class MemoryCache:
    """Dict-backed key-value store with per-key expiry.

    Mirrors the subset of Redis semantics the service relies on: ``incr`` on a
    missing key starts at 1 without an expiry, ``ttl`` returns -2 for missing
    keys and -1 for keys without expiry, and ``delete`` reports how many keys
    it removed. ``clock`` is injectable so tests can move time forward.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._entries[key] = (str(value), expires_at)

    async def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._entries[key] = ("1", None)
                return 1
            value, expires_at = entry
            try:
                count = int(value) + 1
            except ValueError as exc:
                raise ValueError(f"value at {key!r} is not an integer") from exc
            self._entries[key] = (str(count), expires_at)
            return count

    async def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            if ttl <= 0:
                self._entries.pop(key, None)
                return True
            self._entries[key] = (entry[0], self._clock() + ttl)
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            expires_at = entry[1]
            if expires_at is None:
                return -1
            return max(0, math.ceil(expires_at - self._clock()))

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def delete(self, key: str) -> int:
        with self._lock:
            if self._live(key) is None:
                return 0
            del self._entries[key]
            return 1

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
