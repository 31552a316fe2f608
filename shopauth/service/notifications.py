from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional, Protocol

from shopauth.logging import get_logger
from shopauth.storage.models import User

logger = get_logger(__name__)


@dataclass
class OutboundMessage:
    kind: str
    user_id: str
    recipient: str
    secret: str
    expires_in: int
    created_at: datetime = field(default_factory=datetime.utcnow)


class Notifier(Protocol):
    """Hand-off point to the email/SMS delivery collaborator."""

    def send_email_verification(self, user: User, token: str, expires_in: int) -> None: ...

    def send_password_reset(self, user: User, code: str, expires_in: int) -> None: ...


class OutboxNotifier:
    """Records outbound messages instead of delivering them.

    A delivery worker (or a test) drains ``outbox``; secrets never reach the
    log output.
    """

    def __init__(self, *, max_messages: int = 1000) -> None:
        self._outbox: Deque[OutboundMessage] = deque(maxlen=max_messages)
        self._lock = threading.Lock()

    def _enqueue(self, message: OutboundMessage) -> None:
        with self._lock:
            self._outbox.append(message)
        logger.info(
            "notification_queued",
            kind=message.kind,
            user_id=message.user_id,
            email=message.recipient,
        )

    def send_email_verification(self, user: User, token: str, expires_in: int) -> None:
        self._enqueue(
            OutboundMessage(
                kind="email_verification",
                user_id=user.id,
                recipient=user.email,
                secret=token,
                expires_in=expires_in,
            )
        )

    def send_password_reset(self, user: User, code: str, expires_in: int) -> None:
        self._enqueue(
            OutboundMessage(
                kind="password_reset",
                user_id=user.id,
                recipient=user.email,
                secret=code,
                expires_in=expires_in,
            )
        )

    @property
    def outbox(self) -> List[OutboundMessage]:
        with self._lock:
            return list(self._outbox)

    def latest(self, kind: str, recipient: str) -> Optional[OutboundMessage]:
        with self._lock:
            for message in reversed(self._outbox):
                if message.kind == kind and message.recipient == recipient:
                    return message
        return None

    def drain(self) -> List[OutboundMessage]:
        with self._lock:
            messages = list(self._outbox)
            self._outbox.clear()
        return messages
