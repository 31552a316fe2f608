"""Signed, expiring tokens for access, refresh and email verification."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional

import jwt
from jwt.exceptions import InvalidSignatureError, PyJWTError

from shopauth.logging import get_logger
from shopauth.service.errors import (
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)

logger = get_logger(__name__)


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    VERIFY = "verify"


@dataclass(frozen=True)
class Principal:
    """Identity embedded into issued tokens."""

    subject_id: str
    email: str
    role: str


# Identity claims carried by each kind besides sub/type/iat/exp/jti
_IDENTITY_CLAIMS = {
    TokenKind.ACCESS: ("email", "role"),
    TokenKind.REFRESH: (),
    TokenKind.VERIFY: ("email",),
}

_REQUIRED_CLAIMS = ["sub", "type", "iat", "exp", "jti"]


class TokenCodec:
    """Issue and verify HMAC-signed JWTs.

    The signing key is injected so tests and callers never depend on ambient
    configuration. ``verify`` checks the signature before expiry and reports
    each failure as a distinct exception.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must be non-empty")
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self._clock = clock

    def issue(
        self, principal: Principal, kind: TokenKind, ttl: timedelta
    ) -> str:
        now = int(self._clock())
        claims: dict[str, Any] = {
            "sub": principal.subject_id,
            "type": kind.value,
            "iat": now,
            "exp": now + int(ttl.total_seconds()),
            # Distinguishes tokens minted for one subject within the same second
            "jti": uuid.uuid4().hex,
        }
        for name in _IDENTITY_CLAIMS[kind]:
            claims[name] = getattr(principal, name)
        if self.issuer:
            claims["iss"] = self.issuer
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def verify(
        self, token: str, expected_kind: Optional[TokenKind] = None
    ) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise MalformedTokenError("token missing")
        options: dict[str, Any] = {"require": list(_REQUIRED_CLAIMS)}
        kwargs: dict[str, Any] = {}
        if self.issuer:
            options["require"].append("iss")
            kwargs["issuer"] = self.issuer
        # exp and iat are checked against the injected clock
        options["verify_exp"] = False
        options["verify_iat"] = False
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options=options,
                **kwargs,
            )
        except InvalidSignatureError as exc:
            logger.warning("token_signature_invalid")
            raise SignatureInvalidError("invalid token signature") from exc
        except PyJWTError as exc:
            logger.warning("token_malformed", error_type=type(exc).__name__)
            raise MalformedTokenError("malformed token") from exc

        try:
            exp = int(claims["exp"])
        except (TypeError, ValueError) as exc:
            raise MalformedTokenError("malformed token") from exc
        if exp <= self._clock():
            raise TokenExpiredError("token expired")

        if expected_kind is not None and claims.get("type") != expected_kind.value:
            logger.warning(
                "token_kind_mismatch",
                expected=expected_kind.value,
                actual=claims.get("type"),
            )
            raise MalformedTokenError("unexpected token type")
        return claims

    def remaining_ttl(self, claims: dict[str, Any]) -> int:
        """Whole seconds until ``exp``; zero once the token has expired."""
        try:
            exp = int(claims.get("exp", 0))
        except (TypeError, ValueError):
            return 0
        return max(0, exp - int(self._clock()))
