from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each class carries an HTTP ``status_code`` and a stable ``error_code``.
    Subclasses may also set ``reason``, which is copied into ``detail`` so
    clients can tell apart failures that share a code:
    - malformed (400)
    - unauthenticated (401)
    - forbidden (403)
    - not_found (404)
    - conflict (400)
    - rate_limited (429)
    - upstream (503)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "malformed"
    reason: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = dict(detail or {})
        if self.reason and "reason" not in self.detail:
            self.detail["reason"] = self.reason


class MalformedError(ServiceError):
    """Request is structurally invalid (400)."""
    status_code = 400
    error_code = "malformed"


class InvalidOrExpiredTokenError(MalformedError):
    """Verification token or reset code is unknown, used, or expired."""
    reason = "invalid_or_expired_token"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthenticated"


class InvalidCredentialError(AuthenticationError):
    """Unknown email or wrong password; the two are indistinguishable."""
    reason = "invalid_credential"


class InvalidTokenError(AuthenticationError):
    reason = "invalid_token"


class TokenExpiredError(InvalidTokenError):
    """Token signature is valid but its ``exp`` has passed."""
    reason = "token_expired"


class MalformedTokenError(InvalidTokenError):
    """Token cannot be parsed, lacks required claims, or has the wrong type."""


class SignatureInvalidError(InvalidTokenError):
    """Token was not signed with the configured key."""


class StaleTokenError(AuthenticationError):
    """Refresh token was superseded by a later login."""
    reason = "stale_token"


class TokenRevokedError(AuthenticationError):
    reason = "token_revoked"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class EmailNotVerifiedError(ForbiddenError):
    reason = "email_not_verified"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class UnknownEmailError(NotFoundError):
    reason = "unknown_email"


class ConflictError(ServiceError):
    """Resource already exists (400 with code ``conflict``)."""
    status_code = 400
    error_code = "conflict"
    reason = "user_exists"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.detail.setdefault("retry_after", retry_after)


class UpstreamError(ServiceError):
    """A backing store is unreachable (503)."""
    status_code = 503
    error_code = "upstream"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "MalformedError",
    "InvalidOrExpiredTokenError",
    "AuthenticationError",
    "InvalidCredentialError",
    "InvalidTokenError",
    "TokenExpiredError",
    "MalformedTokenError",
    "SignatureInvalidError",
    "StaleTokenError",
    "TokenRevokedError",
    "ForbiddenError",
    "EmailNotVerifiedError",
    "NotFoundError",
    "UnknownEmailError",
    "ConflictError",
    "RateLimitedError",
    "UpstreamError",
    "ServerError",
]
