from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional, Protocol

from shopauth.config import Settings
from shopauth.logging import get_logger
from shopauth.service.errors import (
    ConflictError,
    EmailNotVerifiedError,
    ForbiddenError,
    InvalidCredentialError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    MalformedError,
    NotFoundError,
    StaleTokenError,
    TokenRevokedError,
    UnknownEmailError,
)
from shopauth.service.notifications import Notifier
from shopauth.service.passwords import CredentialVerifier
from shopauth.service.tokens import Principal, TokenCodec, TokenKind
from shopauth.storage.errors import ConstraintViolation
from shopauth.storage.models import Role, User, UserStatus
from shopauth.storage.revocation import RevocationStore

logger = get_logger(__name__)


class UserStore(Protocol):
    def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        *,
        phone_number: Optional[str] = None,
        role: str = Role.CUSTOMER.value,
        status: str = UserStatus.PENDING_VERIFICATION.value,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...

    def mark_email_verified(self, user_id: str) -> Optional[User]: ...

    def update_user_role(self, user_id: str, role: str) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def ping(self) -> bool: ...


@dataclass
class AuthContext:
    user_id: str
    email: str
    role: str
    token: str
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class AccessGrant:
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class Registration:
    user: User
    tokens: TokenPair


def _principal(user: User) -> Principal:
    return Principal(subject_id=user.id, email=user.email, role=user.role)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Account and session lifecycle.

    Accounts move from ``pending_verification`` to ``active`` when the email
    verification token is consumed. Each subject holds at most one valid
    refresh token; issuing a new pair overwrites it. Access tokens stay
    stateless until logout places them on the denylist for the rest of their
    lifetime.
    """

    def __init__(
        self,
        store: UserStore,
        revocations: RevocationStore,
        codec: TokenCodec,
        verifier: CredentialVerifier,
        settings: Settings,
        *,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.revocations = revocations
        self.codec = codec
        self.verifier = verifier
        self.settings = settings
        self.notifier = notifier
        self.logger = logger

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_ttl_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_ttl_days)

    @property
    def verification_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.verification_token_ttl_hours)

    async def _issue_session(self, user: User) -> TokenPair:
        principal = _principal(user)
        access = self.codec.issue(principal, TokenKind.ACCESS, self.access_ttl)
        refresh = self.codec.issue(principal, TokenKind.REFRESH, self.refresh_ttl)
        # Overwrites any previous refresh token for this subject
        await self.revocations.set_refresh_token(
            user.id, refresh, int(self.refresh_ttl.total_seconds())
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    async def _issue_verification(self, user: User) -> str:
        ttl_seconds = int(self.verification_ttl.total_seconds())
        token = self.codec.issue(_principal(user), TokenKind.VERIFY, self.verification_ttl)
        await self.revocations.set_verification_token(user.id, token, ttl_seconds)
        if self.notifier:
            self.notifier.send_email_verification(user, token, ttl_seconds)
        return token

    def _hash_and_store_password(self, user_id: str, password: str) -> None:
        pwd_hash, algo = self.verifier.hash(password)
        self.store.save_password(user_id, pwd_hash, algo)

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        *,
        phone_number: Optional[str] = None,
    ) -> Registration:
        email = _normalize_email(email)
        if self.store.get_user_by_email(email):
            self.logger.info("register_conflict", email=email)
            raise ConflictError("User already exists")
        try:
            user = self.store.create_user(
                email,
                first_name,
                last_name,
                phone_number=phone_number,
            )
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration for the same email
            raise ConflictError("User already exists") from exc
        try:
            self._hash_and_store_password(user.id, password)
            await self._issue_verification(user)
            tokens = await self._issue_session(user)
        except Exception:
            # An account without a stored verification token can never be activated
            self.logger.warning("register_rolled_back", user_id=user.id)
            self.store.delete_user(user.id)
            raise
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return Registration(user=user, tokens=tokens)

    async def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        email = _normalize_email(email)
        user = self.store.get_user_by_email(email)
        if not user:
            self.verifier.dummy_verify(password)
            self.logger.info("login_failed", reason="unknown_email")
            raise InvalidCredentialError("Invalid credentials")
        record = self.store.get_password_record(user.id)
        if not record or not self.verifier.verify(password, record[0], record[1]):
            if not record:
                self.logger.warning("password_record_missing", user_id=user.id)
            self.logger.info("login_failed", user_id=user.id, reason="bad_password")
            raise InvalidCredentialError("Invalid credentials")
        if not user.is_email_verified:
            raise EmailNotVerifiedError("Please verify your email first")
        if self.verifier.needs_rehash(record[0]):
            self._hash_and_store_password(user.id, password)
            self.logger.info("password_rehashed", user_id=user.id)
        tokens = await self._issue_session(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return user, tokens

    async def refresh(self, refresh_token: str) -> AccessGrant:
        """Mint a new access token from the subject's current refresh token.

        The refresh token itself is not rotated; only login replaces it.
        """
        try:
            claims = self.codec.verify(refresh_token, TokenKind.REFRESH)
        except InvalidTokenError as exc:
            raise InvalidTokenError(
                "Invalid refresh token", detail={"cause": exc.reason}
            ) from exc
        subject_id = str(claims["sub"])
        stored = await self.revocations.get_refresh_token(subject_id)
        if stored is None or not hmac.compare_digest(
            stored.encode(), refresh_token.encode()
        ):
            self.logger.info("refresh_rejected", user_id=subject_id, reason="stale_token")
            raise StaleTokenError("Invalid refresh token")
        user = self.store.get_user(subject_id)
        if not user:
            raise NotFoundError("User not found")
        access = self.codec.issue(_principal(user), TokenKind.ACCESS, self.access_ttl)
        return AccessGrant(
            access_token=access, expires_in=int(self.access_ttl.total_seconds())
        )

    async def authenticate(self, access_token: str) -> AuthContext:
        claims = self.codec.verify(access_token, TokenKind.ACCESS)
        if await self.revocations.is_blacklisted(access_token):
            raise TokenRevokedError("Token has been revoked")
        return AuthContext(
            user_id=str(claims["sub"]),
            email=str(claims.get("email", "")),
            role=str(claims.get("role", Role.CUSTOMER.value)),
            token=access_token,
            claims=claims,
        )

    async def logout(self, access_token: str) -> None:
        """Revoke the presented access token and the subject's refresh token.

        Signature and expiry must still pass. Repeating the call with an
        already revoked token changes nothing.
        """
        claims = self.codec.verify(access_token, TokenKind.ACCESS)
        subject_id = str(claims["sub"])
        if await self.revocations.is_blacklisted(access_token):
            return
        await self.revocations.clear_refresh_token(subject_id)
        await self.revocations.blacklist(access_token, self.codec.remaining_ttl(claims))
        self.logger.info("logout", user_id=subject_id)

    async def verify_email(self, token: str) -> User:
        try:
            claims = self.codec.verify(token, TokenKind.VERIFY)
        except InvalidTokenError as exc:
            raise InvalidOrExpiredTokenError(
                "Invalid or expired verification token"
            ) from exc
        subject_id = str(claims["sub"])
        if not await self.revocations.consume_verification_token(subject_id, token):
            self.logger.info("email_verification_rejected", user_id=subject_id)
            raise InvalidOrExpiredTokenError("Invalid or expired verification token")
        user = self.store.mark_email_verified(subject_id)
        if not user:
            self.logger.warning("email_verification_missing_user", user_id=subject_id)
            raise InvalidOrExpiredTokenError("Invalid or expired verification token")
        self.logger.info("email_verified", user_id=user.id)
        return user

    async def resend_verification(self, user_id: str) -> None:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise MalformedError("Email already verified", detail={"reason": "already_verified"})
        await self._issue_verification(user)
        self.logger.info("email_verification_requested", user_id=user.id)

    def _generate_reset_code(self) -> str:
        digits = self.settings.reset_code_digits
        return f"{secrets.randbelow(10 ** digits):0{digits}d}"

    async def request_password_reset(self, email: str) -> str:
        """Store a one-time reset code for the account and hand it to delivery."""
        user = self.store.get_user_by_email(_normalize_email(email))
        if not user:
            raise UnknownEmailError("User not found")
        code = self._generate_reset_code()
        ttl = self.settings.reset_code_ttl_seconds
        await self.revocations.set_reset_code(user.id, code, ttl)
        if self.notifier:
            self.notifier.send_password_reset(user, code, ttl)
        self.logger.info("password_reset_requested", user_id=user.id)
        return code

    async def confirm_password_reset(
        self, email: str, code: str, new_password: str
    ) -> User:
        user = self.store.get_user_by_email(_normalize_email(email))
        if not user:
            raise InvalidOrExpiredTokenError("Invalid or expired reset code")
        if not await self.revocations.consume_reset_code(user.id, code):
            self.logger.info("password_reset_rejected", user_id=user.id)
            raise InvalidOrExpiredTokenError("Invalid or expired reset code")
        self._hash_and_store_password(user.id, new_password)
        # Existing sessions must log in again with the new password
        await self.revocations.clear_refresh_token(user.id)
        self.logger.info("password_reset_completed", user_id=user.id)
        return user

    def get_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


def require_role(ctx: AuthContext, *roles: str) -> AuthContext:
    """Raise ``ForbiddenError`` unless the caller holds one of ``roles``."""
    if roles and ctx.role not in roles:
        raise ForbiddenError(
            "Insufficient permissions",
            detail={"required_roles": list(roles)},
        )
    return ctx
