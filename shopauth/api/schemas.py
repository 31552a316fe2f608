from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shopauth.service.auth import AccessGrant, TokenPair
from shopauth.storage.models import User

_VALID_ERROR_CODES = frozenset({
    "malformed",
    "unauthenticated",
    "forbidden",
    "not_found",
    "conflict",
    "rate_limited",
    "upstream",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """Uniform API response wrapper."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


# Characters that render invisibly or reorder text; stripped from user input
_INVISIBLE = frozenset(
    ["\u200b", "\u200c", "\u200d", "\ufeff"]
    + [chr(c) for c in range(0x202A, 0x202F)]
    + [chr(c) for c in range(0x2066, 0x206A)]
)


def _normalize_unicode(value: str) -> str:
    return unicodedata.normalize(
        "NFKC", "".join(c for c in value if c not in _INVISIBLE)
    )


# RFC 5321 limits; the local part allows the unquoted atom characters only
_MAX_EMAIL_LENGTH = 254
_MAX_LOCAL_PART = 64
_LOCAL_PART = re.compile(r"^[a-z0-9!#$%&'*+/=?^_`{|}~.-]+$")
_DOMAIN_LABEL = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9 ()-]{5,18}[0-9]$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def _validate_email(value: str) -> str:
    """Lower-case and normalize ``value``; reject anything not shaped like
    ``local@label.label``."""
    email = _normalize_unicode(value.strip().lower())
    if len(email) > _MAX_EMAIL_LENGTH:
        raise ValueError("email address too long")
    local, sep, domain = email.partition("@")
    labels = domain.split(".")
    if (
        not sep
        or not local
        or len(local) > _MAX_LOCAL_PART
        or not _LOCAL_PART.match(local)
        or len(labels) < 2
        or not all(_DOMAIN_LABEL.match(label) for label in labels)
    ):
        raise ValueError("invalid email address")
    return email


def _validate_password_strength(value: str) -> str:
    if not MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH:
        raise ValueError(
            f"password must be {MIN_PASSWORD_LENGTH} to {MAX_PASSWORD_LENGTH} characters"
        )
    return value


def _validate_name(value: str) -> str:
    cleaned = _normalize_unicode(value).strip()
    if not cleaned:
        raise ValueError("name must not be blank")
    return cleaned


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_CamelModel):
    email: str
    password: str
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _validate_names(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        value = value.strip()
        if not _PHONE_PATTERN.match(value):
            raise ValueError("invalid phone number")
        return value


class LoginRequest(_CamelModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(..., min_length=1, max_length=4096)


class PasswordResetRequest(_CamelModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_password_reset_email(cls, value: str) -> str:
        return _validate_email(value)


class PasswordResetConfirm(_CamelModel):
    email: str
    code: str = Field(..., pattern=r"^[0-9]{4,10}$")
    new_password: str

    @field_validator("email")
    @classmethod
    def _validate_confirm_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class UserResponse(_CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    role: str
    is_email_verified: bool
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone_number=user.phone_number,
            role=user.role,
            is_email_verified=user.is_email_verified,
            created_at=user.created_at,
        )


class TokenResponse(_CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class AuthResponse(_CamelModel):
    user: UserResponse
    tokens: TokenResponse


class AccessTokenResponse(_CamelModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_grant(cls, grant: AccessGrant) -> "AccessTokenResponse":
        return cls(
            access_token=grant.access_token,
            token_type=grant.token_type,
            expires_in=grant.expires_in,
        )


class MessageResponse(_CamelModel):
    message: str
