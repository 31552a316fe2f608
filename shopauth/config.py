from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shopauth.logging import get_logger

logger = get_logger(__name__)


class JwtAlgorithm(str, Enum):
    """HMAC signing algorithms accepted for token signing."""

    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth service."""

    service_name: str = env_field("shopauth", "SERVICE_NAME")
    database_url: str = env_field(
        "postgresql://localhost:5432/shopauth", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors; permits an ephemeral JWT secret.",
    )

    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_algorithm: JwtAlgorithm = env_field(JwtAlgorithm.HS256, "JWT_ALGORITHM")
    jwt_issuer: str = env_field("shopauth", "JWT_ISSUER")
    access_token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Access token lifetime in minutes",
    )
    refresh_token_ttl_days: int = env_field(
        30, "REFRESH_TOKEN_TTL_DAYS", description="Refresh token lifetime in days"
    )
    verification_token_ttl_hours: int = env_field(
        24,
        "VERIFICATION_TOKEN_TTL_HOURS",
        description="Email verification token lifetime in hours",
    )
    reset_code_ttl_seconds: int = env_field(
        300, "RESET_CODE_TTL_SECONDS", description="Password reset code lifetime"
    )
    reset_code_digits: int = env_field(6, "RESET_CODE_DIGITS")

    # argon2id work factor
    password_hash_time_cost: int = env_field(3, "PASSWORD_HASH_TIME_COST")
    password_hash_memory_cost: int = env_field(
        64 * 1024, "PASSWORD_HASH_MEMORY_COST", description="Memory cost in KiB"
    )
    password_hash_parallelism: int = env_field(4, "PASSWORD_HASH_PARALLELISM")

    rate_limit_per_window: int = env_field(
        100,
        "RATE_LIMIT_PER_WINDOW",
        description="Requests allowed per client and route in one window; 0 disables",
    )
    rate_limit_window_seconds: int = env_field(15 * 60, "RATE_LIMIT_WINDOW_SECONDS")
    login_rate_limit: int = env_field(10, "LOGIN_RATE_LIMIT")
    register_rate_limit: int = env_field(5, "REGISTER_RATE_LIMIT")
    reset_rate_limit: int = env_field(5, "RESET_RATE_LIMIT")
    trust_forwarded_for: bool = env_field(
        False,
        "TRUST_FORWARDED_FOR",
        description="Use the last X-Forwarded-For hop, the one appended by the gateway, as the client key",
    )
    cors_allow_origins: str = env_field(
        "", "CORS_ALLOW_ORIGINS", description="Comma-separated list of allowed origins"
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: JwtAlgorithm) -> JwtAlgorithm:
        return JwtAlgorithm(value)

    @field_validator(
        "access_token_ttl_minutes",
        "refresh_token_ttl_days",
        "verification_token_ttl_hours",
        "reset_code_ttl_seconds",
    )
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token lifetimes must be positive")
        return value

    @field_validator("reset_code_digits")
    @classmethod
    def _validate_code_digits(cls, value: int) -> int:
        if not 4 <= value <= 10:
            raise ValueError("reset_code_digits must be between 4 and 10")
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            if len(self.jwt_secret) < 32 and not self.test_mode:
                raise ValueError("JWT_SECRET must be at least 32 characters")
            return self
        if not self.test_mode:
            raise ValueError("JWT_SECRET is required outside TEST_MODE")
        # Tokens signed with this secret do not survive a restart
        self.jwt_secret = secrets.token_urlsafe(64)
        logger.warning("jwt_secret_generated", reason="test_mode")
        return self

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
