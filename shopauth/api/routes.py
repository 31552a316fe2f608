from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Request, Response
from pydantic import BaseModel

from shopauth.api.schemas import (
    AccessTokenResponse,
    AuthResponse,
    Envelope,
    LoginRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from shopauth.config import Settings
from shopauth.logging import get_correlation_id, get_logger
from shopauth.service.auth import AuthContext, require_role
from shopauth.service.errors import AuthenticationError, RateLimitedError
from shopauth.service.rate_limit import rate_limit_key
from shopauth.service.runtime import get_runtime
from shopauth.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


def _ok(data: Optional[BaseModel] = None) -> Envelope:
    payload = data.model_dump(by_alias=True, mode="json") if data is not None else None
    cid = get_correlation_id()
    if cid:
        return Envelope(status="ok", data=payload, request_id=cid)
    return Envelope(status="ok", data=payload)


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining", "reset_seconds")

    def __init__(self, limit: int, remaining: int, reset_seconds: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)


def _client_key(request: Request, settings: Settings) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        # The gateway appends the peer it saw; earlier hops are client supplied
        last_hop = forwarded.split(",")[-1].strip()
        if last_hop:
            return last_hop
    return request.client.host if request.client else "unknown"


async def _enforce_rate_limit(
    runtime, key: str, limit: int, window_seconds: int, *, response: Optional[Response] = None
) -> Optional[RateLimitInfo]:
    """Count one request against ``key`` and raise once the window is exhausted.

    Raises:
        RateLimitedError: the counter exceeded ``limit`` in the current window
    """
    decision = await runtime.rate_limiter.hit(key, limit, window_seconds)
    if decision.limit <= 0 or decision.degraded:
        return None
    info = RateLimitInfo(decision.limit, decision.remaining, decision.retry_after)
    if response is not None:
        info.apply_headers(response)
    if not decision.allowed:
        raise RateLimitedError(
            f"Too many requests, please try again in {decision.retry_after} seconds",
            retry_after=decision.retry_after,
            detail={"limit": decision.limit},
        )
    return info


def rate_limited(limit_setting: str = "rate_limit_per_window"):
    """Dependency counting the request against ``ratelimit:<client>:<path>``."""

    async def _dependency(request: Request, response: Response) -> Optional[RateLimitInfo]:
        runtime = get_runtime()
        settings = runtime.settings
        key = rate_limit_key(_client_key(request, settings), request.url.path)
        return await _enforce_rate_limit(
            runtime,
            key,
            getattr(settings, limit_setting),
            settings.rate_limit_window_seconds,
            response=response,
        )

    return _dependency


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise AuthenticationError(
            "Authentication required", detail={"reason": "missing_token"}
        )
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError(
            "Invalid authorization header", detail={"reason": "invalid_token"}
        )
    return token


async def get_user(token: str = Depends(bearer_token)) -> AuthContext:
    return await get_runtime().auth.authenticate(token)


def require_roles(*roles: str):
    async def _dependency(principal: AuthContext = Depends(get_user)) -> AuthContext:
        return require_role(principal, *roles)

    return _dependency


@router.post(
    "/register",
    response_model=Envelope,
    status_code=201,
    dependencies=[Depends(rate_limited("register_rate_limit"))],
)
async def register(body: RegisterRequest):
    """Create a customer account pending email verification.

    Returns the new user and a token pair; the verification token is handed
    to the delivery collaborator.
    """
    runtime = get_runtime()
    registration = await runtime.auth.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
    )
    return _ok(
        AuthResponse(
            user=UserResponse.from_user(registration.user),
            tokens=TokenResponse.from_pair(registration.tokens),
        )
    )


@router.post(
    "/login",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("login_rate_limit"))],
)
async def login(body: LoginRequest):
    """Authenticate with email and password.

    Raises:
        401: unknown email or wrong password
        403: email not verified yet
    """
    runtime = get_runtime()
    user, tokens = await runtime.auth.login(body.email, body.password)
    return _ok(
        AuthResponse(
            user=UserResponse.from_user(user),
            tokens=TokenResponse.from_pair(tokens),
        )
    )


@router.post(
    "/logout",
    response_model=Envelope,
    dependencies=[Depends(rate_limited())],
)
async def logout(token: str = Depends(bearer_token)):
    await get_runtime().auth.logout(token)
    return _ok(MessageResponse(message="Logged out successfully"))


@router.post(
    "/refresh",
    response_model=Envelope,
    dependencies=[Depends(rate_limited())],
)
async def refresh(body: RefreshRequest):
    grant = await get_runtime().auth.refresh(body.refresh_token)
    return _ok(AccessTokenResponse.from_grant(grant))


@router.get(
    "/verify-email",
    response_model=Envelope,
    dependencies=[Depends(rate_limited())],
)
async def verify_email(token: str = Query(..., min_length=1, max_length=4096)):
    await get_runtime().auth.verify_email(token)
    return _ok(MessageResponse(message="Email verified successfully"))


@router.post(
    "/verify-email/resend",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("reset_rate_limit"))],
)
async def resend_verification(principal: AuthContext = Depends(get_user)):
    await get_runtime().auth.resend_verification(principal.user_id)
    return _ok(MessageResponse(message="Verification email sent"))


@router.post(
    "/password-reset/request",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("reset_rate_limit"))],
)
async def request_password_reset(body: PasswordResetRequest):
    await get_runtime().auth.request_password_reset(body.email)
    return _ok(MessageResponse(message="Password reset code sent"))


@router.post(
    "/password-reset/confirm",
    response_model=Envelope,
    dependencies=[Depends(rate_limited("reset_rate_limit"))],
)
async def confirm_password_reset(body: PasswordResetConfirm):
    await get_runtime().auth.confirm_password_reset(
        body.email, body.code, body.new_password
    )
    return _ok(MessageResponse(message="Password has been reset"))


@router.get("/me", response_model=Envelope, dependencies=[Depends(rate_limited())])
async def me(principal: AuthContext = Depends(get_user)):
    user = get_runtime().auth.get_user(principal.user_id)
    return _ok(UserResponse.from_user(user))


@router.get(
    "/users/{user_id}",
    response_model=Envelope,
    dependencies=[Depends(rate_limited())],
)
async def get_user_by_id(
    user_id: str = Path(..., min_length=1, max_length=64),
    principal: AuthContext = Depends(require_roles(Role.ADMIN.value)),
):
    user = get_runtime().auth.get_user(user_id)
    logger.info("admin_user_lookup", admin_id=principal.user_id, user_id=user_id)
    return _ok(UserResponse.from_user(user))
