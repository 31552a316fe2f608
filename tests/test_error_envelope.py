"""Tests for the error envelope format and exception mapping.

Error responses share one shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<id>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from shopauth.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from shopauth.api.schemas import Envelope, ErrorBody
from shopauth.service.errors import (
    ConflictError,
    InvalidCredentialError,
    RateLimitedError,
    ServerError,
    ServiceError,
    TokenExpiredError,
    UpstreamError,
)
from shopauth.storage.errors import CacheUnavailable, ConstraintViolation


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthenticated", message="Invalid credentials")
        assert error.code == "unauthenticated"
        assert error.message == "Invalid credentials"
        assert error.details is None

    def test_error_body_accepts_list_details(self):
        error = ErrorBody(
            code="malformed",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_unknown_code_is_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")

    def test_envelope_status_is_constrained(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")
        assert Envelope(status="ok").request_id


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "malformed"),
            (401, "unauthenticated"),
            (403, "forbidden"),
            (404, "not_found"),
            (429, "rate_limited"),
            (503, "upstream"),
        ],
    )
    def test_status_to_code(self, status, code):
        assert _error_code_for_status(status) == code

    def test_unmapped_status_is_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_every_mapped_code_is_valid(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="ok")

    def test_error_response_shape(self):
        response = _error_response(401, "nope", {"reason": "invalid_token"})

        body = json.loads(response.body)
        assert response.status_code == 401
        assert body["status"] == "error"
        assert body["data"] is None
        assert body["error"] == {
            "code": "unauthenticated",
            "message": "nope",
            "details": {"reason": "invalid_token"},
        }


class TestServiceErrors:
    def test_reason_is_copied_into_detail(self):
        exc = InvalidCredentialError("Invalid credentials")
        assert exc.status_code == 401
        assert exc.detail == {"reason": "invalid_credential"}

    def test_explicit_reason_wins(self):
        exc = TokenExpiredError("expired", detail={"reason": "custom"})
        assert exc.detail == {"reason": "custom"}

    def test_server_error_code(self):
        exc = ServerError("unexpected")
        assert (exc.status_code, exc.error_code) == (500, "server_error")

    def test_conflict_uses_bad_request_status(self):
        exc = ConflictError("User already exists")
        assert (exc.status_code, exc.error_code) == (400, "conflict")

    def test_rate_limited_carries_retry_after(self):
        exc = RateLimitedError("slow down", retry_after=12)
        assert exc.retry_after == 12
        assert exc.detail["retry_after"] == 12


class _Body(BaseModel):
    name: str


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/service/{kind}")
    async def raise_service(kind: str):
        if kind == "conflict":
            raise ConflictError("User already exists")
        if kind == "limited":
            raise RateLimitedError("Too many requests", retry_after=30)
        if kind == "upstream":
            raise UpstreamError("mail relay down")
        raise ServiceError("bad input")

    @app.get("/constraint")
    async def raise_constraint():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/cache")
    async def raise_cache():
        raise CacheUnavailable("get", ConnectionError("refused"))

    @app.post("/validate")
    async def validate(body: _Body):
        return {"name": body.name}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return TestClient(app, raise_server_exceptions=False)


class TestExceptionHandlers:
    def test_service_error(self, error_client):
        response = error_client.get("/service/conflict")

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "conflict"
        assert body["error"]["details"] == {"reason": "user_exists"}

    def test_rate_limited_sets_retry_after(self, error_client):
        response = error_client.get("/service/limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert response.json()["error"]["code"] == "rate_limited"

    def test_upstream_error(self, error_client):
        response = error_client.get("/service/upstream")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "upstream"

    def test_constraint_violation_is_conflict(self, error_client):
        response = error_client.get("/constraint")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "conflict"
        assert response.json()["error"]["details"] == {"field": "email"}

    def test_cache_unavailable_is_upstream(self, error_client):
        response = error_client.get("/cache")

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "upstream"
        assert "refused" not in error["message"]

    def test_validation_error_is_malformed(self, error_client):
        response = error_client.post("/validate", json={})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "malformed"
        assert error["details"][0]["loc"] == ["body", "name"]

    def test_unknown_route_is_not_found(self, error_client):
        response = error_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_wrong_method_is_malformed(self, error_client):
        response = error_client.post("/constraint")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "malformed"

    def test_unhandled_exception_hides_details(self, error_client):
        response = error_client.get("/boom")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "server_error"
        assert "kaboom" not in error["message"]
