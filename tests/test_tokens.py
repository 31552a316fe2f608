"""Unit tests for the token codec."""

from datetime import timedelta

import jwt
import pytest

from shopauth.service.errors import (
    AuthenticationError,
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)
from shopauth.service.tokens import Principal, TokenCodec, TokenKind

SECRET = "codec-secret-value-long-enough-for-hs256-keys"


@pytest.fixture
def codec(clock):
    return TokenCodec(SECRET, issuer="shopauth", clock=clock)


@pytest.fixture
def principal():
    return Principal(subject_id="user-1", email="a@example.com", role="customer")


class TestIssue:
    def test_access_token_carries_identity_claims(self, codec, principal):
        token = codec.issue(principal, TokenKind.ACCESS, timedelta(minutes=5))
        claims = codec.verify(token, TokenKind.ACCESS)

        assert claims["sub"] == "user-1"
        assert claims["email"] == "a@example.com"
        assert claims["role"] == "customer"
        assert claims["type"] == "access"
        assert claims["iss"] == "shopauth"
        assert claims["exp"] - claims["iat"] == 300

    def test_refresh_token_omits_email_and_role(self, codec, principal):
        token = codec.issue(principal, TokenKind.REFRESH, timedelta(days=1))
        claims = codec.verify(token, TokenKind.REFRESH)

        assert claims["sub"] == "user-1"
        assert "email" not in claims
        assert "role" not in claims

    def test_verification_token_carries_email(self, codec, principal):
        token = codec.issue(principal, TokenKind.VERIFY, timedelta(hours=24))
        claims = codec.verify(token, TokenKind.VERIFY)

        assert claims["email"] == "a@example.com"

    def test_tokens_issued_in_same_second_differ(self, codec, principal):
        first = codec.issue(principal, TokenKind.REFRESH, timedelta(days=1))
        second = codec.issue(principal, TokenKind.REFRESH, timedelta(days=1))

        assert first != second

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("")


class TestVerify:
    def test_expired_token(self, codec, principal, clock):
        token = codec.issue(principal, TokenKind.ACCESS, timedelta(seconds=60))
        clock.advance(61)

        with pytest.raises(TokenExpiredError) as excinfo:
            codec.verify(token)
        assert excinfo.value.detail["reason"] == "token_expired"

    def test_token_valid_until_expiry(self, codec, principal, clock):
        token = codec.issue(principal, TokenKind.ACCESS, timedelta(seconds=60))
        clock.advance(59)

        assert codec.verify(token)["sub"] == "user-1"

    def test_wrong_signing_key(self, principal, clock):
        other = TokenCodec("another-secret-value-long-enough-for-hs256", issuer="shopauth", clock=clock)
        token = other.issue(principal, TokenKind.ACCESS, timedelta(minutes=5))
        codec = TokenCodec(SECRET, issuer="shopauth", clock=clock)

        with pytest.raises(SignatureInvalidError):
            codec.verify(token)

    def test_signature_checked_before_expiry(self, principal, clock):
        other = TokenCodec("another-secret-value-long-enough-for-hs256", issuer="shopauth", clock=clock)
        token = other.issue(principal, TokenKind.ACCESS, timedelta(seconds=1))
        clock.advance(10)
        codec = TokenCodec(SECRET, issuer="shopauth", clock=clock)

        with pytest.raises(SignatureInvalidError):
            codec.verify(token)

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c", "a.b"])
    def test_garbage_is_malformed(self, codec, token):
        with pytest.raises(MalformedTokenError):
            codec.verify(token)

    def test_wrong_kind_is_malformed(self, codec, principal):
        token = codec.issue(principal, TokenKind.REFRESH, timedelta(days=1))

        with pytest.raises(MalformedTokenError):
            codec.verify(token, TokenKind.ACCESS)

    def test_missing_required_claim_is_malformed(self, codec, clock):
        token = jwt.encode(
            {"sub": "user-1", "exp": int(clock()) + 60, "iss": "shopauth"},
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(MalformedTokenError):
            codec.verify(token)

    def test_wrong_issuer_is_malformed(self, principal, clock):
        foreign = TokenCodec(SECRET, issuer="someone-else", clock=clock)
        token = foreign.issue(principal, TokenKind.ACCESS, timedelta(minutes=5))
        codec = TokenCodec(SECRET, issuer="shopauth", clock=clock)

        with pytest.raises(MalformedTokenError):
            codec.verify(token)

    def test_unsigned_token_rejected(self, codec, clock):
        token = jwt.encode(
            {
                "sub": "user-1",
                "type": "access",
                "iat": int(clock()),
                "exp": int(clock()) + 60,
                "jti": "x",
                "iss": "shopauth",
            },
            None,
            algorithm="none",
        )

        with pytest.raises(AuthenticationError):
            codec.verify(token)

    def test_all_failures_are_authentication_errors(self):
        for exc_type in (TokenExpiredError, MalformedTokenError, SignatureInvalidError):
            assert issubclass(exc_type, AuthenticationError)
            assert exc_type.status_code == 401


def test_remaining_ttl(codec, principal, clock):
    token = codec.issue(principal, TokenKind.ACCESS, timedelta(seconds=100))
    claims = codec.verify(token)
    clock.advance(40)

    assert codec.remaining_ttl(claims) == 60
    clock.advance(100)
    assert codec.remaining_ttl(claims) == 0
