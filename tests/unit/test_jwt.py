"""Tests for JWT access token verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from bookpost.auth.jwt import verify_token


class TestVerifyToken:
    def test_valid_access_token(self, make_token):
        payload = verify_token(make_token(42))
        assert payload["sub"] == "42"
        assert payload["type"] == "access"

    def test_token_without_type_is_accepted(self, make_token):
        payload = verify_token(make_token(7, type=None))
        assert payload["sub"] == "7"

    def test_wrong_type_rejected(self, make_token):
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_token(make_token(1, token_type="refresh"))

    def test_expired_rejected(self, make_token):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(make_token(1, exp=past))

    def test_wrong_issuer_rejected(self, make_token):
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(make_token(1, iss="someone-else"))

    def test_non_numeric_subject_rejected(self, make_token):
        with pytest.raises(jwt.InvalidTokenError, match="subject"):
            verify_token(make_token("bc1qnotanid"))

    def test_bad_signature_rejected(self):
        token = jwt.encode(
            {"sub": "1", "type": "access", "iss": "bookpost.app"},
            "a-completely-different-secret-value-32b",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)
