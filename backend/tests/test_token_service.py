"""
Tests for access and refresh token handling.
"""
import time

import pytest
from jose import jwt

from paygate.exceptions import InvalidTokenError, TokenExpiredError
from paygate.services.token_service import (
    issue_access_token,
    issue_refresh_token,
    verify_access_token,
    verify_refresh_token,
)


class TestTokenService:
    """Test suite for the JWT session tokens."""

    def test_access_token_round_trip(self, test_settings) -> None:
        token = issue_access_token("user-1", "MERCHANT", test_settings)
        payload = verify_access_token(token, test_settings)
        assert payload.user_id == "user-1"
        assert payload.role == "MERCHANT"

    def test_refresh_token_round_trip(self, test_settings) -> None:
        token = issue_refresh_token("user-1", "ADMIN", test_settings)
        payload = verify_refresh_token(token, test_settings)
        assert payload.user_id == "user-1"
        assert payload.role == "ADMIN"

    def test_access_lifetime_is_fifteen_minutes(self, test_settings) -> None:
        token = issue_access_token("user-1", "MERCHANT", test_settings)
        claims = jwt.get_unverified_claims(token)
        assert claims["exp"] - claims["iat"] == 15 * 60

    def test_refresh_lifetime_is_seven_days(self, test_settings) -> None:
        token = issue_refresh_token("user-1", "MERCHANT", test_settings)
        claims = jwt.get_unverified_claims(token)
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_refresh_token_is_not_an_access_token(self, test_settings) -> None:
        token = issue_refresh_token("user-1", "MERCHANT", test_settings)
        with pytest.raises(InvalidTokenError):
            verify_access_token(token, test_settings)

    def test_access_token_is_not_a_refresh_token(self, test_settings) -> None:
        token = issue_access_token("user-1", "MERCHANT", test_settings)
        with pytest.raises(InvalidTokenError):
            verify_refresh_token(token, test_settings)

    def test_expired_token(self, test_settings) -> None:
        now = int(time.time())
        token = jwt.encode(
            {"userId": "user-1", "role": "MERCHANT", "iat": now - 3600, "exp": now - 60},
            test_settings.jwt_access_secret,
            algorithm="HS256"
        )
        with pytest.raises(TokenExpiredError):
            verify_access_token(token, test_settings)

    def test_missing_claims(self, test_settings) -> None:
        token = jwt.encode(
            {"sub": "user-1", "exp": int(time.time()) + 60},
            test_settings.jwt_access_secret,
            algorithm="HS256"
        )
        with pytest.raises(InvalidTokenError):
            verify_access_token(token, test_settings)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed_token(self, test_settings, token: str) -> None:
        with pytest.raises(InvalidTokenError):
            verify_access_token(token, test_settings)
