"""
Token Service

Issues and verifies the two dashboard session tokens.

- Access token: 15 minutes, signed with JWT_ACCESS_SECRET
- Refresh token: 7 days, signed with JWT_REFRESH_SECRET

Tokens are stateless. There is no server-side revocation: a valid,
unexpired token is always accepted, and logout means the client discards it.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ..config import Settings, settings as default_settings
from ..exceptions import InvalidTokenError, TokenExpiredError
from ..models.users import TokenPayload


def _issue(user_id: str, role: str, secret: str, lifetime: timedelta, algorithm: str) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def _verify(token: str, secret: str, algorithm: str) -> TokenPayload:
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as e:
        raise TokenExpiredError() from e
    except JWTError as e:
        raise InvalidTokenError() from e

    user_id = claims.get("userId")
    role = claims.get("role")
    if not isinstance(user_id, str) or not isinstance(role, str) or "exp" not in claims:
        raise InvalidTokenError()

    return TokenPayload(user_id=user_id, role=role)


def issue_access_token(user_id: str, role: str, config: Optional[Settings] = None) -> str:
    """Sign a short-lived access token carrying userId and role."""
    config = config or default_settings
    return _issue(
        user_id,
        role,
        config.jwt_access_secret,
        timedelta(minutes=config.access_token_expire_minutes),
        config.jwt_algorithm
    )


def issue_refresh_token(user_id: str, role: str, config: Optional[Settings] = None) -> str:
    """Sign a long-lived refresh token carrying userId and role."""
    config = config or default_settings
    return _issue(
        user_id,
        role,
        config.jwt_refresh_secret,
        timedelta(days=config.refresh_token_expire_days),
        config.jwt_algorithm
    )


def verify_access_token(token: str, config: Optional[Settings] = None) -> TokenPayload:
    """
    Verify an access token.

    Raises:
        TokenExpiredError: Token is past its expiry
        InvalidTokenError: Malformed, wrongly signed or missing claims
    """
    config = config or default_settings
    return _verify(token, config.jwt_access_secret, config.jwt_algorithm)


def verify_refresh_token(token: str, config: Optional[Settings] = None) -> TokenPayload:
    """
    Verify a refresh token.

    Raises:
        TokenExpiredError: Token is past its expiry
        InvalidTokenError: Malformed, wrongly signed or missing claims
    """
    config = config or default_settings
    return _verify(token, config.jwt_refresh_secret, config.jwt_algorithm)
