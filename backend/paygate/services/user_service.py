"""
User Service

Dashboard account lifecycle: registration, email verification and
password login.

Email delivery is not wired up. The verification link is logged and
returned to the caller instead.
"""
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from passlib.context import CryptContext

from ..clock import utcnow
from ..config import Settings, settings as default_settings
from ..db.storage import Storage
from ..exceptions import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from ..models.users import PASSWORD_PATTERN, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

VERIFICATION_TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


async def register_user(
    storage: Storage,
    email: str,
    password: str,
    business_name: Optional[str] = None,
    config: Optional[Settings] = None
) -> Dict[str, Any]:
    """
    Create an unverified MERCHANT account.

    Args:
        storage: Storage backend
        email: Login email, compared case-insensitively
        password: Plaintext password, checked against the password policy
        business_name: Optional display name
        config: Settings override (tests)

    Returns:
        {"user": User, "verification_token": str, "verification_url": str}

    Raises:
        ValidationError: Email already registered or weak password
    """
    config = config or default_settings
    email = email.strip().lower()

    if not PASSWORD_PATTERN.match(password):
        raise ValidationError("Password must contain uppercase, lowercase, number, and special character")

    if await storage.get_user_by_email(email) is not None:
        raise ValidationError("User already exists")

    token = secrets.token_hex(VERIFICATION_TOKEN_BYTES)
    now = utcnow()
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash=hash_password(password),
        role="MERCHANT",
        business_name=business_name or "",
        email_verified=False,
        email_verification_token=token,
        email_verification_expires=now + timedelta(hours=config.email_verification_hours),
        created_at=now,
        updated_at=now,
    )
    user = await storage.create_user(user)

    verification_url = f"{config.frontend_url.rstrip('/')}/verify-email?token={token}"
    logger.info(f"Registered user {user.id}; verification link issued for {email}")

    return {"user": user, "verification_token": token, "verification_url": verification_url}


async def authenticate_user(storage: Storage, email: str, password: str) -> User:
    """
    Check a login attempt.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password
        EmailNotVerifiedError: Correct password, email not yet verified
    """
    user = await storage.get_user_by_email(email.strip().lower())
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login attempt")
        raise InvalidCredentialsError()

    if not user.email_verified:
        raise EmailNotVerifiedError()

    if user.status != "active":
        raise InvalidCredentialsError()

    return user


async def verify_email(storage: Storage, token: str) -> User:
    """
    Mark the account holding token as verified and clear the token.

    Raises:
        ValidationError: Unknown, already used or expired token
    """
    user = await storage.get_user_by_verification_token(token)
    if user is None or user.email_verified:
        raise ValidationError("Invalid or expired verification token")

    if user.email_verification_expires is None or user.email_verification_expires < utcnow():
        raise ValidationError("Invalid or expired verification token")

    updated = await storage.update_user(
        user.id,
        {
            "email_verified": True,
            "email_verification_token": None,
            "email_verification_expires": None,
        }
    )
    logger.info(f"Email verified for user {user.id}")
    return updated


async def get_user(storage: Storage, user_id: str) -> User:
    user = await storage.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user
