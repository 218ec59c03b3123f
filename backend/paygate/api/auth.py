"""
Auth API Endpoints

Dashboard account registration, email verification and JWT sessions.

Session Notes:
- Login returns an access token (15 min) and a refresh token (7 days)
- Refresh exchanges a valid refresh token for a new access token
- There is no logout endpoint; clients discard their tokens
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging

from ..config import Settings
from ..db.storage import Storage
from ..models.identity import UserIdentity
from ..models.users import LoginRequest, RefreshRequest, RegisterRequest, VerifyEmailRequest
from ..services import user_service
from ..services.token_service import issue_access_token, issue_refresh_token, verify_refresh_token
from .deps import get_settings, get_storage, require_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", status_code=201)
async def register_endpoint(
    request: RegisterRequest,
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Register a dashboard account.

    Request Body:
        {"email": str, "password": str, "business_name": str | null}

    Returns:
        Public user view plus the verification token and link. The account
        cannot log in until the email is verified.
    """
    result = await user_service.register_user(
        storage,
        request.email,
        request.password,
        request.business_name,
        config=config
    )

    return {
        "message": "Registration successful. Please verify your email address.",
        "user": result["user"].public_view().model_dump(mode="json"),
        "verification": {
            "token": result["verification_token"],
            "url": result["verification_url"],
            "expires_in_hours": config.email_verification_hours,
        },
    }


@router.post("/login")
async def login_endpoint(
    request: LoginRequest,
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Exchange email and password for a token pair.

    Returns:
        {"access_token": str, "refresh_token": str, "token_type": "bearer", "user": {...}}
    """
    user = await user_service.authenticate_user(storage, request.email, request.password)

    logger.info(f"User logged in: {user.id}")

    return {
        "access_token": issue_access_token(user.id, user.role, config),
        "refresh_token": issue_refresh_token(user.id, user.role, config),
        "token_type": "bearer",
        "user": {"id": user.id, "email": user.email, "role": user.role},
    }


@router.post("/refresh")
async def refresh_endpoint(
    request: RefreshRequest,
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """Issue a new access token for a valid refresh token."""
    payload = verify_refresh_token(request.refresh_token, config)

    # Role is re-read so a changed role takes effect on refresh
    user = await user_service.get_user(storage, payload.user_id)

    return {
        "access_token": issue_access_token(user.id, user.role, config),
        "token_type": "bearer",
    }


@router.get("/profile")
async def profile_endpoint(
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    user = await user_service.get_user(storage, identity.user_id)
    return user.public_view().model_dump(mode="json")


@router.post("/verify-email")
async def verify_email_endpoint(
    request: VerifyEmailRequest,
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    """Consume an email verification token."""
    user = await user_service.verify_email(storage, request.token)

    return {
        "message": "Email verified successfully",
        "user": {"id": user.id, "email": user.email, "email_verified": user.email_verified},
    }
