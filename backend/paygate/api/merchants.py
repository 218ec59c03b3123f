"""
Merchants API Endpoints

Merchant onboarding, credential rotation and settings for the logged-in
dashboard user. All endpoints require a bearer access token.

Security Notes:
- The plaintext api_secret appears only in the create and rotate responses
- Every other response uses the public view, without the secret
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging

from ..config import Settings
from ..db.storage import Storage
from ..models.identity import UserIdentity
from ..models.merchants import CreateMerchantRequest, IssuedCredentials, Merchant, UpdateWebhookRequest
from ..services import merchant_service
from ..services.credential_vault import rotate_credentials
from .deps import get_settings, get_storage, require_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _issued(merchant: Merchant, api_secret: str) -> Dict[str, Any]:
    return IssuedCredentials(
        id=merchant.id,
        business_name=merchant.business_name,
        api_key=merchant.api_key,
        api_secret=api_secret,
        status=merchant.status,
        rotation_count=merchant.rotation_count,
        last_rotated_at=merchant.last_rotated_at,
    ).model_dump(mode="json")


@router.post("", status_code=201)
async def create_merchant_endpoint(
    request: CreateMerchantRequest,
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Create the caller's merchant account.

    Returns:
        {"message": str, "merchant": IssuedCredentials}. Store api_secret
        now; it is not shown again.
    """
    merchant, api_secret = await merchant_service.create_merchant(
        storage,
        identity.user_id,
        request.business_name,
        str(request.webhook_url) if request.webhook_url else None,
        config=config
    )

    return {"message": "Merchant account created", "merchant": _issued(merchant, api_secret)}


@router.get("")
async def get_merchant_endpoint(
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    merchant = await merchant_service.get_merchant_for_user(storage, identity.user_id)
    return merchant.public_view().model_dump(mode="json")


@router.post("/rotate-credentials")
async def rotate_credentials_endpoint(
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Replace the caller's API key and secret.

    The previous pair stops working immediately.
    """
    merchant = await merchant_service.get_merchant_for_user(storage, identity.user_id)
    updated, api_secret = await rotate_credentials(storage, merchant.id, config)

    return {"message": "Credentials rotated successfully", "merchant": _issued(updated, api_secret)}


@router.put("/webhook")
async def update_webhook_endpoint(
    request: UpdateWebhookRequest,
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    merchant = await merchant_service.get_merchant_for_user(storage, identity.user_id)
    updated = await merchant_service.update_webhook(storage, merchant.id, str(request.webhook_url))

    return {"message": "Webhook updated", "merchant": updated.public_view().model_dump(mode="json")}


@router.get("/stats")
async def merchant_stats_endpoint(
    identity: UserIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    merchant = await merchant_service.get_merchant_for_user(storage, identity.user_id)
    stats = await merchant_service.merchant_stats(storage, merchant.id)

    return {"merchant_id": merchant.id, "stats": stats.model_dump(mode="json")}
