"""
Merchant Service

Merchant onboarding and account settings. Every user owns at most one
merchant. Secrets are encrypted here, explicitly, before the record is
persisted; storage never sees plaintext.
"""
import logging
import uuid
from typing import Optional, Tuple

from ..clock import utcnow
from ..config import Settings, settings as default_settings
from ..db.storage import Storage
from ..exceptions import MerchantExistsError, NotFoundError
from ..models.merchants import Merchant
from ..models.transactions import TransactionSummary
from .credential_vault import encrypt_secret, generate_api_credentials
from .transaction_ledger import transaction_summary

logger = logging.getLogger(__name__)


async def create_merchant(
    storage: Storage,
    user_id: str,
    business_name: str,
    webhook_url: Optional[str] = None,
    config: Optional[Settings] = None
) -> Tuple[Merchant, str]:
    """
    Onboard a merchant for user_id.

    Returns:
        (merchant, plaintext api_secret). The plaintext is not retrievable
        again after this call.

    Raises:
        MerchantExistsError: User already owns a merchant
    """
    config = config or default_settings

    if await storage.get_merchant_by_user(user_id) is not None:
        raise MerchantExistsError()

    api_key, api_secret = generate_api_credentials()
    now = utcnow()
    merchant = Merchant(
        id=str(uuid.uuid4()),
        user_id=user_id,
        business_name=business_name,
        api_key=api_key,
        api_secret=encrypt_secret(api_secret, config.encryption_key_bytes),
        status="active",
        webhook_url=webhook_url,
        created_at=now,
        updated_at=now,
    )

    merchant = await storage.create_merchant(merchant)

    logger.info(f"Created merchant {merchant.id} for user {user_id}")

    return merchant, api_secret


async def get_merchant_for_user(storage: Storage, user_id: str) -> Merchant:
    """Merchant owned by user_id, or NotFoundError."""
    merchant = await storage.get_merchant_by_user(user_id)
    if merchant is None:
        raise NotFoundError("Merchant account not found")
    return merchant


async def update_webhook(storage: Storage, merchant_id: str, webhook_url: str) -> Merchant:
    merchant = await storage.update_merchant(
        merchant_id,
        {"webhook_url": webhook_url}
    )
    if merchant is None:
        raise NotFoundError("Merchant not found")
    logger.info(f"Updated webhook URL for merchant {merchant_id}")
    return merchant


async def merchant_stats(storage: Storage, merchant_id: str) -> TransactionSummary:
    return await transaction_summary(storage, merchant_id)
