"""
Pydantic Merchant Models

The stored record keeps api_secret in its encrypted form only.
"""
from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field, HttpUrl

MerchantStatus = Literal["active", "inactive", "suspended"]


class Merchant(BaseModel):
    """
    Merchant account with its API credential pair.

    Security Notes:
    - api_key is public and unique
    - api_secret holds the nonce:tag:ciphertext record, never plaintext
    - rotation_count only ever grows, by one per rotation
    """
    id: str
    user_id: str
    business_name: str
    api_key: str
    api_secret: str
    status: MerchantStatus = "active"
    webhook_url: Optional[str] = None
    rotation_count: int = Field(default=0, ge=0)
    last_rotated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def public_view(self) -> "MerchantPublic":
        """Copy without the encrypted secret."""
        return MerchantPublic(**self.model_dump(exclude={"api_secret"}))


class MerchantPublic(BaseModel):
    """Merchant as returned to dashboard users."""
    id: str
    user_id: str
    business_name: str
    api_key: str
    status: MerchantStatus
    webhook_url: Optional[str] = None
    rotation_count: int
    last_rotated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CreateMerchantRequest(BaseModel):
    business_name: str = Field(min_length=3)
    webhook_url: Optional[HttpUrl] = None


class UpdateWebhookRequest(BaseModel):
    webhook_url: HttpUrl


class IssuedCredentials(BaseModel):
    """
    Credentials as shown to the owner right after creation or rotation.

    This is the only time the plaintext secret leaves the service.
    """
    id: str
    business_name: str
    api_key: str
    api_secret: str
    status: MerchantStatus
    rotation_count: int = 0
    last_rotated_at: Optional[datetime] = None
