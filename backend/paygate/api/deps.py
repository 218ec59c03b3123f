"""
API Dependencies

Shared FastAPI dependencies: application singletons from app.state and the
two authentication paths.

- Bearer access token -> UserIdentity (dashboard)
- X-Signature / X-Merchant-Id / X-Timestamp -> MerchantIdentity (server to server)
"""
import logging
from typing import Optional, Union

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import Settings
from ..db.storage import Storage
from ..exceptions import InvalidTokenError, NotFoundError
from ..mocks.settlement_oracle import SettlementOracle
from ..models.identity import Identity, MerchantIdentity, UserIdentity
from ..models.merchants import Merchant
from ..services.request_authenticator import authenticate_request
from ..services.token_service import verify_access_token
from ..services.webhook_notifier import WebhookDispatcher

logger = logging.getLogger(__name__)

# auto_error=False so a missing header goes through the same opaque 401 path
bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_oracle(request: Request) -> SettlementOracle:
    return request.app.state.settlement_oracle


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


async def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> UserIdentity:
    """Validate the bearer access token and return the acting user."""
    if credentials is None or not credentials.credentials:
        logger.warning("Rejected request: missing bearer token")
        raise InvalidTokenError("Missing bearer token")

    payload = verify_access_token(credentials.credentials, config)
    return UserIdentity(user_id=payload.user_id, role=payload.role)


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_signature: Optional[str] = Header(default=None),
    x_merchant_id: Optional[str] = Header(default=None),
    x_timestamp: Optional[str] = Header(default=None),
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings),
) -> Identity:
    """
    Authenticate either a signed merchant request or a dashboard user.

    A request carrying X-Signature is HMAC-authenticated against the raw
    body exactly as received. Anything else needs a bearer access token.
    """
    if x_signature is not None:
        raw_body = await request.body()
        return await authenticate_request(
            storage,
            request.method,
            request.url.path,
            raw_body,
            x_signature,
            x_merchant_id,
            x_timestamp,
            config=config,
        )

    return await require_user(credentials, config)


async def resolve_merchant(
    # Plain Union: FastAPI rejects Annotated Field metadata next to a Depends default
    identity: Union[MerchantIdentity, UserIdentity] = Depends(get_identity),
    storage: Storage = Depends(get_storage),
) -> Merchant:
    """Merchant acting on the request, from either identity variant."""
    if isinstance(identity, MerchantIdentity):
        merchant = await storage.get_merchant(identity.merchant_id)
    else:
        merchant = await storage.get_merchant_by_user(identity.user_id)

    if merchant is None:
        raise NotFoundError("Merchant account not found")
    return merchant
