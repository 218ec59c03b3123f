"""
Request Authenticator

Verifies merchant-signed API requests. Stateless per request.

Check order:
1. X-Signature, X-Merchant-Id and X-Timestamp all present
2. Timestamp within the replay window (before any storage access)
3. Merchant exists and is active
4. Secret decrypted, canonical METHOD|PATH|BODY|TIMESTAMP rebuilt from the
   raw request
5. HMAC verified in constant time

Every failure raises a subclass of AuthenticationError, which renders the
same opaque response. Only the logs tell the categories apart.
"""
import logging
import re
from typing import Optional, Union

from ..clock import unix_now
from ..config import Settings, settings as default_settings
from ..db.storage import Storage
from ..exceptions import (
    CryptoError,
    InvalidMerchantError,
    InvalidSignatureError,
    MissingCredentialsError,
    ReplayRejectedError,
)
from ..models.identity import MerchantIdentity
from .credential_vault import reveal_secret
from .signature_service import build_request_message, verify

logger = logging.getLogger(__name__)

TIMESTAMP_PATTERN = re.compile(r"[0-9]+", re.ASCII)


def check_timestamp(timestamp: str, now: Optional[int] = None, window: Optional[int] = None) -> None:
    """
    Reject timestamps outside the replay window.

    Args:
        timestamp: X-Timestamp header value (Unix seconds, ASCII digits only)
        now: Current Unix time; defaults to the system clock
        window: Allowed skew in seconds; defaults to REPLAY_WINDOW_SECONDS

    Raises:
        ReplayRejectedError: Not a plain decimal integer, or |now - timestamp| > window
    """
    now = unix_now() if now is None else now
    window = default_settings.replay_window_seconds if window is None else window

    # int() alone would also take "1_700", "+170", " 170" and non-ASCII digits
    if not isinstance(timestamp, str) or not TIMESTAMP_PATTERN.fullmatch(timestamp):
        raise ReplayRejectedError()
    request_time = int(timestamp)

    if abs(now - request_time) > window:
        raise ReplayRejectedError()


async def authenticate_request(
    storage: Storage,
    method: str,
    path: str,
    raw_body: Union[bytes, str],
    signature: Optional[str],
    merchant_id: Optional[str],
    timestamp: Optional[str],
    now: Optional[int] = None,
    config: Optional[Settings] = None,
) -> MerchantIdentity:
    """
    Authenticate a merchant-signed request.

    Args:
        storage: Storage backend
        method: HTTP method
        path: Full request path
        raw_body: Request body bytes exactly as received
        signature: X-Signature header
        merchant_id: X-Merchant-Id header
        timestamp: X-Timestamp header
        now: Current Unix time (tests)
        config: Settings supplying the replay window and encryption key

    Returns:
        MerchantIdentity bound to the merchant's owning user

    Raises:
        MissingCredentialsError, ReplayRejectedError, InvalidMerchantError,
        InvalidSignatureError
    """
    config = config or default_settings

    if not signature or not merchant_id or not timestamp:
        logger.warning("Rejected signed request: missing signing headers")
        raise MissingCredentialsError()

    try:
        check_timestamp(timestamp, now=now, window=config.replay_window_seconds)
    except ReplayRejectedError:
        logger.warning(f"Rejected signed request for merchant {merchant_id}: timestamp outside window")
        raise

    merchant = await storage.get_merchant(merchant_id)
    if merchant is None or merchant.status != "active":
        logger.warning(f"Rejected signed request: merchant {merchant_id} unknown or inactive")
        raise InvalidMerchantError()

    try:
        secret = reveal_secret(merchant, config)
        message = build_request_message(method, path, raw_body, timestamp)
    except (CryptoError, UnicodeDecodeError) as e:
        logger.error(f"Could not rebuild signing context for merchant {merchant_id}: {type(e).__name__}")
        raise InvalidSignatureError() from e

    if not verify(message, signature, secret):
        logger.warning(f"Rejected signed request for merchant {merchant_id}: signature mismatch")
        raise InvalidSignatureError()

    return MerchantIdentity(merchant_id=merchant.id, user_id=merchant.user_id)
