"""
Credential Vault

Issues merchant API credentials, encrypts secrets at rest and rotates
credential pairs.

Security Notes:
- api_key: 32 random bytes, api_secret: 64 random bytes, both hex
- Secrets are stored as nonceHex:authTagHex:ciphertextHex (AES-256-GCM)
- One process-wide key encrypts every merchant secret
- Rotation invalidates the previous pair immediately; there is no grace period
"""
import binascii
import logging
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..clock import utcnow
from ..config import Settings, settings as default_settings
from ..db.storage import Storage
from ..exceptions import ConflictError, CryptoError, NotFoundError
from ..models.merchants import Merchant

logger = logging.getLogger(__name__)

API_KEY_BYTES = 32
API_SECRET_BYTES = 64
NONCE_BYTES = 12
TAG_BYTES = 16


def generate_api_credentials() -> Tuple[str, str]:
    """
    Generate a fresh credential pair from a CSPRNG.

    Returns:
        (api_key, api_secret) as 64 and 128 hex characters
    """
    return secrets.token_hex(API_KEY_BYTES), secrets.token_hex(API_SECRET_BYTES)


# ============================================================================
# At-rest encryption
# ============================================================================

def encrypt_secret(plaintext: str, key: Optional[bytes] = None) -> str:
    """
    Encrypt with AES-256-GCM under a fresh random nonce.

    Args:
        plaintext: Value to protect
        key: 32-byte key; defaults to the configured ENCRYPTION_KEY

    Returns:
        nonceHex:authTagHex:ciphertextHex
    """
    key = key or default_settings.encryption_key_bytes
    nonce = secrets.token_bytes(NONCE_BYTES)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_secret(record: str, key: Optional[bytes] = None) -> str:
    """
    Decrypt a nonceHex:authTagHex:ciphertextHex record.

    Args:
        record: Stored ciphertext record
        key: 32-byte key; defaults to the configured ENCRYPTION_KEY

    Returns:
        Plaintext

    Raises:
        CryptoError: If the record is malformed or fails authentication
    """
    key = key or default_settings.encryption_key_bytes

    if not isinstance(record, str):
        raise CryptoError("Malformed ciphertext record")
    parts = record.split(":")
    if len(parts) != 3:
        raise CryptoError("Malformed ciphertext record")

    try:
        nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except (ValueError, binascii.Error) as e:
        raise CryptoError("Malformed ciphertext record") from e

    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise CryptoError("Malformed ciphertext record")

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise CryptoError("Ciphertext failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted value is not valid UTF-8") from e


def reveal_secret(merchant: Merchant, config: Optional[Settings] = None) -> str:
    """Decrypt a merchant's signing secret for transient use."""
    config = config or default_settings
    return decrypt_secret(merchant.api_secret, config.encryption_key_bytes)


# ============================================================================
# Rotation
# ============================================================================

async def rotate_credentials(
    storage: Storage,
    merchant_id: str,
    config: Optional[Settings] = None
) -> Tuple[Merchant, str]:
    """
    Replace a merchant's credential pair.

    The write is conditional on the rotation_count that was read, so two
    concurrent rotations cannot both succeed and silently lose one pair.

    Args:
        storage: Storage backend
        merchant_id: Merchant to rotate
        config: Settings supplying the encryption key

    Returns:
        (updated merchant, new plaintext secret)

    Raises:
        NotFoundError: Merchant does not exist
        ConflictError: Another rotation won the race
    """
    merchant = await storage.get_merchant(merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found")

    config = config or default_settings
    api_key, api_secret = generate_api_credentials()

    updated = await storage.update_merchant(
        merchant_id,
        {
            "api_key": api_key,
            "api_secret": encrypt_secret(api_secret, config.encryption_key_bytes),
            "last_rotated_at": utcnow(),
            "rotation_count": merchant.rotation_count + 1,
        },
        expected_rotation_count=merchant.rotation_count
    )

    if updated is None:
        logger.warning(f"Concurrent credential rotation detected for merchant {merchant_id}")
        raise ConflictError("Credentials were rotated concurrently, retry")

    logger.info(f"Rotated credentials for merchant {merchant_id}, rotation_count={updated.rotation_count}")

    return updated, api_secret
