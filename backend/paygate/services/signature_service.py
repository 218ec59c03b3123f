"""
Signature Service

Implements HMAC-SHA256 signature generation and verification, plus the
canonical message formats both sides of a signature must reproduce
byte-for-byte.

Integrity Notes:
- Constant-time comparison that does not leak the presented length
- Raw request bodies are signed as received, never re-serialized
"""
import hmac
import hashlib
from decimal import Decimal
from typing import Union


def sign(message: str, secret: str) -> str:
    """
    Compute HMAC-SHA256 of message keyed by secret.

    Args:
        message: Canonical message
        secret: Shared secret

    Returns:
        64-character lowercase hex digest
    """
    return hmac.new(
        secret.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def verify(message: str, signature: str, secret: str) -> bool:
    """
    Verify signature using constant-time comparison.

    Both the expected and presented signatures are hashed to fixed-length
    digests first, so a presented value of the wrong length costs the same
    as a wrong value of the right length.

    Args:
        message: Canonical message that was signed
        signature: Hex signature presented by the caller
        secret: Shared secret

    Returns:
        True if signature valid, False otherwise
    """
    if not isinstance(signature, str):
        return False
    try:
        presented = signature.encode('ascii')
    except UnicodeEncodeError:
        return False

    expected = sign(message, secret).encode('ascii')

    return hmac.compare_digest(
        hashlib.sha256(expected).digest(),
        hashlib.sha256(presented).digest()
    )


# ============================================================================
# Canonical Messages
# ============================================================================

def format_amount(amount: Union[Decimal, int, float, str]) -> str:
    """
    Render an amount the way it appears in signed strings.

    Trailing fractional zeros are dropped: 100.00 -> "100", 10.50 -> "10.5".
    """
    value = Decimal(str(amount)).normalize()
    return format(value, 'f')


def build_request_message(
    method: str,
    path: str,
    raw_body: Union[bytes, str],
    timestamp: str
) -> str:
    """
    Build METHOD|PATH|BODY|TIMESTAMP for merchant request signing.

    Args:
        method: HTTP method, uppercased
        path: Full request path, e.g. /api/transactions/checkout
        raw_body: Body exactly as received (empty for bodiless requests)
        timestamp: X-Timestamp header value as sent

    Raises:
        UnicodeDecodeError: If raw_body is not valid UTF-8
    """
    body = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
    return f"{method.upper()}|{path}|{body}|{timestamp}"


def build_transaction_message(
    merchant_id: str,
    reference_id: str,
    amount: Union[Decimal, int, float, str],
    currency: str,
    customer_email: str
) -> str:
    """Build merchantId|referenceId|amount|currency|customerEmail."""
    return f"{merchant_id}|{reference_id}|{format_amount(amount)}|{currency}|{customer_email}"
