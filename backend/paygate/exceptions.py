"""
PayGate Exception Hierarchy

Classified failures surfaced by the trust and transaction layer.
None of them is retried internally; the HTTP layer maps each one to a
status code and a response body.
"""
from typing import Optional, Dict, Any


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Subclasses fix the error code and HTTP status. Messages must be safe to
    show to clients: no secrets, signatures or timestamp deltas.
    """

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Authentication
# ============================================================================

class AuthenticationError(GatewayError):
    """
    Request could not be authenticated.

    The response body is identical for every subclass so that a client
    cannot learn which check failed. The specific error_code is only logged.
    """

    status_code = 401

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": "auth:rejected",
            "message": "Authentication failed",
            "details": {}
        }


class MissingCredentialsError(AuthenticationError):
    """
    Signing headers absent.

    Example:
    - Request lacks X-Signature, X-Merchant-Id or X-Timestamp
    """

    status_code = 400

    def __init__(self, message: str = "Missing signing headers", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:missing_credentials", message, details)


class ReplayRejectedError(AuthenticationError):
    """
    Request timestamp outside the replay window.

    Examples:
    - X-Timestamp more than 300 seconds from server time
    - X-Timestamp not an integer
    """

    def __init__(self, message: str = "Request timestamp rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:replay_rejected", message, details)


class InvalidMerchantError(AuthenticationError):
    """Merchant unknown or not active. Both cases look the same."""

    def __init__(self, message: str = "Invalid merchant", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:invalid_merchant", message, details)


class InvalidSignatureError(AuthenticationError):
    """
    Signature verification failed.

    Examples:
    - Body, path or method altered after signing
    - Request signed with a rotated-out secret
    """

    def __init__(self, message: str = "Invalid signature", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:invalid_signature", message, details)


class InvalidTokenError(AuthenticationError):
    """Session token malformed, wrongly signed or missing claims."""

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:invalid_token", message, details)


class TokenExpiredError(GatewayError):
    """
    Session token past expiry.

    Kept distinct from InvalidTokenError so clients know to refresh.
    """

    status_code = 401

    def __init__(self, message: str = "Token expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:token_expired", message, details)


class InvalidCredentialsError(GatewayError):
    """Unknown email or wrong password. Both cases look the same."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:invalid_credentials", message, details)


class EmailNotVerifiedError(GatewayError):
    """Login attempted before the email address was verified."""

    status_code = 403

    def __init__(
        self,
        message: str = "Please verify your email address before logging in",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__("auth:email_not_verified", message, details)


class ForbiddenError(GatewayError):
    """Authenticated, but not allowed to perform the operation."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:forbidden", message, details)


# ============================================================================
# Crypto
# ============================================================================

class CryptoError(GatewayError):
    """
    Ciphertext record could not be decrypted.

    Examples:
    - Record does not have exactly three colon-separated hex fields
    - Authentication tag does not verify (tampering)
    """

    status_code = 500

    def __init__(self, message: str = "Decryption failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("crypto:error", message, details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": "internal_error",
            "message": "An unexpected error occurred",
            "details": {}
        }


# ============================================================================
# Resources and state
# ============================================================================

class NotFoundError(GatewayError):
    """Merchant, transaction or user absent."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("resource:not_found", message, details)


class InvalidStateTransitionError(GatewayError):
    """
    Transaction not in a state that allows the requested transition.

    Example:
    - Settling a transaction that is no longer pending
    """

    def __init__(
        self,
        message: str = "Transaction cannot be processed in current status",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__("transaction:invalid_state", message, details)


class MerchantExistsError(GatewayError):
    """User already owns a merchant account."""

    def __init__(self, message: str = "User already has a merchant account", details: Optional[Dict[str, Any]] = None):
        super().__init__("merchant:exists", message, details)


class ConflictError(GatewayError):
    """
    Concurrent modification detected.

    Example:
    - Two credential rotations racing on the same merchant
    """

    status_code = 409

    def __init__(self, message: str = "Resource was modified concurrently", details: Optional[Dict[str, Any]] = None):
        super().__init__("resource:conflict", message, details)


class ValidationError(GatewayError):
    """Malformed input that passed schema validation but fails a business rule."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("validation_error", message, details)
