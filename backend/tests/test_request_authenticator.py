"""
Tests for merchant request authentication.
"""
import pytest
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from paygate.exceptions import (
    InvalidMerchantError,
    InvalidSignatureError,
    MissingCredentialsError,
    ReplayRejectedError,
)
from paygate.models.identity import Identity, MerchantIdentity, UserIdentity
from paygate.services.credential_vault import rotate_credentials
from paygate.services.merchant_service import create_merchant
from paygate.services.request_authenticator import authenticate_request, check_timestamp
from paygate.services.signature_service import build_request_message, sign

NOW = 1_700_000_000
PATH = "/api/transactions/checkout"
BODY = b'{"amount":100,"currency":"USD","customer_email":"a@b.com"}'


def signed_headers(merchant_id: str, secret: str, body: bytes = BODY, method: str = "POST",
                   path: str = PATH, timestamp: int = NOW):
    ts = str(timestamp)
    return sign(build_request_message(method, path, body, ts), secret), merchant_id, ts


class TestCheckTimestamp:
    """Test suite for the replay window."""

    @pytest.mark.parametrize("offset", [0, 1, -1, 299, -299, 300, -300])
    def test_inside_window(self, offset: int) -> None:
        check_timestamp(str(NOW + offset), now=NOW, window=300)

    @pytest.mark.parametrize("offset", [301, -301, 3600])
    def test_outside_window(self, offset: int) -> None:
        with pytest.raises(ReplayRejectedError):
            check_timestamp(str(NOW + offset), now=NOW, window=300)

    @pytest.mark.parametrize("value", ["", "abc", "1.5", "0x10"])
    def test_not_an_integer(self, value: str) -> None:
        with pytest.raises(ReplayRejectedError):
            check_timestamp(value, now=NOW, window=300)

    @pytest.mark.parametrize("value", [
        "1_700_000_000",
        "+1700000000",
        " 1700000000",
        "1700000000\n",
        "١٧٠٠٠٠٠٠٠٠",
    ])
    def test_only_ascii_digits(self, value: str) -> None:
        assert int(value) == NOW
        with pytest.raises(ReplayRejectedError):
            check_timestamp(value, now=NOW, window=300)

    def test_window_argument_overrides_default(self) -> None:
        check_timestamp(str(NOW - 60), now=NOW, window=300)
        with pytest.raises(ReplayRejectedError):
            check_timestamp(str(NOW - 60), now=NOW, window=10)


class TestAuthenticateRequest:
    """Test suite for authenticate_request()."""

    async def test_valid_request(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        identity = await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW)

        assert identity.kind == "merchant"
        assert identity.merchant_id == merchant.id
        assert identity.user_id == merchant.user_id

    async def test_bodiless_request(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        path = "/api/transactions/history"
        signature, merchant_id, ts = signed_headers(merchant.id, secret, body=b"", method="GET", path=path)

        identity = await authenticate_request(storage, "GET", path, b"", signature, merchant_id, ts, now=NOW)

        assert identity.merchant_id == merchant.id

    @pytest.mark.parametrize("missing", ["signature", "merchant_id", "timestamp"])
    async def test_missing_header(self, storage, merchant_factory, missing: str) -> None:
        merchant, secret = await merchant_factory()
        values = dict(zip(("signature", "merchant_id", "timestamp"), signed_headers(merchant.id, secret)))
        values[missing] = None

        with pytest.raises(MissingCredentialsError):
            await authenticate_request(storage, "POST", PATH, BODY, now=NOW, **values)

    async def test_stale_timestamp_rejected_before_lookup(self, storage) -> None:
        # Unknown merchant, but the replay check fires first
        with pytest.raises(ReplayRejectedError):
            await authenticate_request(storage, "POST", PATH, BODY, "00" * 32, "nobody", str(NOW - 301), now=NOW)

    async def test_timestamp_at_edge_of_window(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret, timestamp=NOW - 299)

        identity = await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW)

        assert identity.merchant_id == merchant.id

    async def test_unknown_merchant(self, storage) -> None:
        with pytest.raises(InvalidMerchantError):
            await authenticate_request(storage, "POST", PATH, BODY, "00" * 32, "nobody", str(NOW), now=NOW)

    async def test_inactive_merchant(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        await storage.update_merchant(merchant.id, {"status": "suspended"})
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        with pytest.raises(InvalidMerchantError):
            await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW)

    async def test_body_altered_after_signing(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret)
        altered = BODY.replace(b"100", b"1000")

        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, altered, signature, merchant_id, ts, now=NOW)

    async def test_reserialized_body_rejected(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret)
        reordered = b'{"currency":"USD","amount":100,"customer_email":"a@b.com"}'

        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, reordered, signature, merchant_id, ts, now=NOW)

    async def test_path_and_method_are_bound(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", "/api/transactions/pay", BODY, signature, merchant_id, ts, now=NOW)
        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "PUT", PATH, BODY, signature, merchant_id, ts, now=NOW)

    async def test_old_secret_rejected_after_rotation(self, storage, merchant_factory) -> None:
        merchant, old_secret = await merchant_factory()
        _, new_secret = await rotate_credentials(storage, merchant.id)

        old = signed_headers(merchant.id, old_secret)
        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, BODY, *old, now=NOW)

        new = signed_headers(merchant.id, new_secret)
        identity = await authenticate_request(storage, "POST", PATH, BODY, *new, now=NOW)
        assert identity.merchant_id == merchant.id

    async def test_corrupt_stored_secret_is_invalid_signature(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        await storage.update_merchant(merchant.id, {"api_secret": "not:a:record"})
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW)

    async def test_non_utf8_body(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, b"\xff\xfe", signature, merchant_id, ts, now=NOW)

    async def test_configured_replay_window(self, storage, merchant_factory, test_settings) -> None:
        merchant, secret = await merchant_factory()
        signature, merchant_id, ts = signed_headers(merchant.id, secret, timestamp=NOW - 60)
        narrow = test_settings.model_copy(update={"replay_window_seconds": 10})

        with pytest.raises(ReplayRejectedError):
            await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW, config=narrow)

    async def test_configured_encryption_key(self, storage, user_factory, test_settings) -> None:
        user = await user_factory()
        merchant, secret = await create_merchant(storage, user.id, "Keyed Shop", config=test_settings)
        signature, merchant_id, ts = signed_headers(merchant.id, secret)

        identity = await authenticate_request(
            storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW, config=test_settings
        )
        assert identity.merchant_id == merchant.id

        # Under the default key the stored record does not decrypt
        with pytest.raises(InvalidSignatureError):
            await authenticate_request(storage, "POST", PATH, BODY, signature, merchant_id, ts, now=NOW)


class TestIdentity:
    """Test suite for the Identity union."""

    def test_discriminates_on_kind(self) -> None:
        adapter = TypeAdapter(Identity)

        merchant = adapter.validate_python({"kind": "merchant", "merchant_id": "m-1", "user_id": "u-1"})
        user = adapter.validate_python({"kind": "user", "user_id": "u-1", "role": "MERCHANT"})

        assert isinstance(merchant, MerchantIdentity)
        assert merchant.role == "MERCHANT"
        assert isinstance(user, UserIdentity)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            TypeAdapter(Identity).validate_python({"kind": "admin", "user_id": "u-1", "role": "ADMIN"})
