"""
Pytest configuration and fixtures.
"""
import asyncio
import uuid
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from paygate.clock import utcnow
from paygate.config import Settings
from paygate.db.init_db import create_engine_for_path
from paygate.db.sql_storage import SqlStorage
from paygate.db.storage import MemoryStorage, Storage
from paygate.main import create_app
from paygate.mocks.settlement_oracle import FixedSettlementOracle
from paygate.models.merchants import Merchant
from paygate.models.users import User
from paygate.services.merchant_service import create_merchant
from paygate.services.webhook_notifier import WebhookDispatcher


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        jwt_access_secret="test_access_secret",
        jwt_refresh_secret="test_refresh_secret",
        encryption_key="test_encryption_key_0123456789abcdef",
        storage_backend="memory",
        database_path=":memory:",
        frontend_url="http://dashboard.test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def storage(request) -> AsyncGenerator[Storage, Any]:
    """Each storage backend in turn; SQLite runs in memory."""
    if request.param == "memory":
        backend: Storage = MemoryStorage()
    else:
        backend = SqlStorage(create_engine_for_path(":memory:"))

    await backend.initialize()
    yield backend
    await backend.close()


class InterleavingMemoryStorage(MemoryStorage):
    """MemoryStorage whose reads yield to the event loop, so gathered tasks interleave."""

    async def get_merchant(self, merchant_id: str):
        merchant = await super().get_merchant(merchant_id)
        await asyncio.sleep(0)
        return merchant

    async def get_transaction(self, transaction_id: str):
        transaction = await super().get_transaction(transaction_id)
        await asyncio.sleep(0)
        return transaction


@pytest_asyncio.fixture
async def memory_storage() -> AsyncGenerator[MemoryStorage, Any]:
    backend = InterleavingMemoryStorage()
    await backend.initialize()
    yield backend
    await backend.close()


async def _make_user(storage: Storage, email: Optional[str] = None, verified: bool = True) -> User:
    now = utcnow()
    user = User(
        id=str(uuid.uuid4()),
        email=email or f"owner-{uuid.uuid4().hex[:8]}@shop.test",
        password_hash="not-a-real-hash",
        email_verified=verified,
        created_at=now,
        updated_at=now,
    )
    return await storage.create_user(user)


@pytest.fixture
def user_factory(storage: Storage) -> Callable[..., Awaitable[User]]:
    """Create users directly in storage, skipping password hashing."""
    async def factory(email: Optional[str] = None, verified: bool = True) -> User:
        return await _make_user(storage, email, verified)
    return factory


@pytest.fixture
def merchant_factory(storage: Storage) -> Callable[..., Awaitable[Tuple[Merchant, str]]]:
    """
    Create a user plus merchant.

    Returns:
        (merchant, plaintext api_secret)
    """
    async def factory(business_name: str = "Acme Widgets", webhook_url: Optional[str] = None):
        user = await _make_user(storage)
        return await create_merchant(storage, user.id, business_name, webhook_url)
    return factory


@pytest.fixture
def sample_checkout_data() -> Dict[str, Any]:
    """Sample checkout request body."""
    return {
        "amount": 100.00,
        "currency": "USD",
        "customer_email": "customer@example.com",
        "metadata": {"order_id": "ord_123"},
    }


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
def oracle() -> FixedSettlementOracle:
    return FixedSettlementOracle(["completed"])


@pytest.fixture
def recording_dispatcher() -> WebhookDispatcher:
    """Dispatcher whose jobs are queued but never delivered; tests inspect the queue."""
    return WebhookDispatcher(workers=1, queue_size=10)


@pytest_asyncio.fixture
async def app_storage() -> AsyncGenerator[MemoryStorage, Any]:
    backend = MemoryStorage()
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def app(test_settings, app_storage, oracle, recording_dispatcher):
    return create_app(
        settings=test_settings,
        storage=app_storage,
        settlement_oracle=oracle,
        dispatcher=recording_dispatcher,
    )


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client. Lifespan does not run; app.state is set by create_app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
