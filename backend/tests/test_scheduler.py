"""
Tests for the housekeeping scheduler and application lifespan.
"""
from decimal import Decimal

from paygate.config import Settings
from paygate.db.storage import MemoryStorage
from paygate.main import create_app
from paygate.mocks.settlement_oracle import FixedSettlementOracle
from paygate.services.merchant_service import create_merchant
from paygate.services.scheduler import PURGE_JOB_ID, HousekeepingScheduler
from paygate.services.transaction_ledger import create_transaction, settle_transaction


class TestHousekeepingScheduler:
    """Test suite for HousekeepingScheduler."""

    async def test_start_registers_purge_job(self, test_settings) -> None:
        housekeeping = HousekeepingScheduler(MemoryStorage(), test_settings)

        housekeeping.start()
        try:
            assert housekeeping.running
            assert housekeeping.get_job(PURGE_JOB_ID) is not None
        finally:
            housekeeping.shutdown(wait=False)

    async def test_purge_uses_configured_ttl(self, test_settings) -> None:
        storage = MemoryStorage()
        merchant, _ = await create_merchant(storage, "user-1", "Shop")
        pending = await create_transaction(storage, merchant.id, Decimal("5"), "USD", "a@b.com")
        completed = await create_transaction(storage, merchant.id, Decimal("6"), "USD", "a@b.com")
        await settle_transaction(storage, completed.id, FixedSettlementOracle(["completed"]))

        fresh = HousekeepingScheduler(storage, test_settings)
        assert await fresh.purge_stale_pending() == 0

        expired = HousekeepingScheduler(storage, test_settings.model_copy(update={"pending_transaction_ttl_days": -1}))
        assert await expired.purge_stale_pending() == 1

        assert await storage.get_transaction(pending.id) is None
        assert await storage.get_transaction(completed.id) is not None


class TestLifespan:
    """Test suite for application startup and shutdown."""

    async def test_lifespan_builds_storage_and_workers(self) -> None:
        config = Settings(
            jwt_access_secret="a_secret",
            jwt_refresh_secret="r_secret",
            storage_backend="memory",
        )
        app = create_app(settings=config)
        assert app.state.storage is None

        async with app.router.lifespan_context(app):
            assert isinstance(app.state.storage, MemoryStorage)
            assert app.state.dispatcher.running

        assert not app.state.dispatcher.running
