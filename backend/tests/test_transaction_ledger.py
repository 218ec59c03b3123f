"""
Tests for transaction creation, settlement, history and housekeeping.
"""
import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from paygate.clock import utcnow
from paygate.exceptions import InvalidStateTransitionError, NotFoundError
from paygate.mocks.settlement_oracle import FixedSettlementOracle, RandomSettlementOracle
from paygate.models.transactions import TransactionFilters
from paygate.services.credential_vault import rotate_credentials
from paygate.services.merchant_service import create_merchant
from paygate.services.signature_service import build_transaction_message, sign
from paygate.services.transaction_ledger import (
    create_transaction,
    expire_stale_pending,
    get_transaction,
    settle_transaction,
    transaction_history,
    transaction_summary,
    verify_transaction_signature,
)


class TestCreateTransaction:
    """Test suite for create_transaction()."""

    async def test_creates_pending_signed_transaction(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()

        txn = await create_transaction(storage, merchant.id, Decimal("100.00"), "USD", "a@b.com")

        assert txn.status == "pending"
        assert uuid.UUID(txn.reference_id).version == 4
        expected = sign(f"{merchant.id}|{txn.reference_id}|100|USD|a@b.com", secret)
        assert txn.signature == expected

    async def test_signature_survives_storage(self, storage, merchant_factory) -> None:
        merchant, secret = await merchant_factory()
        created = await create_transaction(storage, merchant.id, Decimal("10.50"), "EUR", "c@d.com", {"k": "v"})

        stored = await storage.get_transaction(created.id)

        assert stored.amount == Decimal("10.50")
        assert stored.metadata == {"k": "v"}
        assert verify_transaction_signature(stored, secret)
        message = build_transaction_message(merchant.id, stored.reference_id, stored.amount, "EUR", "c@d.com")
        assert message.split("|")[2] == "10.5"

    async def test_reference_ids_are_unique(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        refs = set()
        for _ in range(20):
            txn = await create_transaction(storage, merchant.id, Decimal("1"), "USD", "a@b.com")
            refs.add(txn.reference_id)
        assert len(refs) == 20

    async def test_currency_is_uppercased(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        txn = await create_transaction(storage, merchant.id, Decimal("5"), "gbp", "a@b.com")
        assert txn.currency == "GBP"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("1.001")])
    async def test_rejects_bad_amount(self, storage, merchant_factory, amount) -> None:
        merchant, _ = await merchant_factory()
        with pytest.raises(ValueError):
            await create_transaction(storage, merchant.id, amount, "USD", "a@b.com")

    async def test_unknown_merchant(self, storage) -> None:
        with pytest.raises(NotFoundError):
            await create_transaction(storage, "missing", Decimal("1"), "USD", "a@b.com")

    async def test_signature_does_not_follow_rotation(self, storage, merchant_factory) -> None:
        merchant, old_secret = await merchant_factory()
        txn = await create_transaction(storage, merchant.id, Decimal("20"), "USD", "a@b.com")

        _, new_secret = await rotate_credentials(storage, merchant.id)

        assert verify_transaction_signature(txn, old_secret)
        assert not verify_transaction_signature(txn, new_secret)


class TestSettleTransaction:
    """Test suite for settle_transaction()."""

    @pytest.mark.parametrize("outcome", ["completed", "failed"])
    async def test_settles_to_oracle_outcome(self, storage, merchant_factory, outcome: str) -> None:
        merchant, secret = await merchant_factory()
        txn = await create_transaction(storage, merchant.id, Decimal("100"), "USD", "a@b.com")

        settled = await settle_transaction(storage, txn.id, FixedSettlementOracle([outcome]))

        assert settled.status == outcome
        assert settled.signature == txn.signature
        assert settled.reference_id == txn.reference_id
        assert verify_transaction_signature(settled, secret)

    async def test_second_settle_rejected(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        txn = await create_transaction(storage, merchant.id, Decimal("100"), "USD", "a@b.com")
        oracle = FixedSettlementOracle(["completed", "failed"])

        await settle_transaction(storage, txn.id, oracle)
        with pytest.raises(InvalidStateTransitionError):
            await settle_transaction(storage, txn.id, oracle)

        assert (await storage.get_transaction(txn.id)).status == "completed"
        assert oracle.calls == 1

    async def test_unknown_transaction(self, storage) -> None:
        with pytest.raises(NotFoundError):
            await settle_transaction(storage, "missing", FixedSettlementOracle())

    async def test_concurrent_settles_one_wins(self, memory_storage) -> None:
        merchant, _ = await create_merchant(memory_storage, "user-1", "Race Shop")
        txn = await create_transaction(memory_storage, merchant.id, Decimal("100"), "USD", "a@b.com")
        oracle = FixedSettlementOracle(["completed", "failed"])

        results = await asyncio.gather(
            settle_transaction(memory_storage, txn.id, oracle),
            settle_transaction(memory_storage, txn.id, oracle),
            return_exceptions=True
        )

        settled = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, InvalidStateTransitionError)]
        assert len(settled) == 1
        assert len(rejected) == 1

        final = await memory_storage.get_transaction(txn.id)
        assert final.status == settled[0].status

    def test_random_oracle_rate(self) -> None:
        import random

        oracle = RandomSettlementOracle(0.9, rng=random.Random(42))
        outcomes = [oracle.decide(None) for _ in range(2000)]  # type: ignore[arg-type]
        rate = outcomes.count("completed") / len(outcomes)
        assert 0.85 < rate < 0.95
        assert set(outcomes) <= {"completed", "failed"}


class TestRetrieval:
    """Test suite for get_transaction(), history and summary."""

    async def test_other_merchant_sees_not_found(self, storage, merchant_factory) -> None:
        owner, _ = await merchant_factory("Owner Shop")
        other, _ = await merchant_factory("Other Shop")
        txn = await create_transaction(storage, owner.id, Decimal("1"), "USD", "a@b.com")

        assert (await get_transaction(storage, txn.id, owner.id)).id == txn.id
        with pytest.raises(NotFoundError):
            await get_transaction(storage, txn.id, other.id)

    async def test_history_newest_first_with_total(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        created = []
        for amount in ("1", "2", "3", "4", "5"):
            created.append(await create_transaction(storage, merchant.id, Decimal(amount), "USD", "a@b.com"))
            await asyncio.sleep(0.002)

        page = await transaction_history(storage, merchant.id, TransactionFilters(limit=2, skip=1))

        assert page.total == 5
        assert [t.id for t in page.transactions] == [created[3].id, created[2].id]

    async def test_history_filters_are_inclusive(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        for amount in ("10", "20", "30"):
            await create_transaction(storage, merchant.id, Decimal(amount), "USD", "a@b.com")

        page = await transaction_history(
            storage,
            merchant.id,
            TransactionFilters(min_amount=Decimal("10"), max_amount=Decimal("20"))
        )

        assert page.total == 2
        assert sorted(t.amount for t in page.transactions) == [Decimal("10"), Decimal("20")]

    async def test_history_status_and_date_filters(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        first = await create_transaction(storage, merchant.id, Decimal("1"), "USD", "a@b.com")
        await create_transaction(storage, merchant.id, Decimal("2"), "USD", "a@b.com")
        await settle_transaction(storage, first.id, FixedSettlementOracle(["completed"]))

        completed = await transaction_history(storage, merchant.id, TransactionFilters(status="completed"))
        assert [t.id for t in completed.transactions] == [first.id]

        future = await transaction_history(
            storage, merchant.id, TransactionFilters(start_date=utcnow() + timedelta(days=1))
        )
        assert future.total == 0

    async def test_history_only_own_transactions(self, storage, merchant_factory) -> None:
        mine, _ = await merchant_factory("Mine")
        theirs, _ = await merchant_factory("Theirs")
        await create_transaction(storage, theirs.id, Decimal("1"), "USD", "a@b.com")

        page = await transaction_history(storage, mine.id)

        assert page.total == 0
        assert page.transactions == []

    async def test_summary_empty(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()

        summary = await transaction_summary(storage, merchant.id)

        assert summary.total_transactions == 0
        assert summary.success_rate == 0
        assert summary.total_amount == 0

    async def test_summary_counts(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        oracle = FixedSettlementOracle(["completed", "completed", "failed"])
        for amount in ("10", "20", "30"):
            txn = await create_transaction(storage, merchant.id, Decimal(amount), "USD", "a@b.com")
            await settle_transaction(storage, txn.id, oracle)
        await create_transaction(storage, merchant.id, Decimal("40"), "USD", "a@b.com")

        summary = await transaction_summary(storage, merchant.id)

        assert summary.total_transactions == 4
        assert summary.completed_transactions == 2
        assert summary.failed_transactions == 1
        assert summary.total_amount == pytest.approx(100.0)
        assert summary.completed_amount == pytest.approx(30.0)
        assert summary.success_rate == pytest.approx(50.0)


class TestHousekeeping:
    """Test suite for expire_stale_pending()."""

    async def test_purges_only_stale_pending(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        stale = await create_transaction(storage, merchant.id, Decimal("1"), "USD", "a@b.com")
        settled = await create_transaction(storage, merchant.id, Decimal("2"), "USD", "a@b.com")
        await settle_transaction(storage, settled.id, FixedSettlementOracle(["completed"]))

        # Everything above is "older" than a negative TTL
        removed = await expire_stale_pending(storage, timedelta(seconds=-60))

        assert removed == 1
        assert await storage.get_transaction(stale.id) is None
        assert (await storage.get_transaction(settled.id)).status == "completed"

    async def test_keeps_recent_pending(self, storage, merchant_factory) -> None:
        merchant, _ = await merchant_factory()
        recent = await create_transaction(storage, merchant.id, Decimal("1"), "USD", "a@b.com")

        removed = await expire_stale_pending(storage, timedelta(days=30))

        assert removed == 0
        assert await storage.get_transaction(recent.id) is not None
