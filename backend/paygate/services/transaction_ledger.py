"""
Transaction Ledger

Creates signed transactions, settles them, and answers history and
summary queries.

Integrity Notes:
- reference_id: UUID v4, generated once, never changes
- signature: HMAC over merchantId|referenceId|amount|currency|customerEmail
  with the merchant's secret at creation. It authenticates origin, not
  current status, and is never recomputed
- State machine: pending -> completed | failed, once. processing and
  refunded exist in the schema but nothing transitions into them
"""
import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from ..clock import utcnow
from ..config import Settings
from ..db.storage import Storage
from ..exceptions import InvalidStateTransitionError, NotFoundError
from ..mocks.settlement_oracle import SettlementOracle
from ..models.transactions import (
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionSummary,
)
from .credential_vault import reveal_secret
from .signature_service import build_transaction_message, sign, verify

logger = logging.getLogger(__name__)

SETTLEMENT_OUTCOMES = ("completed", "failed")
CENT = Decimal("0.01")


# ============================================================================
# Creation
# ============================================================================

async def create_transaction(
    storage: Storage,
    merchant_id: str,
    amount: Decimal,
    currency: str,
    customer_email: str,
    metadata: Optional[Dict[str, Any]] = None,
    config: Optional[Settings] = None
) -> Transaction:
    """
    Create a pending transaction signed with the merchant's current secret.

    Args:
        storage: Storage backend
        merchant_id: Owning merchant
        amount: Positive amount
        currency: 3-letter code
        customer_email: Paying customer
        metadata: Opaque key/value bag
        config: Settings supplying the encryption key

    Returns:
        Created Transaction

    Raises:
        NotFoundError: Merchant does not exist
        ValueError: amount is not positive
    """
    amount = Decimal(str(amount))
    currency = currency.upper()
    if amount <= 0:
        raise ValueError("Amount must be positive")
    if amount != amount.quantize(CENT):
        raise ValueError("Amount supports at most 2 decimal places")

    merchant = await storage.get_merchant(merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found")

    reference_id = str(uuid.uuid4())
    message = build_transaction_message(merchant_id, reference_id, amount, currency, customer_email)
    signature = sign(message, reveal_secret(merchant, config))

    now = utcnow()
    transaction = Transaction(
        id=str(uuid.uuid4()),
        merchant_id=merchant_id,
        amount=amount,
        currency=currency,
        customer_email=customer_email,
        status="pending",
        reference_id=reference_id,
        signature=signature,
        metadata=metadata or {},
        created_at=now,
        updated_at=now,
    )

    transaction = await storage.create_transaction(transaction)

    logger.info(f"Created transaction: {transaction.id}, merchant={merchant_id}, reference={reference_id}")

    return transaction


def verify_transaction_signature(transaction: Transaction, secret: str) -> bool:
    """Check a transaction's origin signature against a merchant secret."""
    message = build_transaction_message(
        transaction.merchant_id,
        transaction.reference_id,
        transaction.amount,
        transaction.currency,
        transaction.customer_email
    )
    return verify(message, transaction.signature, secret)


# ============================================================================
# Settlement
# ============================================================================

async def settle_transaction(
    storage: Storage,
    transaction_id: str,
    oracle: SettlementOracle
) -> Transaction:
    """
    Resolve a pending transaction to completed or failed.

    The oracle is consulted once and the result is written with a
    compare-and-swap on status == pending, so concurrent settles cannot
    both apply an outcome.

    Args:
        storage: Storage backend
        transaction_id: Transaction to settle
        oracle: Payment outcome strategy

    Returns:
        Settled Transaction

    Raises:
        NotFoundError: Transaction does not exist
        InvalidStateTransitionError: Transaction is not pending
    """
    transaction = await storage.get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")
    if transaction.status != "pending":
        raise InvalidStateTransitionError()

    outcome = oracle.decide(transaction)
    if outcome not in SETTLEMENT_OUTCOMES:
        raise InvalidStateTransitionError(f"Settlement cannot produce status {outcome!r}")

    settled = await storage.update_transaction_status(transaction_id, "pending", outcome)
    if settled is None:
        logger.warning(f"Transaction {transaction_id} was settled concurrently")
        raise InvalidStateTransitionError()

    logger.info(f"Settled transaction: {transaction_id}, status={outcome}")

    return settled


# ============================================================================
# Retrieval
# ============================================================================

async def get_transaction(storage: Storage, transaction_id: str, merchant_id: str) -> Transaction:
    """
    Fetch a transaction owned by merchant_id.

    Raises:
        NotFoundError: Missing, or owned by another merchant
    """
    transaction = await storage.get_transaction(transaction_id)
    if transaction is None or transaction.merchant_id != merchant_id:
        raise NotFoundError("Transaction not found")
    return transaction


async def transaction_history(
    storage: Storage,
    merchant_id: str,
    filters: Optional[TransactionFilters] = None
) -> TransactionPage:
    """
    Filtered, paginated history, newest first.

    total is the number of matching transactions, not the page size.
    """
    filters = filters or TransactionFilters()
    items, total = await storage.list_transactions(merchant_id, filters)
    return TransactionPage(transactions=items, total=total, limit=filters.limit, skip=filters.skip)


async def transaction_summary(storage: Storage, merchant_id: str) -> TransactionSummary:
    """Counts, sums and success rate. success_rate is 0 when there are no transactions."""
    totals = await storage.summarize_transactions(merchant_id)

    total = totals["total_transactions"]
    completed = totals["completed_transactions"]
    success_rate = (completed / total) * 100 if total else 0

    return TransactionSummary(**totals, success_rate=success_rate)


# ============================================================================
# Housekeeping
# ============================================================================

async def expire_stale_pending(storage: Storage, ttl: timedelta) -> int:
    """
    Delete pending transactions older than ttl.

    Returns:
        Number of transactions removed
    """
    cutoff = utcnow() - ttl
    removed = await storage.delete_pending_before(cutoff)
    if removed:
        logger.info(f"Expired {removed} pending transactions created before {cutoff.isoformat()}")
    return removed
