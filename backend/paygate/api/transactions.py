"""
Transactions API Endpoints

Checkout, settlement, history and summary for the acting merchant.

Every endpoint accepts either authentication path:
- Merchant server: X-Signature, X-Merchant-Id, X-Timestamp over the raw body
- Dashboard user: Authorization: Bearer <access token>

Transactions owned by another merchant are reported as not found.
"""
from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
import logging

from ..config import Settings
from ..db.storage import Storage
from ..exceptions import CryptoError, ForbiddenError, InvalidStateTransitionError
from ..mocks.settlement_oracle import SettlementOracle
from ..models.merchants import Merchant
from ..models.transactions import (
    CheckoutRequest,
    PayRequest,
    Transaction,
    TransactionFilters,
    TransactionStatus,
)
from ..services import transaction_ledger
from ..services.credential_vault import reveal_secret
from ..services.webhook_notifier import WebhookDispatcher, event_for_status
from .deps import get_dispatcher, get_oracle, get_settings, get_storage, resolve_merchant

logger = logging.getLogger(__name__)

router = APIRouter()


def _queue_webhook(
    merchant: Merchant,
    transaction: Transaction,
    dispatcher: WebhookDispatcher,
    config: Settings
) -> bool:
    """
    Queue the settlement webhook, if the merchant has one.

    Runs after settlement is persisted, so failures are logged and never
    raised into the response.
    """
    event = event_for_status(transaction.status)
    if not merchant.webhook_url or event is None:
        return False

    try:
        secret = reveal_secret(merchant, config)
    except CryptoError as e:
        logger.error(f"Skipping webhook for transaction {transaction.id}: merchant secret unreadable ({e.message})")
        return False

    return dispatcher.dispatch(merchant.webhook_url, event, transaction, secret)


@router.post("/checkout", status_code=201)
async def checkout_endpoint(
    request: CheckoutRequest,
    merchant: Merchant = Depends(resolve_merchant),
    storage: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Create a pending, signed transaction.

    Request Body:
        {"amount": number, "currency": "USD", "customer_email": str, "metadata": {...}}

    Returns:
        {transaction_id, reference_id, amount, currency, status, customer_email, signature}

    Example:
        POST /api/transactions/checkout
    """
    if merchant.status != "active":
        raise ForbiddenError("Merchant account is not active")

    transaction = await transaction_ledger.create_transaction(
        storage,
        merchant.id,
        request.amount,
        request.currency,
        request.customer_email,
        request.metadata,
        config=config
    )

    return {
        "transaction_id": transaction.id,
        "reference_id": transaction.reference_id,
        "amount": float(transaction.amount),
        "currency": transaction.currency,
        "status": transaction.status,
        "customer_email": transaction.customer_email,
        "signature": transaction.signature,
    }


@router.post("/pay")
async def pay_endpoint(
    request: PayRequest,
    merchant: Merchant = Depends(resolve_merchant),
    storage: Storage = Depends(get_storage),
    oracle: SettlementOracle = Depends(get_oracle),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Settle a pending transaction and notify the merchant's webhook.

    The webhook is queued, not awaited; its outcome never changes this
    response.
    """
    transaction = await transaction_ledger.get_transaction(storage, request.transaction_id, merchant.id)
    if transaction.status != "pending":
        raise InvalidStateTransitionError()

    settled = await transaction_ledger.settle_transaction(storage, transaction.id, oracle)
    _queue_webhook(merchant, settled, dispatcher, config)

    return {
        "transaction_id": settled.id,
        "status": settled.status,
        "amount": float(settled.amount),
        "currency": settled.currency,
    }


@router.get("/history")
async def history_endpoint(
    status: Optional[TransactionStatus] = Query(None, description="Filter by status"),
    start_date: Optional[datetime] = Query(None, description="Created at or after"),
    end_date: Optional[datetime] = Query(None, description="Created at or before"),
    min_amount: Optional[Decimal] = Query(None, ge=0, description="Minimum amount, inclusive"),
    max_amount: Optional[Decimal] = Query(None, ge=0, description="Maximum amount, inclusive"),
    limit: int = Query(20, ge=1, le=100, description="Max results"),
    skip: int = Query(0, ge=0, description="Pagination offset"),
    merchant: Merchant = Depends(resolve_merchant),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    """
    Filtered transaction history, newest first.

    Returns:
        {"transactions": [...], "total": int, "limit": int, "skip": int}

    Example:
        GET /api/transactions/history?status=completed&limit=20&skip=0
    """
    filters = TransactionFilters(
        status=status,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        limit=limit,
        skip=skip
    )

    logger.debug(f"Retrieving history for merchant {merchant.id}, limit={limit}, skip={skip}")

    page = await transaction_ledger.transaction_history(storage, merchant.id, filters)
    return page.model_dump(mode="json")


@router.get("/summary")
async def summary_endpoint(
    merchant: Merchant = Depends(resolve_merchant),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    summary = await transaction_ledger.transaction_summary(storage, merchant.id)
    return summary.model_dump(mode="json")


@router.get("/{transaction_id}")
async def get_transaction_endpoint(
    transaction_id: str,
    merchant: Merchant = Depends(resolve_merchant),
    storage: Storage = Depends(get_storage)
) -> Dict[str, Any]:
    """
    Get transaction details.

    Path Parameters:
        transaction_id: Transaction identifier

    Example:
        GET /api/transactions/0b7c4e36-5b8e-4a59-a7f1-3f0f3a3b1c11
    """
    transaction = await transaction_ledger.get_transaction(storage, transaction_id, merchant.id)
    return transaction.model_dump(mode="json")
