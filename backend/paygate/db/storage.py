"""
Storage Interface

Persistence boundary for users, merchants and transactions. One
implementation is chosen at startup and injected into the services; the
backend is never looked up per call.

The storage layer stores what it is given. Encrypting merchant secrets is
the caller's job, done before create/update and undone after load.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..clock import to_naive_utc, utcnow
from ..exceptions import MerchantExistsError, ValidationError
from ..models.merchants import Merchant
from ..models.transactions import Transaction, TransactionFilters
from ..models.users import User


class Storage(ABC):
    """Abstract persistence operations used by the service layer."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables etc.)."""

    async def close(self) -> None:
        """Release backend resources."""

    # Users
    @abstractmethod
    async def create_user(self, user: User) -> User: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_verification_token(self, token: str) -> Optional[User]: ...

    @abstractmethod
    async def update_user(self, user_id: str, values: Dict[str, Any]) -> Optional[User]: ...

    # Merchants
    @abstractmethod
    async def create_merchant(self, merchant: Merchant) -> Merchant:
        """Persist a merchant. Raises MerchantExistsError if the user owns one."""

    @abstractmethod
    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]: ...

    @abstractmethod
    async def get_merchant_by_user(self, user_id: str) -> Optional[Merchant]: ...

    @abstractmethod
    async def update_merchant(
        self,
        merchant_id: str,
        values: Dict[str, Any],
        expected_rotation_count: Optional[int] = None
    ) -> Optional[Merchant]:
        """
        Update merchant fields.

        When expected_rotation_count is given, the write only happens if the
        stored rotation_count still equals it. Returns None if the merchant
        is missing or the condition failed.
        """

    # Transactions
    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> Transaction: ...

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...

    @abstractmethod
    async def update_transaction_status(
        self,
        transaction_id: str,
        expected_status: str,
        new_status: str
    ) -> Optional[Transaction]:
        """
        Compare-and-swap on status.

        Returns the updated transaction, or None if it is missing or its
        status no longer equals expected_status.
        """

    @abstractmethod
    async def list_transactions(
        self,
        merchant_id: str,
        filters: TransactionFilters
    ) -> Tuple[List[Transaction], int]:
        """Return (page newest-first, total matching count)."""

    @abstractmethod
    async def summarize_transactions(self, merchant_id: str) -> Dict[str, Any]:
        """
        Aggregate a merchant's transactions.

        Returns keys total_transactions, completed_transactions,
        failed_transactions, total_amount, completed_amount.
        """

    @abstractmethod
    async def delete_pending_before(self, cutoff: datetime) -> int:
        """Delete pending transactions created before cutoff; return count."""


# ============================================================================
# In-process implementation
# ============================================================================

class MemoryStorage(Storage):
    """
    Dictionary-backed storage for local runs and tests.

    Records are copied on the way in and out so callers never share state
    with the store. Writes are serialized with one asyncio lock.
    """

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._merchants: Dict[str, Merchant] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._lock = asyncio.Lock()

    # Users

    async def create_user(self, user: User) -> User:
        async with self._lock:
            if any(u.email == user.email for u in self._users.values()):
                raise ValidationError("User already exists")
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def get_user_by_verification_token(self, token: str) -> Optional[User]:
        for user in self._users.values():
            if user.email_verification_token == token:
                return user.model_copy(deep=True)
        return None

    async def update_user(self, user_id: str, values: Dict[str, Any]) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = user.model_copy(update={**values, "updated_at": utcnow()}, deep=True)
            self._users[user_id] = updated
        return updated.model_copy(deep=True)

    # Merchants

    async def create_merchant(self, merchant: Merchant) -> Merchant:
        async with self._lock:
            if any(m.user_id == merchant.user_id for m in self._merchants.values()):
                raise MerchantExistsError()
            self._merchants[merchant.id] = merchant.model_copy(deep=True)
        return merchant.model_copy(deep=True)

    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        merchant = self._merchants.get(merchant_id)
        return merchant.model_copy(deep=True) if merchant else None

    async def get_merchant_by_user(self, user_id: str) -> Optional[Merchant]:
        for merchant in self._merchants.values():
            if merchant.user_id == user_id:
                return merchant.model_copy(deep=True)
        return None

    async def update_merchant(
        self,
        merchant_id: str,
        values: Dict[str, Any],
        expected_rotation_count: Optional[int] = None
    ) -> Optional[Merchant]:
        async with self._lock:
            merchant = self._merchants.get(merchant_id)
            if merchant is None:
                return None
            if expected_rotation_count is not None and merchant.rotation_count != expected_rotation_count:
                return None
            updated = merchant.model_copy(update={**values, "updated_at": utcnow()}, deep=True)
            self._merchants[merchant_id] = updated
        return updated.model_copy(deep=True)

    # Transactions

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        async with self._lock:
            if any(t.reference_id == transaction.reference_id for t in self._transactions.values()):
                raise ValidationError("Duplicate reference_id")
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def update_transaction_status(
        self,
        transaction_id: str,
        expected_status: str,
        new_status: str
    ) -> Optional[Transaction]:
        async with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None or transaction.status != expected_status:
                return None
            updated = transaction.model_copy(update={"status": new_status, "updated_at": utcnow()}, deep=True)
            self._transactions[transaction_id] = updated
        return updated.model_copy(deep=True)

    async def list_transactions(
        self,
        merchant_id: str,
        filters: TransactionFilters
    ) -> Tuple[List[Transaction], int]:
        matching = [
            t for t in self._transactions.values()
            if t.merchant_id == merchant_id and _matches(t, filters)
        ]
        matching.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        page = matching[filters.skip:filters.skip + filters.limit]
        return [t.model_copy(deep=True) for t in page], len(matching)

    async def summarize_transactions(self, merchant_id: str) -> Dict[str, Any]:
        owned = [t for t in self._transactions.values() if t.merchant_id == merchant_id]
        completed = [t for t in owned if t.status == "completed"]
        return {
            "total_transactions": len(owned),
            "completed_transactions": len(completed),
            "failed_transactions": sum(1 for t in owned if t.status == "failed"),
            "total_amount": float(sum((t.amount for t in owned), Decimal("0"))),
            "completed_amount": float(sum((t.amount for t in completed), Decimal("0"))),
        }

    async def delete_pending_before(self, cutoff: datetime) -> int:
        async with self._lock:
            stale = [
                t.id for t in self._transactions.values()
                if t.status == "pending" and t.created_at < cutoff
            ]
            for transaction_id in stale:
                del self._transactions[transaction_id]
        return len(stale)


def _matches(transaction: Transaction, filters: TransactionFilters) -> bool:
    """Inclusive bounds on created_at and amount."""
    if filters.status and transaction.status != filters.status:
        return False
    start = to_naive_utc(filters.start_date)
    end = to_naive_utc(filters.end_date)
    if start and transaction.created_at < start:
        return False
    if end and transaction.created_at > end:
        return False
    if filters.min_amount is not None and transaction.amount < filters.min_amount:
        return False
    if filters.max_amount is not None and transaction.amount > filters.max_amount:
        return False
    return True
