"""
SQLAlchemy Storage

Async SQLAlchemy implementation of the storage interface. Conditional
updates are single UPDATE ... WHERE statements, so the check and the write
are atomic in the database.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..clock import to_naive_utc, utcnow
from ..exceptions import MerchantExistsError, ValidationError
from ..models.merchants import Merchant
from ..models.transactions import Transaction, TransactionFilters
from ..models.users import User
from .models import Base, MerchantModel, TransactionModel, UserModel
from .storage import Storage

logger = logging.getLogger(__name__)


class SqlStorage(Storage):
    """
    Storage backed by an async SQLAlchemy engine.

    Each operation runs in its own short-lived session.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")

    async def close(self) -> None:
        await self.engine.dispose()

    # ========================================================================
    # Users
    # ========================================================================

    async def create_user(self, user: User) -> User:
        async with self._session_factory() as session:
            session.add(UserModel(**user.model_dump()))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationError("User already exists") from e
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._first_user(UserModel.id == user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._first_user(UserModel.email == email)

    async def get_user_by_verification_token(self, token: str) -> Optional[User]:
        return await self._first_user(UserModel.email_verification_token == token)

    async def update_user(self, user_id: str, values: Dict[str, Any]) -> Optional[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(**values, updated_at=utcnow())
            )
            await session.commit()
        if result.rowcount == 0:
            return None
        return await self.get_user(user_id)

    async def _first_user(self, condition) -> Optional[User]:
        async with self._session_factory() as session:
            result = await session.execute(select(UserModel).where(condition))
            row = result.scalar_one_or_none()
        return _user_from_row(row) if row else None

    # ========================================================================
    # Merchants
    # ========================================================================

    async def create_merchant(self, merchant: Merchant) -> Merchant:
        async with self._session_factory() as session:
            session.add(MerchantModel(**merchant.model_dump()))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise MerchantExistsError() from e
        return merchant

    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        return await self._first_merchant(MerchantModel.id == merchant_id)

    async def get_merchant_by_user(self, user_id: str) -> Optional[Merchant]:
        return await self._first_merchant(MerchantModel.user_id == user_id)

    async def update_merchant(
        self,
        merchant_id: str,
        values: Dict[str, Any],
        expected_rotation_count: Optional[int] = None
    ) -> Optional[Merchant]:
        conditions = [MerchantModel.id == merchant_id]
        if expected_rotation_count is not None:
            conditions.append(MerchantModel.rotation_count == expected_rotation_count)

        async with self._session_factory() as session:
            result = await session.execute(
                update(MerchantModel)
                .where(*conditions)
                .values(**values, updated_at=utcnow())
            )
            await session.commit()

        if result.rowcount == 0:
            return None
        return await self.get_merchant(merchant_id)

    async def _first_merchant(self, condition) -> Optional[Merchant]:
        async with self._session_factory() as session:
            result = await session.execute(select(MerchantModel).where(condition))
            row = result.scalar_one_or_none()
        return _merchant_from_row(row) if row else None

    # ========================================================================
    # Transactions
    # ========================================================================

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        data = transaction.model_dump()
        data["meta"] = data.pop("metadata")
        async with self._session_factory() as session:
            session.add(TransactionModel(**data))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationError("Duplicate reference_id") from e
        return transaction

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionModel).where(TransactionModel.id == transaction_id)
            )
            row = result.scalar_one_or_none()
        return _transaction_from_row(row) if row else None

    async def update_transaction_status(
        self,
        transaction_id: str,
        expected_status: str,
        new_status: str
    ) -> Optional[Transaction]:
        async with self._session_factory() as session:
            result = await session.execute(
                update(TransactionModel)
                .where(
                    TransactionModel.id == transaction_id,
                    TransactionModel.status == expected_status
                )
                .values(status=new_status, updated_at=utcnow())
            )
            await session.commit()

        if result.rowcount == 0:
            return None
        return await self.get_transaction(transaction_id)

    async def list_transactions(
        self,
        merchant_id: str,
        filters: TransactionFilters
    ) -> Tuple[List[Transaction], int]:
        conditions = [TransactionModel.merchant_id == merchant_id]
        if filters.status:
            conditions.append(TransactionModel.status == filters.status)
        if filters.start_date:
            conditions.append(TransactionModel.created_at >= to_naive_utc(filters.start_date))
        if filters.end_date:
            conditions.append(TransactionModel.created_at <= to_naive_utc(filters.end_date))
        if filters.min_amount is not None:
            conditions.append(TransactionModel.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(TransactionModel.amount <= filters.max_amount)

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(TransactionModel).where(*conditions)
            )
            result = await session.execute(
                select(TransactionModel)
                .where(*conditions)
                .order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
                .limit(filters.limit)
                .offset(filters.skip)
            )
            rows = result.scalars().all()

        return [_transaction_from_row(row) for row in rows], int(total or 0)

    async def summarize_transactions(self, merchant_id: str) -> Dict[str, Any]:
        is_completed = TransactionModel.status == "completed"
        is_failed = TransactionModel.status == "failed"

        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count(TransactionModel.id),
                    func.coalesce(func.sum(case((is_completed, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((is_failed, 1), else_=0)), 0),
                    func.coalesce(func.sum(TransactionModel.amount), 0),
                    func.coalesce(func.sum(case((is_completed, TransactionModel.amount), else_=0)), 0),
                ).where(TransactionModel.merchant_id == merchant_id)
            )
            total, completed, failed, total_amount, completed_amount = result.one()

        return {
            "total_transactions": int(total or 0),
            "completed_transactions": int(completed or 0),
            "failed_transactions": int(failed or 0),
            "total_amount": float(total_amount or 0),
            "completed_amount": float(completed_amount or 0),
        }

    async def delete_pending_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(TransactionModel).where(
                    TransactionModel.status == "pending",
                    TransactionModel.created_at < cutoff
                )
            )
            await session.commit()
        return result.rowcount or 0


# ============================================================================
# Row conversion
# ============================================================================

def _user_from_row(row: UserModel) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        business_name=row.business_name or "",
        email_verified=row.email_verified,
        email_verification_token=row.email_verification_token,
        email_verification_expires=row.email_verification_expires,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _merchant_from_row(row: MerchantModel) -> Merchant:
    return Merchant(
        id=row.id,
        user_id=row.user_id,
        business_name=row.business_name,
        api_key=row.api_key,
        api_secret=row.api_secret,
        status=row.status,
        webhook_url=row.webhook_url,
        rotation_count=row.rotation_count or 0,
        last_rotated_at=row.last_rotated_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _transaction_from_row(row: TransactionModel) -> Transaction:
    return Transaction(
        id=row.id,
        merchant_id=row.merchant_id,
        amount=row.amount,
        currency=row.currency,
        customer_email=row.customer_email,
        status=row.status,
        reference_id=row.reference_id,
        signature=row.signature,
        metadata=row.meta or {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
