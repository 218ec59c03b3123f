"""
SQLAlchemy ORM Models for PayGate

Tables: users, merchants, transactions.
Merchant api_secret holds the encrypted record; there is no save hook that
encrypts on write.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, JSON, CheckConstraint, Index
from sqlalchemy.orm import declarative_base

from ..clock import utcnow

Base = declarative_base()


class UserModel(Base):
    """
    ORM model for users table.

    Dashboard accounts that log in with email and password.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default="MERCHANT", index=True)
    business_name = Column(String, nullable=False, default="")
    email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String, index=True)
    email_verification_expires = Column(DateTime)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('USER', 'MERCHANT', 'ADMIN')", name="user_role_check"),
        CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="user_status_check"),
    )


class MerchantModel(Base):
    """
    ORM model for merchants table.

    One merchant per user, enforced by the unique user_id column.
    """
    __tablename__ = "merchants"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    business_name = Column(String, nullable=False)
    api_key = Column(String, nullable=False, unique=True, index=True)
    api_secret = Column(String, nullable=False)  # nonce:tag:ciphertext
    status = Column(String, nullable=False, default="active", index=True)
    webhook_url = Column(String)
    rotation_count = Column(Integer, nullable=False, default=0)
    last_rotated_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="merchant_status_check"),
        Index("idx_merchants_user_status", "user_id", "status"),
    )


class TransactionModel(Base):
    """
    ORM model for transactions table.

    Stores the creation-time signature alongside the mutable status.
    """
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    merchant_id = Column(String, ForeignKey("merchants.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD", index=True)
    customer_email = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    reference_id = Column(String, nullable=False, unique=True, index=True)
    signature = Column(String, nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'refunded')",
            name="transaction_status_check"
        ),
        Index("idx_transactions_merchant_status", "merchant_id", "status"),
        Index("idx_transactions_merchant_created", "merchant_id", "created_at"),
    )
