"""
Pydantic Transaction Models

Represents signed transaction records, their filters and aggregates.
The signature binds the creation-time fields only; status is mutable and
deliberately not covered by it.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal, Dict, Any, List
from pydantic import BaseModel, Field, field_serializer, field_validator

TransactionStatus = Literal["pending", "processing", "completed", "failed", "refunded"]

# Settlement may only produce these
SettlementOutcome = Literal["completed", "failed"]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class Transaction(BaseModel):
    """
    Transaction record.

    Integrity Notes:
    - reference_id is a UUID v4 generated at creation and never changes
    - signature = HMAC(merchant_id|reference_id|amount|currency|customer_email)
      with the merchant's secret at creation time
    - Created pending; settle moves it to completed or failed, once
    """
    id: str
    merchant_id: str
    amount: Decimal = Field(gt=0)
    currency: str = Field(pattern="^[A-Z]{3}$")
    customer_email: str
    status: TransactionStatus = "pending"
    reference_id: str
    signature: str = Field(pattern="^[0-9a-f]{64}$")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "0b7c4e36-5b8e-4a59-a7f1-3f0f3a3b1c11",
                "merchant_id": "6f1d2a0e-2f6b-4f9e-9d0c-0f5a0c3e8b77",
                "amount": 100.0,
                "currency": "USD",
                "customer_email": "a@b.com",
                "status": "pending",
                "reference_id": "5a2f0f7e-3c1b-4b7e-8d7e-2f9c1d7a6e44",
                "signature": "a1b2c3d4e5f67890abcdef1234567890abcdef1234567890abcdef1234567890",
                "metadata": {"order_id": "ord_123"},
                "created_at": "2025-10-17T14:35:00Z",
                "updated_at": "2025-10-17T14:35:00Z"
            }
        }
    }


# ============================================================================
# Requests
# ============================================================================

class CheckoutRequest(BaseModel):
    """Create a pending, signed transaction."""
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    customer_email: str = Field(pattern=EMAIL_PATTERN)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        return v.upper()


class PayRequest(BaseModel):
    """Settle a pending transaction."""
    transaction_id: str = Field(min_length=1)


# ============================================================================
# History and summary
# ============================================================================

class TransactionFilters(BaseModel):
    """
    History filters. Date and amount bounds are inclusive.
    """
    status: Optional[TransactionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    limit: int = Field(default=20, ge=1, le=100)
    skip: int = Field(default=0, ge=0)


class TransactionPage(BaseModel):
    """One page of history; total counts every match, not just this page."""
    transactions: List[Transaction]
    total: int
    limit: int
    skip: int


class TransactionSummary(BaseModel):
    """Per-merchant aggregate. success_rate is a percentage, 0 when empty."""
    total_transactions: int = 0
    completed_transactions: int = 0
    failed_transactions: int = 0
    total_amount: float = 0
    completed_amount: float = 0
    success_rate: float = 0
