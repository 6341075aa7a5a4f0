"""
Transaction Data Models

This module contains models for the financial record produced once a
gateway confirms a payment's outcome, and for refunds against it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.models.shared import FirestoreBaseModel, MoneyAmount

TRANSACTIONS_COLLECTION = "transactions"


class TransactionStatus(str, Enum):
    """Transaction status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionType(str, Enum):
    """Transaction type enumeration."""

    COURSE_PURCHASE = "course_purchase"
    BUNDLE_PURCHASE = "bundle_purchase"
    SUBSCRIPTION = "subscription"
    REFUND = "refund"


class BaseTransactionRecord(BaseModel):
    """Base transaction record model shared between Firestore and API."""

    transaction_id: str = Field(..., description="Unique transaction identifier")
    payment_id: str = Field(..., description="Associated payment ID")
    user_id: str = Field(..., description="Associated user ID")
    course_id: Optional[str] = Field(None, description="Purchased course, if single")
    transaction_type: TransactionType = Field(TransactionType.COURSE_PURCHASE)
    amount: MoneyAmount = Field(..., description="Amount, negative for refunds")
    currency: str = Field(..., description="Currency of amount")
    status: TransactionStatus = Field(TransactionStatus.PENDING)
    payment_method: Optional[str] = Field(None, description="Payment method used")
    payment_gateway: Optional[str] = Field(None, description="Gateway that processed it")
    gateway_transaction_id: Optional[str] = Field(None, description="Gateway transaction ID")
    gateway_response: Optional[Dict[str, Any]] = Field(
        None, description="Raw provider payload"
    )
    description: Optional[str] = Field(None, description="Transaction description")
    original_transaction_id: Optional[str] = Field(
        None, description="Refunded transaction, for refund records"
    )
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")


class TransactionRecord(BaseTransactionRecord, FirestoreBaseModel):
    """Transaction document model for the transactions collection."""

    pass


def outcome_transaction_id(payment_id: str) -> str:
    """Deterministic ID of a payment's outcome transaction."""
    return f"txn_{payment_id}"
