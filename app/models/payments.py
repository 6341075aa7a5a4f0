"""
Payment Data Models

This module contains models related to checkout attempts and their
progress through a payment gateway.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.shared import FirestoreBaseModel, MoneyAmount

PAYMENTS_COLLECTION = "payments"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"  # Unmappable gateway report, held for manual review


class PaymentType(str, Enum):
    """Payment type enumeration."""

    COURSE_PURCHASE = "course_purchase"
    BUNDLE_PURCHASE = "bundle_purchase"
    SUBSCRIPTION = "subscription"


class GatewayName(str, Enum):
    """Configured payment gateways."""

    PAYMEE = "paymee"
    STRIPE = "stripe"


class CartItem(BaseModel):
    """Course line embedded in bundle purchases."""

    course_id: str = Field(..., min_length=1, description="Course identifier")
    title: Optional[str] = Field(None, description="Course title for display")
    price: MoneyAmount = Field(..., ge=0, description="Price in home-currency major units")


class BasePaymentRecord(BaseModel):
    """Base payment record model shared between Firestore and API."""

    payment_id: str = Field(..., description="Unique payment identifier")
    user_id: str = Field(..., description="Associated user ID")
    course_id: Optional[str] = Field(None, description="Purchased course (single purchase)")
    course_title: Optional[str] = Field(None, description="Course title for display")
    cart_items: List[CartItem] = Field(
        default_factory=list, description="Purchased courses (bundle purchase)"
    )
    amount: MoneyAmount = Field(..., ge=0, description="Amount charged after discount")
    original_amount: MoneyAmount = Field(..., ge=0, description="Amount before discount")
    promo_code: Optional[str] = Field(None, description="Promo code used")
    promo_code_id: Optional[str] = Field(None, description="Promo code document ID")
    promo_discount: Optional[MoneyAmount] = Field(None, ge=0, description="Discount applied")
    promo_redeemed: bool = Field(False, description="Whether promo usage was counted")
    currency: str = Field("TND", description="Home currency of the major-unit amounts")
    payment_type: PaymentType = Field(PaymentType.COURSE_PURCHASE)
    payment_gateway: Optional[GatewayName] = Field(None, description="Selected gateway")
    payment_method: Optional[str] = Field(None, description="Payment method used")
    status: PaymentStatus = Field(PaymentStatus.PENDING, description="Payment status")
    gateway_amount_minor: Optional[int] = Field(
        None, ge=0, description="Amount sent to the gateway, in its minor unit"
    )
    gateway_currency: Optional[str] = Field(None, description="Currency sent to the gateway")
    gateway_amount_approximate: bool = Field(
        False, description="Gateway amount came from an approximate conversion"
    )
    stripe_session_id: Optional[str] = Field(None, description="Stripe Checkout Session ID")
    paymee_token: Optional[str] = Field(None, description="Paymee payment token")
    checkout_url: Optional[str] = Field(None, description="Hosted checkout URL")
    transaction_id: Optional[str] = Field(None, description="Internal transaction ID")
    gateway_transaction_id: Optional[str] = Field(None, description="Gateway transaction ID")
    failure_reason: Optional[str] = Field(None, description="Reason for failure or review")
    created_at: Optional[datetime] = Field(None, description="Payment creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")

    @model_validator(mode="after")
    def check_purchase_shape(self):
        if self.payment_type == PaymentType.BUNDLE_PURCHASE:
            if not self.cart_items:
                raise ValueError("bundle purchases require cart_items")
        elif self.payment_type == PaymentType.COURSE_PURCHASE:
            if not self.course_id or self.cart_items:
                raise ValueError("course purchases require course_id and no cart_items")

        discount = self.promo_discount or Decimal("0")
        if self.promo_discount is not None and not self.promo_code:
            raise ValueError("promo_discount requires promo_code")
        if self.amount != self.original_amount - discount:
            raise ValueError("amount must equal original_amount minus promo_discount")
        return self

    @property
    def provider_reference(self) -> Optional[str]:
        """Gateway-side reference used for verification calls."""
        if self.payment_gateway == GatewayName.STRIPE:
            return self.stripe_session_id
        if self.payment_gateway == GatewayName.PAYMEE:
            return self.paymee_token
        return None

    @property
    def course_ids(self) -> List[str]:
        if self.cart_items:
            return [item.course_id for item in self.cart_items]
        return [self.course_id] if self.course_id else []


class PaymentRecord(BasePaymentRecord, FirestoreBaseModel):
    """Payment record document model for the payments collection."""

    pass


class CustomerInfo(BaseModel):
    """Purchaser contact fields forwarded to the gateway."""

    first_name: str = Field("Customer", min_length=1)
    last_name: str = Field("User", min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None


class CheckoutRequest(BaseModel):
    """Request model for starting a checkout."""

    gateway: GatewayName
    payment_type: PaymentType = PaymentType.COURSE_PURCHASE
    course_id: Optional[str] = None
    course_title: Optional[str] = None
    price: Optional[MoneyAmount] = Field(None, ge=0, description="Single course price")
    cart_items: List[CartItem] = Field(default_factory=list)
    promo_code: Optional[str] = None
    customer: CustomerInfo
    note: Optional[str] = None

    @model_validator(mode="after")
    def check_items(self) -> "CheckoutRequest":
        if self.payment_type == PaymentType.BUNDLE_PURCHASE:
            if not self.cart_items:
                raise ValueError("bundle checkout requires cart_items")
        elif not self.course_id or self.price is None:
            raise ValueError("course checkout requires course_id and price")
        return self


class CheckoutResponse(BaseModel):
    """Response model for a started checkout."""

    payment_id: str
    status: PaymentStatus
    checkout_url: Optional[str] = None
    provider_reference: Optional[str] = None
    amount: MoneyAmount
    original_amount: MoneyAmount
    promo_discount: Optional[MoneyAmount] = None
    currency: str
    gateway_amount_minor: Optional[int] = None
    gateway_currency: Optional[str] = None
    gateway_amount_approximate: bool = False


class RefundRequest(BaseModel):
    """Request model for refunding a completed payment."""

    reason: Optional[str] = None
    amount_minor: Optional[int] = Field(
        None, gt=0, description="Partial refund in the gateway's minor unit"
    )


class PaymentHistoryResponse(BaseModel):
    """Response model for payment history."""

    payments: List[PaymentRecord]
    total_count: int
