"""
Gateway Data Models

Provider-neutral shapes exchanged with the payment gateway adapters. Every
amount here is an integer in the minor unit of the accompanying currency.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Verification could not reach the provider; the outcome is still unknown
VERIFICATION_ERROR = "error"


class GatewayConfig(BaseModel):
    """Explicit configuration handed to one gateway adapter."""

    model_config = ConfigDict(frozen=True)

    name: str
    api_base_url: Optional[str] = None
    auth_token: Optional[str] = None
    default_currency: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    # Explicit insecure mode: accept webhooks without a verifiable signature
    allow_unsigned_webhooks: bool = False
    timeout_seconds: float = 15.0
    is_test: bool = False


class GatewayPaymentRequest(BaseModel):
    """Payment initiation request in provider minor units."""

    amount_minor: int = Field(..., gt=0, description="Amount in the gateway's minor unit")
    currency: str = Field(..., description="Currency of amount_minor")
    order_id: str = Field(..., min_length=1, description="Internal payment ID, round-tripped")
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    note: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class InitiatedPayment(BaseModel):
    """Provider response to a successful payment initiation."""

    provider: str
    provider_reference_id: str = Field(..., description="Session ID or payment token")
    checkout_url: str
    amount_minor: int
    currency: str
    order_id: str


class VerificationResult(BaseModel):
    """Normalized result of a provider status check."""

    success: bool
    status: str = Field(..., description="A PaymentStatus value, or 'error' if inconclusive")
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    message: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    @property
    def is_conclusive(self) -> bool:
        return self.status != VERIFICATION_ERROR


class GatewayEvent(BaseModel):
    """Normalized payment-status event produced from a webhook delivery."""

    provider: str
    event_type: str
    status: str = Field(..., description="A PaymentStatus value")
    order_id: Optional[str] = None
    provider_reference_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    customer_email: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


class RefundResult(BaseModel):
    """Provider response to a refund request."""

    success: bool
    refund_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
