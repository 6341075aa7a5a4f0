"""
Models Package

This package contains database schema models organized by domain:
- promo_codes.py: Promo code records, admin payloads and validation results
- payments.py: Payment records and checkout request/response models
- transactions.py: Outcome and refund transaction records
- gateways.py: Provider-neutral gateway request/response shapes
- users.py: The authenticated caller
- shared.py: Common base models and annotated types
"""

# Import all models for easy access
from app.models.gateways import (
    GatewayConfig,
    GatewayEvent,
    GatewayPaymentRequest,
    InitiatedPayment,
    RefundResult,
    VerificationResult,
)
from app.models.payments import (
    BasePaymentRecord,
    CartItem,
    CheckoutRequest,
    CheckoutResponse,
    CustomerInfo,
    GatewayName,
    PaymentHistoryResponse,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    RefundRequest,
)
from app.models.promo_codes import (
    BasePromoCode,
    DiscountType,
    PromoCode,
    PromoCodeCreate,
    PromoCodeUpdate,
    PromoValidationRequest,
    PromoValidationResult,
)
from app.models.shared import FirestoreBaseModel, MoneyAmount
from app.models.transactions import (
    BaseTransactionRecord,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from app.models.users import User

__all__ = [
    # Gateways
    "GatewayConfig",
    "GatewayEvent",
    "GatewayPaymentRequest",
    "InitiatedPayment",
    "RefundResult",
    "VerificationResult",
    # Payments
    "BasePaymentRecord",
    "CartItem",
    "CheckoutRequest",
    "CheckoutResponse",
    "CustomerInfo",
    "GatewayName",
    "PaymentHistoryResponse",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentType",
    "RefundRequest",
    # Promo codes
    "BasePromoCode",
    "DiscountType",
    "PromoCode",
    "PromoCodeCreate",
    "PromoCodeUpdate",
    "PromoValidationRequest",
    "PromoValidationResult",
    # Shared
    "FirestoreBaseModel",
    "MoneyAmount",
    # Transactions
    "BaseTransactionRecord",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionType",
    # Users
    "User",
]
