"""
Payment Gateway Capability

The contract every gateway adapter implements. Adapters are independent
implementations selected by name through GatewayRegistry; there is no
shared base class.
"""

from typing import Optional, Protocol, Union, runtime_checkable

from app.models.gateways import (
    GatewayConfig,
    GatewayEvent,
    GatewayPaymentRequest,
    InitiatedPayment,
    RefundResult,
    VerificationResult,
)

WebhookPayload = Union[bytes, str, dict]


@runtime_checkable
class PaymentGatewayAdapter(Protocol):
    config: GatewayConfig

    @property
    def name(self) -> str: ...

    async def initiate_payment(self, request: GatewayPaymentRequest) -> InitiatedPayment:
        """Create a hosted payment. Raises GatewayError on rejection or transport failure."""
        ...

    async def verify_payment(self, reference: str) -> VerificationResult:
        """Check a payment's status. Transport failures yield status 'error'."""
        ...

    def process_webhook(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> GatewayEvent:
        """Authenticate and normalize a webhook. Raises SignatureInvalidError."""
        ...

    def validate_webhook_signature(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> bool:
        """Side-effect-free signature check."""
        ...


@runtime_checkable
class RefundCapableGateway(Protocol):
    async def create_refund(
        self, transaction_id: str, amount_minor: Optional[int] = None
    ) -> RefundResult: ...
