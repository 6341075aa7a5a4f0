"""
Stripe Gateway Adapter

Card-network payments through Stripe Checkout Sessions. Amounts are
exchanged in the currency's minor unit (cents for USD). Webhooks are
authenticated with Stripe's signed ``stripe-signature`` header.
"""

import json
import logging
from traceback import format_exc
from typing import Any, Dict, Optional

import stripe

from app.models.gateways import (
    VERIFICATION_ERROR,
    GatewayConfig,
    GatewayEvent,
    GatewayPaymentRequest,
    InitiatedPayment,
    RefundResult,
    VerificationResult,
)
from app.models.payments import PaymentStatus
from app.services.errors import GatewayError, SignatureInvalidError
from app.services.payments.gateway import WebhookPayload
from app.utils.dates import from_unix

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Checkout Session payment_status -> internal status
SESSION_PAYMENT_STATUSES = {
    "paid": PaymentStatus.COMPLETED,
    "no_payment_required": PaymentStatus.COMPLETED,
    "unpaid": PaymentStatus.PENDING,
}

SESSION_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
}

PAYMENT_INTENT_EVENTS = {
    "payment_intent.succeeded": PaymentStatus.COMPLETED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
}

# Progress notifications; a pending report never moves a payment
PROGRESS_EVENTS = {
    "payment_intent.created",
    "payment_intent.processing",
    "payment_intent.requires_action",
    "payment_intent.amount_capturable_updated",
}


def _as_dict(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _reference_id(value) -> Optional[str]:
    # Expandable fields are either an ID string or the expanded object
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _currency(value) -> Optional[str]:
    return value.upper() if value else None


def _session_status(session: Dict[str, Any]) -> PaymentStatus:
    if session.get("status") == "expired":
        return PaymentStatus.CANCELLED
    return SESSION_PAYMENT_STATUSES.get(session.get("payment_status"), PaymentStatus.UNKNOWN)


def _order_id(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return obj.get("client_reference_id") or metadata.get("orderId")


class StripeAdapter:
    """Stripe API interactions behind the PaymentGatewayAdapter contract."""

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    async def initiate_payment(self, request: GatewayPaymentRequest) -> InitiatedPayment:
        """
        Create a Stripe Checkout Session.

        Args:
            request: Payment request with amount in the currency's minor unit

        Returns:
            InitiatedPayment with the session ID and hosted checkout URL

        Raises:
            GatewayError: Stripe rejected the request or could not be reached
        """
        success_url = request.success_url or self.config.success_url
        cancel_url = request.cancel_url or self.config.cancel_url

        try:
            session = stripe.checkout.Session.create(
                api_key=self.config.auth_token,
                idempotency_key=f"checkout-{request.order_id}",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "product_data": {
                                "name": request.note or "Course Purchase",
                                "description": f"Order ID: {request.order_id}",
                            },
                            "unit_amount": request.amount_minor,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}&payment_id={request.order_id}",
                cancel_url=f"{cancel_url}?payment_id={request.order_id}",
                customer_email=request.email,
                client_reference_id=request.order_id,
                metadata={
                    "orderId": request.order_id,
                    "firstName": request.first_name,
                    "lastName": request.last_name,
                    "phone": request.phone or "",
                },
                payment_intent_data={"metadata": {"orderId": request.order_id}},
            )
        except stripe.APIConnectionError as e:
            # Outcome unknown: the session may or may not exist
            logger.error(f"Stripe connection error for order {request.order_id}: {str(e)}")
            raise GatewayError(
                "Payment gateway is currently unreachable. Please try again later.",
                provider=self.name,
                timed_out=True,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error: {str(e)}\n{format_exc()}")
            raise GatewayError(
                f"Payment processing error: {e.user_message or str(e)}",
                provider=self.name,
                retryable=isinstance(e, stripe.RateLimitError),
            )

        logger.info(f"Created Stripe checkout session {session.id} for order {request.order_id}")

        return InitiatedPayment(
            provider=self.name,
            provider_reference_id=session.id,
            checkout_url=session.url,
            amount_minor=request.amount_minor,
            currency=request.currency.upper(),
            order_id=request.order_id,
        )

    async def verify_payment(self, reference: str) -> VerificationResult:
        """Retrieve a Checkout Session and normalize its payment state."""
        try:
            session = _as_dict(
                stripe.checkout.Session.retrieve(
                    reference, expand=["payment_intent"], api_key=self.config.auth_token
                )
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe verification error: {str(e)}\n{format_exc()}")
            return VerificationResult(
                success=False,
                status=VERIFICATION_ERROR,
                message=str(e) or "Failed to verify payment",
            )

        status = _session_status(session)
        return VerificationResult(
            success=status == PaymentStatus.COMPLETED,
            status=status.value,
            amount_minor=session.get("amount_total"),
            currency=_currency(session.get("currency")),
            order_id=_order_id(session),
            transaction_id=_reference_id(session.get("payment_intent")) or session.get("id"),
            raw=session,
        )

    async def create_refund(
        self, transaction_id: str, amount_minor: Optional[int] = None
    ) -> RefundResult:
        """
        Refund a PaymentIntent, fully or partially.

        Raises:
            GatewayError: Stripe rejected the refund or could not be reached
        """
        params: Dict[str, Any] = {"payment_intent": transaction_id}
        if amount_minor:
            params["amount"] = amount_minor

        try:
            refund = _as_dict(stripe.Refund.create(api_key=self.config.auth_token, **params))
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {str(e)}\n{format_exc()}")
            raise GatewayError(
                f"Refund failed: {e.user_message or str(e)}",
                provider=self.name,
                retryable=isinstance(e, stripe.APIConnectionError),
            )

        return RefundResult(
            success=refund.get("status") in ("succeeded", "pending"),
            refund_id=refund.get("id"),
            amount_minor=refund.get("amount"),
            currency=_currency(refund.get("currency")),
            status=refund.get("status"),
        )

    def validate_webhook_signature(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> bool:
        """
        Verify the stripe-signature header against the raw payload.

        Args:
            payload: Raw webhook body exactly as received
            signature: Value of the stripe-signature header

        Returns:
            True if the signature is valid and within tolerance
        """
        if not self.config.webhook_secret or not signature or isinstance(payload, dict):
            return False

        try:
            # verify_header signs "<timestamp>.<payload>" and expects text
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.config.webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
            return True
        except UnicodeDecodeError:
            logger.warning("Stripe webhook payload is not valid UTF-8")
            return False
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature validation failed: {str(e)}")
            return False

    def process_webhook(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> GatewayEvent:
        """
        Authenticate and normalize a Stripe webhook event.

        Raises:
            SignatureInvalidError: If the signature cannot be verified
        """
        if self.config.webhook_secret:
            if not self.validate_webhook_signature(payload, signature):
                raise SignatureInvalidError("Webhook signature verification failed")
        elif self.config.allow_unsigned_webhooks:
            logger.warning("Processing unsigned Stripe webhook (insecure mode)")
        else:
            raise SignatureInvalidError("Stripe webhook secret is not configured")

        try:
            event = payload if isinstance(payload, dict) else json.loads(payload)
        except ValueError:
            raise SignatureInvalidError("Invalid payload in webhook")

        return self.normalize_event(event)

    def normalize_event(self, event: Dict[str, Any]) -> GatewayEvent:
        """Map a Stripe event onto the internal event shape."""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in SESSION_EVENTS:
            if event_type == "checkout.session.async_payment_succeeded":
                status = PaymentStatus.COMPLETED
            elif event_type == "checkout.session.async_payment_failed":
                status = PaymentStatus.FAILED
            else:
                status = _session_status(obj)
            return GatewayEvent(
                provider=self.name,
                event_type=event_type,
                status=status.value,
                order_id=_order_id(obj),
                provider_reference_id=obj.get("id"),
                transaction_id=_reference_id(obj.get("payment_intent")),
                amount_minor=obj.get("amount_total"),
                currency=_currency(obj.get("currency")),
                payment_date=from_unix(event.get("created")),
                failure_reason="Asynchronous payment failed"
                if status == PaymentStatus.FAILED
                else None,
                customer_email=obj.get("customer_email"),
                raw=event,
            )

        if event_type in PAYMENT_INTENT_EVENTS:
            status = PAYMENT_INTENT_EVENTS[event_type]
            last_error = obj.get("last_payment_error") or {}
            return GatewayEvent(
                provider=self.name,
                event_type=event_type,
                status=status.value,
                order_id=_order_id(obj),
                transaction_id=obj.get("id"),
                amount_minor=obj.get("amount"),
                currency=_currency(obj.get("currency")),
                payment_date=from_unix(event.get("created")),
                failure_reason=last_error.get("message")
                or obj.get("cancellation_reason"),
                raw=event,
            )

        if event_type == "charge.refunded":
            return GatewayEvent(
                provider=self.name,
                event_type=event_type,
                status=PaymentStatus.REFUNDED.value,
                order_id=_order_id(obj),
                transaction_id=_reference_id(obj.get("payment_intent")),
                amount_minor=obj.get("amount_refunded"),
                currency=_currency(obj.get("currency")),
                payment_date=from_unix(event.get("created")),
                raw=event,
            )

        if event_type in PROGRESS_EVENTS:
            return GatewayEvent(
                provider=self.name,
                event_type=event_type,
                status=PaymentStatus.PENDING.value,
                order_id=_order_id(obj),
                transaction_id=obj.get("id"),
                raw=event,
            )

        logger.info(f"Unhandled Stripe event type: {event_type}")
        return GatewayEvent(
            provider=self.name,
            event_type=event_type,
            status=PaymentStatus.UNKNOWN.value,
            order_id=_order_id(obj) if isinstance(obj, dict) else None,
            raw=event,
        )
