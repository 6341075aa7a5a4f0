import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, Request

from app.models.payments import (
    CheckoutRequest,
    CheckoutResponse,
    GatewayName,
    PaymentHistoryResponse,
    PaymentRecord,
    RefundRequest,
)
from app.models.users import User
from app.server.auth import get_current_user
from app.services.payments.reconciliation import (
    PaymentReconciliationService,
    get_reconciliation_service,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create payment router
payment_router = APIRouter()

PaymentService = Annotated[
    PaymentReconciliationService, Depends(get_reconciliation_service)
]
CurrentUser = Annotated[User, Depends(get_current_user)]


@payment_router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest, current_user: CurrentUser, service: PaymentService
) -> CheckoutResponse:
    """Start a checkout for a course or a bundle through the selected gateway."""
    return await service.create_checkout(current_user, request)


@payment_router.get("/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    current_user: CurrentUser,
    service: PaymentService,
    limit: int = 50,
    offset: int = 0,
) -> PaymentHistoryResponse:
    """Get payment history for the current user."""
    payments = await service.get_user_payments(current_user)
    return PaymentHistoryResponse(
        payments=payments[offset : offset + limit], total_count=len(payments)
    )


@payment_router.get("/status/{status}", response_model=List[PaymentRecord])
async def get_payments_by_status(
    status: str, current_user: CurrentUser, service: PaymentService
) -> List[PaymentRecord]:
    """List payments in a status, e.g. unknown ones awaiting review (admin)."""
    return await service.get_payments_by_status(current_user, status)


@payment_router.get("/course/{course_id}", response_model=List[PaymentRecord])
async def get_course_payments(
    course_id: str, current_user: CurrentUser, service: PaymentService
) -> List[PaymentRecord]:
    """List payments that include a course (admin)."""
    return await service.get_course_payments(current_user, course_id)


@payment_router.post("/webhooks/stripe")
async def handle_stripe_webhook(
    request: Request,
    service: PaymentService,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
):
    """Handle Stripe webhook events."""
    body = await request.body()
    payment = await service.handle_webhook(GatewayName.STRIPE.value, body, stripe_signature)
    return {"status": "success", "payment_id": payment.payment_id if payment else None}


@payment_router.post("/webhooks/paymee")
async def handle_paymee_webhook(request: Request, service: PaymentService):
    """Handle Paymee payment notifications (JSON or form-encoded)."""
    body = await request.body()
    payment = await service.handle_webhook(GatewayName.PAYMEE.value, body)
    return {"status": "success", "payment_id": payment.payment_id if payment else None}


@payment_router.get("/{payment_id}", response_model=PaymentRecord)
async def get_payment(
    payment_id: str, current_user: CurrentUser, service: PaymentService
) -> PaymentRecord:
    return await service.get_payment(current_user, payment_id)


@payment_router.post("/{payment_id}/verify", response_model=PaymentRecord)
async def verify_payment(
    payment_id: str, current_user: CurrentUser, service: PaymentService
) -> PaymentRecord:
    """Ask the gateway for the payment's current status."""
    return await service.verify_payment(current_user, payment_id)


@payment_router.post("/{payment_id}/refund", response_model=PaymentRecord)
async def refund_payment(
    payment_id: str,
    request: RefundRequest,
    current_user: CurrentUser,
    service: PaymentService,
) -> PaymentRecord:
    """Refund a completed payment (admin)."""
    payment = await service.refund_payment(
        current_user, payment_id, reason=request.reason, amount_minor=request.amount_minor
    )
    logger.info(f"Payment {payment_id} refunded by {current_user.uid}")
    return payment
