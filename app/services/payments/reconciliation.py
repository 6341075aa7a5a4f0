"""
Payment Reconciliation Service

Turns checkouts, client-side verifications and gateway webhooks into one
consistent payment/transaction state. Every status change goes through the
lifecycle state machine inside a Firestore transaction; side effects of a
completion (outcome transaction, promo redemption) run only for the writer
that won the transition.
"""

import logging
import uuid
from decimal import Decimal
from traceback import format_exc
from typing import List, Optional

import config
from app.models.gateways import GatewayEvent, GatewayPaymentRequest
from app.models.payments import (
    CartItem,
    CheckoutRequest,
    CheckoutResponse,
    GatewayName,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
)
from app.models.transactions import (
    TransactionRecord,
    TransactionType,
    outcome_transaction_id,
)
from app.models.users import User
from app.services.errors import (
    DomainError,
    GatewayError,
    InconsistentStateError,
    InvalidStateError,
    NotFoundError,
)
from app.services.payments.gateway import RefundCapableGateway, WebhookPayload
from app.services.payments.lifecycle import plan_transition, transaction_status_for
from app.services.payments.registry import GatewayRegistry, get_gateway_registry
from app.services.payments.repository import PaymentRepository, TransactionRepository
from app.services.permissions import require_admin, require_admin_or_owner
from app.services.promotions.service import PromoCodeService, get_promo_code_service
from app.utils.dates import utcnow
from app.utils.money import (
    D,
    convert_approximate,
    from_minor_units,
    minor_unit_exponent,
    round_money,
    to_minor_units,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Provider name recorded for outcomes decided without a gateway
INTERNAL_PROVIDER = "internal"

PROVIDER_REFERENCE_FIELDS = {
    GatewayName.STRIPE.value: "stripe_session_id",
    GatewayName.PAYMEE.value: "paymee_token",
}

TRANSACTION_TYPES = {
    PaymentType.COURSE_PURCHASE.value: TransactionType.COURSE_PURCHASE,
    PaymentType.BUNDLE_PURCHASE.value: TransactionType.BUNDLE_PURCHASE,
    PaymentType.SUBSCRIPTION.value: TransactionType.SUBSCRIPTION,
}


def refund_transaction_id(payment_id: str) -> str:
    return f"{outcome_transaction_id(payment_id)}_refund"


def _newest_first(payments: List[PaymentRecord]) -> List[PaymentRecord]:
    return sorted(
        payments,
        key=lambda p: p.created_at.timestamp() if p.created_at else 0,
        reverse=True,
    )


class PaymentReconciliationService:
    """Checkout orchestration and gateway outcome reconciliation."""

    def __init__(
        self,
        payment_repository: Optional[PaymentRepository] = None,
        transaction_repository: Optional[TransactionRepository] = None,
        promo_service: Optional[PromoCodeService] = None,
        registry: Optional[GatewayRegistry] = None,
        home_currency: str = config.HOME_CURRENCY,
        exchange_rates: Optional[dict] = None,
    ):
        self.payment_repository = payment_repository or PaymentRepository()
        self.transaction_repository = transaction_repository or TransactionRepository()
        self.promo_service = promo_service or get_promo_code_service()
        self.registry = registry or get_gateway_registry()
        self.home_currency = home_currency
        self.exchange_rates = (
            exchange_rates if exchange_rates is not None else config.APPROXIMATE_EXCHANGE_RATES
        )

    # Checkout

    @staticmethod
    def _cart(request: CheckoutRequest) -> List[CartItem]:
        if request.payment_type == PaymentType.BUNDLE_PURCHASE:
            return list(request.cart_items)
        return [
            CartItem(
                course_id=request.course_id,
                title=request.course_title,
                price=request.price,
            )
        ]

    async def create_checkout(self, user: User, request: CheckoutRequest) -> CheckoutResponse:
        """
        Price a cart, apply an optional promo code and start a gateway payment.

        The promo code is only validated here. Its use is counted when the
        payment completes.

        Args:
            user: Authenticated purchaser
            request: Checkout request

        Returns:
            CheckoutResponse with the hosted checkout URL

        Raises:
            NotFoundError, InvalidStateError, IneligibleError, BelowMinimumError:
                Promo code problems
            GatewayError: The gateway rejected the payment or could not be reached
        """
        cart = self._cart(request)
        places = minor_unit_exponent(self.home_currency)
        original_amount = round_money(sum((D(item.price) for item in cart), Decimal("0")), places)

        promo_code = promo_code_id = promo_discount = None
        if request.promo_code:
            result = await self.promo_service.validate_for_courses(
                request.promo_code, original_amount, [item.course_id for item in cart]
            )
            promo_code = result.code
            promo_code_id = result.promo_code_id
            promo_discount = result.discount

        amount = original_amount - (promo_discount or Decimal("0"))
        payment_id = str(uuid.uuid4())
        now = utcnow()

        record = dict(
            payment_id=payment_id,
            user_id=user.uid,
            course_id=request.course_id if request.payment_type != PaymentType.BUNDLE_PURCHASE else None,
            course_title=request.course_title,
            cart_items=cart if request.payment_type == PaymentType.BUNDLE_PURCHASE else [],
            amount=amount,
            original_amount=original_amount,
            promo_code=promo_code,
            promo_code_id=promo_code_id,
            promo_discount=promo_discount,
            currency=self.home_currency,
            payment_type=request.payment_type,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        if amount <= 0:
            # Fully discounted carts never reach a gateway
            payment = await self.payment_repository.create(
                PaymentRecord(**record, payment_method="promo_code")
            )
            logger.info(f"Payment {payment_id} fully covered by promo code {promo_code}")
            payment = await self._apply_event(
                payment,
                GatewayEvent(
                    provider=INTERNAL_PROVIDER,
                    event_type="payment.free",
                    status=PaymentStatus.COMPLETED.value,
                    order_id=payment_id,
                ),
            )
            return self._checkout_response(payment)

        adapter = self.registry.get(request.gateway)
        gateway_currency = adapter.config.default_currency
        try:
            gateway_amount = convert_approximate(
                amount, self.home_currency, gateway_currency, self.exchange_rates
            )
            gateway_amount_minor = to_minor_units(gateway_amount, gateway_currency)
        except ValueError as e:
            raise InvalidStateError(str(e))
        if gateway_amount_minor <= 0:
            raise InvalidStateError("Payment amount is too small for the selected gateway")

        payment = await self.payment_repository.create(
            PaymentRecord(
                **record,
                payment_gateway=adapter.name,
                gateway_amount_minor=gateway_amount_minor,
                gateway_currency=gateway_currency,
                gateway_amount_approximate=gateway_currency != self.home_currency,
            )
        )

        customer = request.customer
        try:
            initiated = await adapter.initiate_payment(
                GatewayPaymentRequest(
                    amount_minor=gateway_amount_minor,
                    currency=gateway_currency,
                    order_id=payment_id,
                    first_name=customer.first_name,
                    last_name=customer.last_name,
                    email=customer.email,
                    phone=customer.phone,
                    note=request.note or self._describe(cart),
                )
            )
        except GatewayError as e:
            if e.retryable:
                # The gateway may still have created the payment
                logger.warning(
                    f"Payment {payment_id} left pending after gateway failure: {e.message}"
                )
            else:
                await self._apply_event(
                    payment,
                    GatewayEvent(
                        provider=adapter.name,
                        event_type="payment.rejected",
                        status=PaymentStatus.FAILED.value,
                        order_id=payment_id,
                        failure_reason=e.message,
                    ),
                )
            raise

        payment = await self.payment_repository.update(
            payment_id,
            {
                PROVIDER_REFERENCE_FIELDS[adapter.name]: initiated.provider_reference_id,
                "checkout_url": initiated.checkout_url,
            },
        )
        logger.info(f"Started {adapter.name} checkout for payment {payment_id}")
        return self._checkout_response(payment)

    @staticmethod
    def _describe(cart: List[CartItem]) -> str:
        if len(cart) == 1:
            return cart[0].title or "Course Purchase"
        return f"Course bundle ({len(cart)} courses)"

    @staticmethod
    def _checkout_response(payment: PaymentRecord) -> CheckoutResponse:
        return CheckoutResponse(
            payment_id=payment.payment_id,
            status=payment.status,
            checkout_url=payment.checkout_url,
            provider_reference=payment.provider_reference,
            amount=payment.amount,
            original_amount=payment.original_amount,
            promo_discount=payment.promo_discount,
            currency=payment.currency,
            gateway_amount_minor=payment.gateway_amount_minor,
            gateway_currency=payment.gateway_currency,
            gateway_amount_approximate=payment.gateway_amount_approximate,
        )

    # Reconciliation

    async def verify_payment(self, user: User, payment_id: str) -> PaymentRecord:
        """
        Ask the gateway for a payment's status and apply it.

        Inconclusive checks (transport failures) leave the record unchanged.
        """
        payment = await self._require(payment_id)
        require_admin_or_owner(user, payment.user_id, "verify this payment")

        status = PaymentStatus(payment.status)
        if status not in (PaymentStatus.PENDING, PaymentStatus.UNKNOWN):
            return payment

        reference = payment.provider_reference
        if not payment.payment_gateway or not reference:
            logger.info(f"Payment {payment_id} has no gateway reference to verify")
            return payment

        adapter = self.registry.get(payment.payment_gateway)
        result = await adapter.verify_payment(reference)
        if not result.is_conclusive:
            logger.warning(
                f"Verification of payment {payment_id} was inconclusive: {result.message}"
            )
            return payment

        event = GatewayEvent(
            provider=adapter.name,
            event_type="payment.verified",
            status=result.status,
            order_id=result.order_id,
            transaction_id=result.transaction_id,
            amount_minor=result.amount_minor,
            currency=result.currency,
            payment_date=result.payment_date,
            failure_reason=result.message if not result.success else None,
            raw=result.raw,
        )
        if result.order_id and result.order_id != payment_id:
            logger.error(
                f"Gateway reported order {result.order_id} for payment {payment_id}"
            )
            event = event.model_copy(
                update={
                    "status": PaymentStatus.UNKNOWN.value,
                    "failure_reason": f"Gateway reported a different order: {result.order_id}",
                }
            )

        return await self._apply_event(payment, event)

    async def handle_webhook(
        self, gateway: str, payload: WebhookPayload, signature: Optional[str] = None
    ) -> Optional[PaymentRecord]:
        """
        Authenticate a webhook delivery and apply its event.

        Args:
            gateway: Name of the gateway that sent the webhook
            payload: Raw request body
            signature: Signature header, when the gateway sends one

        Returns:
            The updated payment, or None if the event matches no payment

        Raises:
            SignatureInvalidError: If the delivery cannot be authenticated
        """
        adapter = self.registry.get(gateway)
        event = adapter.process_webhook(payload, signature)
        logger.info(
            f"Received {adapter.name} webhook {event.event_type} for order {event.order_id}"
        )

        payment = await self._resolve(adapter.name, event)
        if payment is None:
            logger.warning(
                f"No payment found for {adapter.name} webhook {event.event_type}"
            )
            return None

        if payment.payment_gateway != adapter.name:
            logger.error(
                f"Ignoring {adapter.name} webhook for payment {payment.payment_id} "
                f"made through {payment.payment_gateway}"
            )
            return payment

        reference = event.provider_reference_id
        if reference and payment.provider_reference != reference:
            # The event must carry the reference stored at initiation
            logger.error(
                f"{adapter.name} webhook reference {reference} does not belong to "
                f"payment {payment.payment_id}"
            )
            event = event.model_copy(
                update={
                    "status": PaymentStatus.UNKNOWN.value,
                    "failure_reason": f"Webhook reference {reference} does not match the payment",
                }
            )

        try:
            return await self._apply_event(payment, event)
        except InconsistentStateError as e:
            # Acknowledged so the gateway stops retrying; needs manual review
            logger.error(
                f"Inconsistent webhook for payment {payment.payment_id}: {e.message}"
            )
            return await self.payment_repository.get(payment.payment_id)

    async def _resolve(self, gateway: str, event: GatewayEvent) -> Optional[PaymentRecord]:
        """Find the payment an event refers to, authenticated reference first."""
        if event.provider_reference_id and gateway in PROVIDER_REFERENCE_FIELDS:
            payment = await self.payment_repository.find_by_field(
                PROVIDER_REFERENCE_FIELDS[gateway], event.provider_reference_id
            )
            if payment:
                return payment
        if event.order_id:
            payment = await self.payment_repository.get(event.order_id)
            if payment:
                return payment
        if event.transaction_id:
            return await self.payment_repository.find_by_field(
                "gateway_transaction_id", event.transaction_id
            )
        return None

    async def refund_payment(
        self,
        user: User,
        payment_id: str,
        reason: Optional[str] = None,
        amount_minor: Optional[int] = None,
    ) -> PaymentRecord:
        """
        Refund a completed payment.

        Gateways that support refunds are asked to return the money first;
        for the others the refund is recorded and must be settled manually.

        Raises:
            UnauthorizedError: If the user is not an admin
            NotFoundError: If the payment does not exist
            InvalidStateError: If the payment is not completed
            GatewayError: If the gateway refused the refund
        """
        require_admin(user, "refund payments")
        payment = await self._require(payment_id)

        if PaymentStatus(payment.status) != PaymentStatus.COMPLETED:
            raise InvalidStateError("Only completed payments can be refunded")
        if amount_minor and payment.gateway_amount_minor and amount_minor > payment.gateway_amount_minor:
            raise InvalidStateError("Refund amount exceeds the amount paid")

        refund_id = None
        adapter = self.registry.find(payment.payment_gateway) if payment.payment_gateway else None
        if isinstance(adapter, RefundCapableGateway) and payment.gateway_transaction_id:
            result = await adapter.create_refund(payment.gateway_transaction_id, amount_minor)
            if not result.success:
                raise GatewayError(
                    result.message or f"Refund was not accepted ({result.status})",
                    provider=adapter.name,
                )
            refund_id = result.refund_id
        elif adapter is not None:
            logger.warning(
                f"Gateway {adapter.name} cannot refund payment {payment_id}; "
                "recording a manual refund"
            )

        return await self._apply_event(
            payment,
            GatewayEvent(
                provider=adapter.name if adapter else INTERNAL_PROVIDER,
                event_type="payment.refunded",
                status=PaymentStatus.REFUNDED.value,
                order_id=payment_id,
                amount_minor=amount_minor,
                currency=payment.gateway_currency if amount_minor else None,
                failure_reason=reason,
                raw={"refund_id": refund_id} if refund_id else None,
            ),
        )

    # Queries

    async def get_payment(self, user: User, payment_id: str) -> PaymentRecord:
        payment = await self._require(payment_id)
        require_admin_or_owner(user, payment.user_id, "view this payment")
        return payment

    async def get_user_payments(self, user: User) -> List[PaymentRecord]:
        """Payments of the current user, newest first."""
        return _newest_first(await self.payment_repository.find_by_user(user.uid))

    async def get_payments_by_status(self, user: User, status: str) -> List[PaymentRecord]:
        """
        List payments in one status (admin), newest first.

        Used to find payments left in unknown for manual reconciliation.
        """
        require_admin(user, "list payments by status")
        try:
            status = PaymentStatus(status).value
        except ValueError:
            raise InvalidStateError(f"Unknown payment status: {status}")
        return _newest_first(await self.payment_repository.find_by_status(status))

    async def get_course_payments(self, user: User, course_id: str) -> List[PaymentRecord]:
        """List payments that include a course (admin), newest first."""
        require_admin(user, "list course payments")
        return _newest_first(await self.payment_repository.find_by_course(course_id))

    async def _require(self, payment_id: str) -> PaymentRecord:
        payment = await self.payment_repository.get(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    # State changes

    @staticmethod
    def _amount_mismatch(payment: PaymentRecord, event: GatewayEvent) -> Optional[str]:
        if event.amount_minor is None or payment.gateway_amount_minor is None:
            return None
        if event.amount_minor != payment.gateway_amount_minor or (
            event.currency
            and payment.gateway_currency
            and event.currency.upper() != payment.gateway_currency.upper()
        ):
            return (
                f"Amount mismatch: expected {payment.gateway_amount_minor} "
                f"{payment.gateway_currency}, gateway reported {event.amount_minor} "
                f"{event.currency}"
            )
        return None

    async def _apply_event(self, payment: PaymentRecord, event: GatewayEvent) -> PaymentRecord:
        """
        Move a payment according to a normalized gateway event.

        Raises:
            InconsistentStateError: If the event contradicts a settled outcome
        """

        def decide(current: PaymentRecord) -> Optional[dict]:
            target = PaymentStatus(event.status)
            reason = event.failure_reason

            if target == PaymentStatus.COMPLETED:
                mismatch = self._amount_mismatch(current, event)
                if mismatch:
                    target, reason = PaymentStatus.UNKNOWN, mismatch

            if not plan_transition(current.status, target):
                return None

            changes = {"status": target.value}
            if event.transaction_id and not current.gateway_transaction_id:
                changes["gateway_transaction_id"] = event.transaction_id
            if target == PaymentStatus.COMPLETED:
                changes["completed_at"] = event.payment_date or utcnow()
                changes["transaction_id"] = outcome_transaction_id(current.payment_id)
                changes["failure_reason"] = None
            elif target != PaymentStatus.REFUNDED:
                changes["failure_reason"] = reason
            return changes

        before, changes = await self.payment_repository.transition(payment.payment_id, decide)
        updated = await self.payment_repository.get(payment.payment_id)
        if not changes:
            return updated

        status = PaymentStatus(changes["status"])
        logger.info(
            f"Payment {payment.payment_id} moved from {before.status} to {status.value} "
            f"({event.provider} {event.event_type})"
        )

        if status == PaymentStatus.COMPLETED:
            await self._write_outcome_transaction(updated, event)
            await self._redeem_promo(updated)
        elif status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            await self._write_outcome_transaction(updated, event)
        elif status == PaymentStatus.REFUNDED:
            await self._record_refund(updated, event)

        return await self.payment_repository.get(payment.payment_id)

    async def _write_outcome_transaction(self, payment: PaymentRecord, event: GatewayEvent) -> None:
        now = utcnow()
        status = transaction_status_for(payment.status)
        created = await self.transaction_repository.create_if_absent(
            TransactionRecord(
                transaction_id=outcome_transaction_id(payment.payment_id),
                payment_id=payment.payment_id,
                user_id=payment.user_id,
                course_id=payment.course_id,
                transaction_type=TRANSACTION_TYPES[payment.payment_type],
                amount=payment.amount,
                currency=payment.currency,
                status=status,
                payment_method=payment.payment_method,
                payment_gateway=payment.payment_gateway or event.provider,
                gateway_transaction_id=payment.gateway_transaction_id,
                gateway_response=event.raw,
                description=f"{event.provider} {event.event_type}",
                created_at=now,
                updated_at=now,
                completed_at=payment.completed_at,
            )
        )
        if not created:
            logger.info(f"Outcome transaction for payment {payment.payment_id} already recorded")

    async def _redeem_promo(self, payment: PaymentRecord) -> None:
        if not payment.promo_code_id or payment.promo_redeemed:
            return

        def claim(current: PaymentRecord) -> Optional[dict]:
            if current.promo_redeemed:
                return None
            return {"promo_redeemed": True}

        _, claimed = await self.payment_repository.transition(payment.payment_id, claim)
        if not claimed:
            return

        try:
            await self.promo_service.apply_promo_code(payment.promo_code_id)
            logger.info(
                f"Redeemed promo code {payment.promo_code} for payment {payment.payment_id}"
            )
        except DomainError as e:
            # The buyer has paid; the discrepancy is left for manual review
            logger.error(
                f"Failed to redeem promo code {payment.promo_code} for payment "
                f"{payment.payment_id}: {e.message}\n{format_exc()}"
            )

    async def _record_refund(self, payment: PaymentRecord, event: GatewayEvent) -> None:
        now = utcnow()
        full_refund = (
            event.amount_minor is None
            or event.amount_minor == payment.gateway_amount_minor
            or not event.currency
        )
        if full_refund:
            amount, currency = payment.amount, payment.currency
        else:
            amount = from_minor_units(event.amount_minor, event.currency)
            currency = event.currency

        outcome_id = outcome_transaction_id(payment.payment_id)
        if await self.transaction_repository.get(outcome_id):
            await self.transaction_repository.update(
                outcome_id, {"status": transaction_status_for(PaymentStatus.REFUNDED).value}
            )

        await self.transaction_repository.create_if_absent(
            TransactionRecord(
                transaction_id=refund_transaction_id(payment.payment_id),
                payment_id=payment.payment_id,
                user_id=payment.user_id,
                course_id=payment.course_id,
                transaction_type=TransactionType.REFUND,
                amount=-D(amount),
                currency=currency,
                status=transaction_status_for(PaymentStatus.COMPLETED),
                payment_method=payment.payment_method,
                payment_gateway=payment.payment_gateway,
                gateway_transaction_id=payment.gateway_transaction_id,
                gateway_response=event.raw,
                description=event.failure_reason or "Refund",
                original_transaction_id=outcome_id,
                created_at=now,
                updated_at=now,
                completed_at=now,
            )
        )
        logger.info(f"Recorded refund of {amount} {currency} for payment {payment.payment_id}")


# Global service instance
_reconciliation_service = None


def get_reconciliation_service() -> PaymentReconciliationService:
    """Get a singleton PaymentReconciliationService instance."""
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = PaymentReconciliationService()
    return _reconciliation_service
