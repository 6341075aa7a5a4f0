import asyncio
import json
import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

# config.py fails fast without these, so set them before any app import
os.environ.setdefault("ELEARN_AUTH_JWT_KEY", "test-signing-key-0123456789abcdef0123")
os.environ.setdefault("ELEARN_ENV", "d")

import pytest

from app.models.gateways import (
    VERIFICATION_ERROR,
    GatewayConfig,
    GatewayEvent,
    GatewayPaymentRequest,
    InitiatedPayment,
    RefundResult,
    VerificationResult,
)
from app.models.payments import PaymentRecord
from app.models.promo_codes import PromoCode
from app.models.transactions import TransactionRecord
from app.models.users import User
from app.services.errors import InvalidStateError, NotFoundError, SignatureInvalidError
from app.services.payments.reconciliation import PaymentReconciliationService
from app.services.payments.registry import GatewayRegistry
from app.services.promotions.service import PromoCodeService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

RATES = {
    ("TND", "USD"): Decimal("0.32"),
    ("USD", "TND"): Decimal("3.125"),
}


def make_promo(**overrides) -> PromoCode:
    data = dict(
        id="promo-1",
        code="SPRING20",
        discount_type="percentage",
        discount_value=Decimal("20"),
        is_active=True,
        valid_from=None,
        valid_until=None,
        max_uses=None,
        used_count=0,
        min_purchase_amount=Decimal("0"),
        applicable_courses=[],
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(overrides)
    return PromoCode(**data)


class FakePromoCodeRepository:
    """In-memory PromoCodeRepository with an atomic usage increment."""

    def __init__(self, promos: Optional[List[PromoCode]] = None):
        self.promos: Dict[str, PromoCode] = {p.id: p for p in promos or []}
        self._lock = asyncio.Lock()

    async def find_by_code(self, code: str) -> Optional[PromoCode]:
        code = code.strip()
        return next((p for p in self.promos.values() if p.code == code), None)

    async def find_by_id(self, promo_code_id: str) -> Optional[PromoCode]:
        return self.promos.get(promo_code_id)

    async def create(self, promo: PromoCode) -> PromoCode:
        promo = promo.model_copy(update={"id": promo.id or str(uuid.uuid4())})
        self.promos[promo.id] = promo
        return promo

    async def update(self, promo_code_id: str, update_data: dict) -> PromoCode:
        current = self.promos[promo_code_id]
        promo = PromoCode(**{**current.model_dump(), **update_data})
        self.promos[promo_code_id] = promo
        return promo

    async def increment_usage(self, promo_code_id: str) -> PromoCode:
        async with self._lock:
            promo = self.promos.get(promo_code_id)
            if promo is None:
                raise NotFoundError("Promo code not found")
            # Yield inside the critical section so racing callers interleave
            await asyncio.sleep(0)
            if promo.max_uses is not None and promo.used_count >= promo.max_uses:
                raise InvalidStateError("This promo code has reached its usage limit")
            return await self.update(promo_code_id, {"used_count": promo.used_count + 1})

    async def find_all_active(self) -> List[PromoCode]:
        return [p for p in self.promos.values() if p.is_active]

    async def find_all(self) -> List[PromoCode]:
        return list(self.promos.values())

    async def find_by_course(self, course_id: str) -> List[PromoCode]:
        return [
            p
            for p in self.promos.values()
            if p.is_active and course_id in p.applicable_courses
        ]

    async def delete(self, promo_code_id: str) -> None:
        self.promos.pop(promo_code_id, None)

    async def deactivate(self, promo_code_id: str) -> PromoCode:
        return await self.update(promo_code_id, {"is_active": False})


class FakePaymentRepository:
    """In-memory PaymentRepository storing Firestore-shaped documents."""

    def __init__(self):
        self.documents: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        self.documents[payment.payment_id] = payment.to_document()
        return await self.get(payment.payment_id)

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        document = self.documents.get(payment_id)
        return PaymentRecord(**document) if document else None

    async def update(self, payment_id: str, update_data: dict) -> PaymentRecord:
        self.documents[payment_id].update(update_data)
        return await self.get(payment_id)

    async def find_by_field(self, field: str, value: str) -> Optional[PaymentRecord]:
        for document in self.documents.values():
            if document.get(field) == value:
                return PaymentRecord(**document)
        return None

    async def find_by_user(self, user_id: str) -> List[PaymentRecord]:
        return [
            PaymentRecord(**d) for d in self.documents.values() if d["user_id"] == user_id
        ]

    async def find_by_status(self, status: str) -> List[PaymentRecord]:
        return [PaymentRecord(**d) for d in self.documents.values() if d["status"] == status]

    async def find_by_course(self, course_id: str) -> List[PaymentRecord]:
        payments = [PaymentRecord(**d) for d in self.documents.values()]
        return [p for p in payments if course_id in p.course_ids]

    async def transition(self, payment_id: str, decide):
        async with self._lock:
            document = self.documents.get(payment_id)
            if document is None:
                raise NotFoundError("Payment not found")
            current = PaymentRecord(**document)
            changes = decide(current)
            if changes:
                document.update(changes)
            return current, changes


class FakeTransactionRepository:
    def __init__(self):
        self.transactions: Dict[str, TransactionRecord] = {}

    async def create_if_absent(self, transaction: TransactionRecord) -> bool:
        if transaction.transaction_id in self.transactions:
            return False
        self.transactions[transaction.transaction_id] = transaction
        return True

    async def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        return self.transactions.get(transaction_id)

    async def update(self, transaction_id: str, update_data: dict) -> None:
        current = self.transactions[transaction_id]
        self.transactions[transaction_id] = current.model_copy(update=update_data)


class FakeGateway:
    """Scriptable adapter; webhook payloads are GatewayEvent dicts."""

    def __init__(self, name: str, currency: str):
        self.config = GatewayConfig(name=name, default_currency=currency, auth_token="key")
        self.requests: List[GatewayPaymentRequest] = []
        self.initiate_error: Optional[Exception] = None
        self.verification: Optional[VerificationResult] = None

    @property
    def name(self) -> str:
        return self.config.name

    async def initiate_payment(self, request: GatewayPaymentRequest) -> InitiatedPayment:
        self.requests.append(request)
        if self.initiate_error:
            raise self.initiate_error
        return InitiatedPayment(
            provider=self.name,
            provider_reference_id=f"ref_{request.order_id}",
            checkout_url=f"https://pay.example.com/{request.order_id}",
            amount_minor=request.amount_minor,
            currency=request.currency,
            order_id=request.order_id,
        )

    async def verify_payment(self, reference: str) -> VerificationResult:
        return self.verification or VerificationResult(
            success=False, status=VERIFICATION_ERROR, message="unreachable"
        )

    def validate_webhook_signature(self, payload, signature=None) -> bool:
        return signature != "bad"

    def process_webhook(self, payload, signature=None) -> GatewayEvent:
        if not self.validate_webhook_signature(payload, signature):
            raise SignatureInvalidError("Webhook signature verification failed")
        if not isinstance(payload, dict):
            payload = json.loads(payload)
        return GatewayEvent(provider=self.name, **payload)


class FakeRefundingGateway(FakeGateway):
    def __init__(self, name: str, currency: str):
        super().__init__(name, currency)
        self.refunds = []

    async def create_refund(self, transaction_id: str, amount_minor: Optional[int] = None):
        self.refunds.append((transaction_id, amount_minor))
        return RefundResult(
            success=True,
            refund_id="re_123",
            amount_minor=amount_minor,
            currency=self.config.default_currency,
            status="succeeded",
        )


@pytest.fixture
def admin() -> User:
    return User(uid="admin-1", email="admin@example.com", roles=["admin"])


@pytest.fixture
def student() -> User:
    return User(uid="student-1", email="student@example.com", roles=["student"])


@pytest.fixture
def promo_repository() -> FakePromoCodeRepository:
    return FakePromoCodeRepository([make_promo()])


@pytest.fixture
def promo_service(promo_repository) -> PromoCodeService:
    return PromoCodeService(repository=promo_repository)


@pytest.fixture
def stripe_gateway() -> FakeRefundingGateway:
    return FakeRefundingGateway("stripe", "USD")


@pytest.fixture
def paymee_gateway() -> FakeGateway:
    return FakeGateway("paymee", "TND")


@pytest.fixture
def payment_repository() -> FakePaymentRepository:
    return FakePaymentRepository()


@pytest.fixture
def transaction_repository() -> FakeTransactionRepository:
    return FakeTransactionRepository()


@pytest.fixture
def reconciliation(
    payment_repository,
    transaction_repository,
    promo_service,
    stripe_gateway,
    paymee_gateway,
) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        payment_repository=payment_repository,
        transaction_repository=transaction_repository,
        promo_service=promo_service,
        registry=GatewayRegistry([stripe_gateway, paymee_gateway]),
        home_currency="TND",
        exchange_rates=RATES,
    )
