"""
Payment and Transaction Repositories

Firestore-backed persistence for payment records and their outcome
transactions. Payment documents are keyed by payment_id, transactions by
transaction_id.
"""

import logging
from typing import Callable, List, Optional, Tuple

import config
from app.models.payments import PAYMENTS_COLLECTION, PaymentRecord, PaymentType
from app.models.transactions import TRANSACTIONS_COLLECTION, TransactionRecord
from app.services.errors import NotFoundError
from app.services.firestore import FirestoreService, get_firestore_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Receives the stored payment and returns the fields to write, or None
Decision = Callable[[PaymentRecord], Optional[dict]]


class PaymentRepository:
    """Persistence operations for the payments collection."""

    def __init__(self, firestore_service: Optional[FirestoreService] = None):
        self.firestore_service = firestore_service or get_firestore_service(
            config.FIRESTORE_DATABASE
        )

    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        await self.firestore_service.create_document(
            collection_name=PAYMENTS_COLLECTION,
            document_data=payment.to_document(),
            document_id=payment.payment_id,
        )
        return await self.get(payment.payment_id)

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        return await self.firestore_service.get_document(
            collection_name=PAYMENTS_COLLECTION,
            document_id=payment_id,
            model_class=PaymentRecord,
        )

    async def update(self, payment_id: str, update_data: dict) -> PaymentRecord:
        """Write fields that do not take part in the status state machine."""
        await self.firestore_service.update_document(
            collection_name=PAYMENTS_COLLECTION,
            document_id=payment_id,
            update_data=update_data,
        )
        return await self.get(payment_id)

    async def find_by_field(self, field: str, value: str) -> Optional[PaymentRecord]:
        payments = await self.firestore_service.query_collection(
            collection_name=PAYMENTS_COLLECTION,
            filters=[(field, "==", value)],
            limit=1,
            model_class=PaymentRecord,
        )
        return payments[0] if payments else None

    async def find_by_user(self, user_id: str) -> List[PaymentRecord]:
        return await self.firestore_service.query_collection(
            collection_name=PAYMENTS_COLLECTION,
            filters=[("user_id", "==", user_id)],
            model_class=PaymentRecord,
        )

    async def find_by_status(self, status: str) -> List[PaymentRecord]:
        return await self.firestore_service.query_collection(
            collection_name=PAYMENTS_COLLECTION,
            filters=[("status", "==", status)],
            model_class=PaymentRecord,
        )

    async def find_by_course(self, course_id: str) -> List[PaymentRecord]:
        """Single purchases of the course plus bundles that contain it."""
        singles = await self.firestore_service.query_collection(
            collection_name=PAYMENTS_COLLECTION,
            filters=[("course_id", "==", course_id)],
            model_class=PaymentRecord,
        )
        # Cart items are nested maps, so bundles are matched here
        bundles = await self.firestore_service.query_collection(
            collection_name=PAYMENTS_COLLECTION,
            filters=[("payment_type", "==", PaymentType.BUNDLE_PURCHASE.value)],
            model_class=PaymentRecord,
        )
        return singles + [p for p in bundles if course_id in p.course_ids]

    async def transition(
        self, payment_id: str, decide: Decision
    ) -> Tuple[PaymentRecord, Optional[dict]]:
        """
        Apply a status decision atomically.

        Args:
            payment_id: Payment to update
            decide: Pure function of the stored record returning the changes

        Returns:
            Tuple of (record before the write, changes written or None)

        Raises:
            NotFoundError: If the payment does not exist
        """

        def _mutation(current: Optional[dict]) -> Optional[dict]:
            if current is None:
                raise NotFoundError("Payment not found")
            return decide(PaymentRecord(**current))

        current, changes = await self.firestore_service.update_in_transaction(
            collection_name=PAYMENTS_COLLECTION,
            document_id=payment_id,
            mutation=_mutation,
        )
        return PaymentRecord(**current), changes


class TransactionRepository:
    """Persistence operations for the transactions collection."""

    def __init__(self, firestore_service: Optional[FirestoreService] = None):
        self.firestore_service = firestore_service or get_firestore_service(
            config.FIRESTORE_DATABASE
        )

    async def create_if_absent(self, transaction: TransactionRecord) -> bool:
        """Create a transaction unless one with the same ID already exists."""
        return await self.firestore_service.create_document_if_absent(
            collection_name=TRANSACTIONS_COLLECTION,
            document_id=transaction.transaction_id,
            document_data=transaction.to_document(),
        )

    async def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        return await self.firestore_service.get_document(
            collection_name=TRANSACTIONS_COLLECTION,
            document_id=transaction_id,
            model_class=TransactionRecord,
        )

    async def update(self, transaction_id: str, update_data: dict) -> None:
        await self.firestore_service.update_document(
            collection_name=TRANSACTIONS_COLLECTION,
            document_id=transaction_id,
            update_data=update_data,
        )
