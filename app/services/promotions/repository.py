"""
Promo Code Repository

Firestore-backed persistence for promo codes, keyed by document ID and
looked up by code string.
"""

import logging
import uuid
from typing import List, Optional

import config
from app.models.promo_codes import PROMO_CODES_COLLECTION, PromoCode
from app.services.errors import InvalidStateError, NotFoundError
from app.services.firestore import FirestoreService, get_firestore_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class PromoCodeRepository:
    """Persistence operations for the promo_codes collection."""

    def __init__(self, firestore_service: Optional[FirestoreService] = None):
        self.firestore_service = firestore_service or get_firestore_service(
            config.FIRESTORE_DATABASE
        )

    async def find_by_code(self, code: str) -> Optional[PromoCode]:
        promos = await self.firestore_service.query_collection(
            collection_name=PROMO_CODES_COLLECTION,
            filters=[("code", "==", code.strip())],
            limit=1,
            model_class=PromoCode,
        )
        return promos[0] if promos else None

    async def find_by_id(self, promo_code_id: str) -> Optional[PromoCode]:
        return await self.firestore_service.get_document(
            collection_name=PROMO_CODES_COLLECTION,
            document_id=promo_code_id,
            model_class=PromoCode,
        )

    async def create(self, promo: PromoCode) -> PromoCode:
        promo_code_id = promo.id or str(uuid.uuid4())
        await self.firestore_service.create_document(
            collection_name=PROMO_CODES_COLLECTION,
            document_data=promo.to_document(),
            document_id=promo_code_id,
        )
        return await self.find_by_id(promo_code_id)

    async def update(self, promo_code_id: str, update_data: dict) -> PromoCode:
        await self.firestore_service.update_document(
            collection_name=PROMO_CODES_COLLECTION,
            document_id=promo_code_id,
            update_data=update_data,
        )
        return await self.find_by_id(promo_code_id)

    async def increment_usage(self, promo_code_id: str) -> PromoCode:
        """
        Count one redemption, atomically refusing to exceed max_uses.

        Concurrent redemptions of the last remaining use are serialised by the
        Firestore transaction: exactly one succeeds, the others see the cap.

        Raises:
            NotFoundError: If the promo code does not exist
            InvalidStateError: If the usage cap has been reached
        """

        def _increment(current: Optional[dict]) -> dict:
            if current is None:
                raise NotFoundError("Promo code not found")
            used_count = current.get("used_count", 0)
            max_uses = current.get("max_uses")
            if max_uses is not None and used_count >= max_uses:
                raise InvalidStateError("This promo code has reached its usage limit")
            return {"used_count": used_count + 1}

        await self.firestore_service.update_in_transaction(
            collection_name=PROMO_CODES_COLLECTION,
            document_id=promo_code_id,
            mutation=_increment,
        )
        return await self.find_by_id(promo_code_id)

    async def find_all_active(self) -> List[PromoCode]:
        return await self.firestore_service.query_collection(
            collection_name=PROMO_CODES_COLLECTION,
            filters=[("is_active", "==", True)],
            model_class=PromoCode,
        )

    async def find_all(self) -> List[PromoCode]:
        return await self.firestore_service.query_collection(
            collection_name=PROMO_CODES_COLLECTION,
            model_class=PromoCode,
        )

    async def find_by_course(self, course_id: str) -> List[PromoCode]:
        return await self.firestore_service.query_collection(
            collection_name=PROMO_CODES_COLLECTION,
            filters=[
                ("applicable_courses", "array_contains", course_id),
                ("is_active", "==", True),
            ],
            model_class=PromoCode,
        )

    async def delete(self, promo_code_id: str) -> None:
        await self.firestore_service.delete_document(
            collection_name=PROMO_CODES_COLLECTION,
            document_id=promo_code_id,
        )

    async def deactivate(self, promo_code_id: str) -> PromoCode:
        return await self.update(promo_code_id, {"is_active": False})
