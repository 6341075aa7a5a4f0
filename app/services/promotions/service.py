"""
Promo Code Service

Orchestrates promo code lookup, validation, discount computation and usage
accounting against the repository, plus the admin-only management
operations. Errors are raised to the caller unmodified.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import ValidationError

from app.models.promo_codes import (
    PromoCode,
    PromoCodeCreate,
    PromoCodeUpdate,
    PromoValidationResult,
)
from app.models.users import User
from app.services.errors import IneligibleError, InvalidStateError, NotFoundError
from app.services.permissions import require_admin
from app.services.promotions import rules
from app.services.promotions.repository import PromoCodeRepository
from app.utils.dates import utcnow


class PromoCodeService:
    """Promo code validation, redemption and administration."""

    def __init__(self, repository: Optional[PromoCodeRepository] = None):
        self.repository = repository or PromoCodeRepository()

    async def _get_redeemable(self, code: str, now: Optional[datetime]) -> PromoCode:
        promo = await self.repository.find_by_code(code)
        if not promo:
            raise NotFoundError("Invalid promo code")

        if not rules.is_valid(promo, now):
            raise InvalidStateError("This promo code has expired or is no longer valid")

        return promo

    @staticmethod
    def _result(promo: PromoCode, subtotal) -> PromoValidationResult:
        return PromoValidationResult(
            valid=True,
            code=promo.code,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            discount=rules.calculate_discount(promo, subtotal),
            promo_code_id=promo.id,
        )

    async def validate_promo_code(
        self,
        code: str,
        subtotal,
        course_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PromoValidationResult:
        """
        Validate a promo code against a subtotal. Public and read-only.

        Args:
            code: Promo code string as entered
            subtotal: Cart subtotal in home-currency major units
            course_id: Optional course the code must apply to
            now: Evaluation time, defaults to the current UTC time

        Returns:
            PromoValidationResult with the computed discount

        Raises:
            NotFoundError: Unknown code
            InvalidStateError: Inactive, outside its window or out of uses
            IneligibleError: Not applicable to course_id
            BelowMinimumError: Subtotal below the minimum purchase amount
        """
        promo = await self._get_redeemable(code, now)

        if course_id and not rules.can_apply_to_course(promo, course_id):
            raise IneligibleError(
                "This promo code is not applicable to the selected course"
            )

        return self._result(promo, subtotal)

    async def validate_for_courses(
        self,
        code: str,
        subtotal,
        course_ids: Iterable[str],
        now: Optional[datetime] = None,
    ) -> PromoValidationResult:
        """Bundle variant of validate_promo_code: every course must be eligible."""
        promo = await self._get_redeemable(code, now)

        ineligible = [c for c in course_ids if not rules.can_apply_to_course(promo, c)]
        if ineligible:
            raise IneligibleError(
                f"This promo code is not applicable to: {', '.join(ineligible)}"
            )

        return self._result(promo, subtotal)

    async def apply_promo_code(self, promo_code_id: str) -> PromoCode:
        """
        Count one redemption of a promo code.

        Only called once a checkout has actually completed; validation never
        consumes a use.
        """
        return await self.repository.increment_usage(promo_code_id)

    async def create_promo_code(self, user: User, data: PromoCodeCreate) -> PromoCode:
        require_admin(user, "create promo codes")

        if await self.repository.find_by_code(data.code):
            raise InvalidStateError(f"Promo code {data.code} already exists")

        now = utcnow()
        promo = PromoCode(**data.model_dump(), created_at=now, updated_at=now)
        return await self.repository.create(promo)

    async def get_promo_code(self, user: User, promo_code_id: str) -> PromoCode:
        require_admin(user, "view promo codes")
        return await self._require(promo_code_id)

    async def get_all_active_promo_codes(self, user: User) -> List[PromoCode]:
        require_admin(user, "list promo codes")
        return await self.repository.find_all_active()

    async def get_all_promo_codes(self, user: User) -> List[PromoCode]:
        require_admin(user, "list promo codes")
        return await self.repository.find_all()

    async def get_promo_codes_for_course(self, user: User, course_id: str) -> List[PromoCode]:
        require_admin(user, "list promo codes")
        return await self.repository.find_by_course(course_id)

    async def update_promo_code(
        self, user: User, promo_code_id: str, data: PromoCodeUpdate
    ) -> PromoCode:
        require_admin(user, "update promo codes")
        promo = await self._require(promo_code_id)

        changes = data.changes()
        # Re-check the merged record so partial updates cannot break invariants
        fields = set(PromoCodeCreate.model_fields) - {"used_count"}
        merged = {**promo.model_dump(include=fields), **changes}
        try:
            PromoCodeCreate(**merged)
        except ValidationError as e:
            raise InvalidStateError(f"Invalid promo code update: {e.errors()[0]['msg']}")

        max_uses = changes.get("max_uses")
        if max_uses is not None and max_uses < promo.used_count:
            raise InvalidStateError(
                f"max_uses cannot be lower than the current usage ({promo.used_count})"
            )

        return await self.repository.update(promo_code_id, changes)

    async def deactivate_promo_code(self, user: User, promo_code_id: str) -> PromoCode:
        require_admin(user, "deactivate promo codes")
        await self._require(promo_code_id)
        return await self.repository.deactivate(promo_code_id)

    async def delete_promo_code(self, user: User, promo_code_id: str) -> None:
        require_admin(user, "delete promo codes")
        await self._require(promo_code_id)
        await self.repository.delete(promo_code_id)

    async def _require(self, promo_code_id: str) -> PromoCode:
        promo = await self.repository.find_by_id(promo_code_id)
        if not promo:
            raise NotFoundError("Promo code not found")
        return promo


# Global service instance
_promo_code_service = None


def get_promo_code_service() -> PromoCodeService:
    """Get a singleton PromoCodeService instance."""
    global _promo_code_service
    if _promo_code_service is None:
        _promo_code_service = PromoCodeService()
    return _promo_code_service
