import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.promo_codes import PromoCodeCreate, PromoCodeUpdate
from app.services.errors import (
    BelowMinimumError,
    IneligibleError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from app.services.promotions.service import PromoCodeService
from app.utils.dates import utcnow
from tests.conftest import FakePromoCodeRepository, make_promo


def service_with(*promos) -> PromoCodeService:
    return PromoCodeService(repository=FakePromoCodeRepository(list(promos)))


class TestValidatePromoCode:
    async def test_valid_code_returns_discount(self, promo_service, promo_repository):
        result = await promo_service.validate_promo_code("SPRING20", Decimal("100"))

        assert result.valid
        assert result.code == "SPRING20"
        assert result.discount == Decimal("20.00")
        assert result.promo_code_id == "promo-1"
        # Validation never consumes a use
        assert promo_repository.promos["promo-1"].used_count == 0

    async def test_surrounding_whitespace_is_ignored(self, promo_service):
        result = await promo_service.validate_promo_code("  SPRING20 ", Decimal("50"))
        assert result.discount == Decimal("10.00")

    async def test_match_is_case_sensitive(self, promo_service):
        with pytest.raises(NotFoundError):
            await promo_service.validate_promo_code("spring20", Decimal("50"))

    async def test_unknown_code(self, promo_service):
        with pytest.raises(NotFoundError, match="Invalid promo code"):
            await promo_service.validate_promo_code("NOPE", Decimal("50"))

    async def test_expired_code(self):
        service = service_with(make_promo(valid_until=utcnow() - timedelta(days=1)))
        with pytest.raises(InvalidStateError, match="expired"):
            await service.validate_promo_code("SPRING20", Decimal("50"))

    async def test_exhausted_code(self):
        service = service_with(make_promo(max_uses=2, used_count=2))
        with pytest.raises(InvalidStateError):
            await service.validate_promo_code("SPRING20", Decimal("50"))

    async def test_course_not_eligible(self):
        service = service_with(make_promo(applicable_courses=["c1"]))
        with pytest.raises(IneligibleError):
            await service.validate_promo_code("SPRING20", Decimal("50"), course_id="c2")

        result = await service.validate_promo_code("SPRING20", Decimal("50"), course_id="c1")
        assert result.discount == Decimal("10.00")

    async def test_below_minimum(self):
        service = service_with(make_promo(min_purchase_amount=Decimal("100")))
        with pytest.raises(BelowMinimumError):
            await service.validate_promo_code("SPRING20", Decimal("99"))

    async def test_bundle_requires_every_course_eligible(self):
        service = service_with(make_promo(applicable_courses=["c1", "c2"]))
        with pytest.raises(IneligibleError, match="c3"):
            await service.validate_for_courses("SPRING20", Decimal("90"), ["c1", "c3"])

        result = await service.validate_for_courses("SPRING20", Decimal("90"), ["c1", "c2"])
        assert result.discount == Decimal("18.00")


class TestApplyPromoCode:
    async def test_apply_increments_usage(self, promo_service, promo_repository):
        promo = await promo_service.apply_promo_code("promo-1")

        assert promo.used_count == 1
        assert promo_repository.promos["promo-1"].used_count == 1

    async def test_apply_refuses_beyond_cap(self):
        service = service_with(make_promo(max_uses=1, used_count=1))
        with pytest.raises(InvalidStateError, match="usage limit"):
            await service.apply_promo_code("promo-1")

    async def test_apply_unknown_id(self, promo_service):
        with pytest.raises(NotFoundError):
            await promo_service.apply_promo_code("missing")

    async def test_concurrent_applies_never_exceed_cap(self):
        repository = FakePromoCodeRepository([make_promo(max_uses=1)])
        service = PromoCodeService(repository=repository)

        results = await asyncio.gather(
            *(service.apply_promo_code("promo-1") for _ in range(10)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(successes) == 1
        assert len(failures) == 9
        assert repository.promos["promo-1"].used_count == 1


class TestAdministration:
    async def test_non_admin_is_rejected(self, promo_service, student):
        data = PromoCodeCreate(code="NEW10", discount_type="fixed", discount_value=Decimal("10"))
        with pytest.raises(UnauthorizedError):
            await promo_service.create_promo_code(student, data)
        with pytest.raises(UnauthorizedError):
            await promo_service.get_all_promo_codes(student)
        with pytest.raises(UnauthorizedError):
            await promo_service.delete_promo_code(student, "promo-1")

    async def test_create_and_fetch(self, promo_service, admin):
        data = PromoCodeCreate(
            code="NEW10",
            discount_type="fixed",
            discount_value=Decimal("10"),
            applicable_courses=["c9"],
        )
        created = await promo_service.create_promo_code(admin, data)

        assert created.id
        assert created.used_count == 0
        assert created.created_at is not None
        assert (await promo_service.get_promo_code(admin, created.id)).code == "NEW10"
        for_course = await promo_service.get_promo_codes_for_course(admin, "c9")
        assert [p.code for p in for_course] == ["NEW10"]

    async def test_duplicate_code_is_rejected(self, promo_service, admin):
        data = PromoCodeCreate(code="SPRING20", discount_type="fixed", discount_value=Decimal("1"))
        with pytest.raises(InvalidStateError, match="already exists"):
            await promo_service.create_promo_code(admin, data)

    async def test_update_is_revalidated_against_stored_record(self, promo_service, admin):
        # The stored code is a percentage, so 120 is invalid even without a type change
        with pytest.raises(InvalidStateError):
            await promo_service.update_promo_code(
                admin, "promo-1", PromoCodeUpdate(discount_value=Decimal("120"))
            )

    async def test_update_cannot_lower_cap_below_usage(self, admin):
        service = service_with(make_promo(max_uses=10, used_count=5))
        with pytest.raises(InvalidStateError):
            await service.update_promo_code(admin, "promo-1", PromoCodeUpdate(max_uses=4))

    async def test_update_applies_changes(self, promo_service, admin):
        updated = await promo_service.update_promo_code(
            admin, "promo-1", PromoCodeUpdate(discount_value=Decimal("25"))
        )
        assert updated.discount_value == Decimal("25")
        assert updated.code == "SPRING20"

    async def test_deactivate_then_validate(self, promo_service, admin):
        promo = await promo_service.deactivate_promo_code(admin, "promo-1")
        assert not promo.is_active
        assert await promo_service.get_all_active_promo_codes(admin) == []

        with pytest.raises(InvalidStateError):
            await promo_service.validate_promo_code("SPRING20", Decimal("10"))

    async def test_delete(self, promo_service, admin):
        await promo_service.delete_promo_code(admin, "promo-1")
        with pytest.raises(NotFoundError):
            await promo_service.get_promo_code(admin, "promo-1")
        with pytest.raises(NotFoundError):
            await promo_service.delete_promo_code(admin, "promo-1")
