import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, status

from app.models.promo_codes import (
    PromoCode,
    PromoCodeCreate,
    PromoCodeUpdate,
    PromoValidationRequest,
    PromoValidationResult,
)
from app.models.users import User
from app.server.auth import get_current_user
from app.services.permissions import require_admin
from app.services.promotions.service import PromoCodeService, get_promo_code_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create a router for promo code operations
promo_code_router = APIRouter()

PromoService = Annotated[PromoCodeService, Depends(get_promo_code_service)]
CurrentUser = Annotated[User, Depends(get_current_user)]


@promo_code_router.post("/validate", response_model=PromoValidationResult)
async def validate_promo_code(
    request: PromoValidationRequest, service: PromoService
) -> PromoValidationResult:
    """Validate a promo code against a subtotal without consuming a use."""
    return await service.validate_promo_code(
        request.code, request.subtotal, course_id=request.course_id
    )


@promo_code_router.post(
    "", response_model=PromoCode, status_code=status.HTTP_201_CREATED
)
async def create_promo_code(
    data: PromoCodeCreate, current_user: CurrentUser, service: PromoService
) -> PromoCode:
    """Create a promo code (admin)."""
    promo = await service.create_promo_code(current_user, data)
    logger.info(f"Promo code {promo.code} created by {current_user.uid}")
    return promo


@promo_code_router.get("/active", response_model=List[PromoCode])
async def get_active_promo_codes(
    current_user: CurrentUser, service: PromoService
) -> List[PromoCode]:
    return await service.get_all_active_promo_codes(current_user)


@promo_code_router.get("", response_model=List[PromoCode])
async def get_promo_codes(
    current_user: CurrentUser,
    service: PromoService,
    course_id: Optional[str] = None,
) -> List[PromoCode]:
    """List promo codes (admin), optionally only the active ones for a course."""
    if course_id:
        return await service.get_promo_codes_for_course(current_user, course_id)
    return await service.get_all_promo_codes(current_user)


@promo_code_router.get("/{promo_code_id}", response_model=PromoCode)
async def get_promo_code(
    promo_code_id: str, current_user: CurrentUser, service: PromoService
) -> PromoCode:
    return await service.get_promo_code(current_user, promo_code_id)


@promo_code_router.patch("/{promo_code_id}", response_model=PromoCode)
async def update_promo_code(
    promo_code_id: str,
    data: PromoCodeUpdate,
    current_user: CurrentUser,
    service: PromoService,
) -> PromoCode:
    promo = await service.update_promo_code(current_user, promo_code_id, data)
    logger.info(f"Promo code {promo_code_id} updated by {current_user.uid}")
    return promo


@promo_code_router.post("/{promo_code_id}/deactivate", response_model=PromoCode)
async def deactivate_promo_code(
    promo_code_id: str, current_user: CurrentUser, service: PromoService
) -> PromoCode:
    promo = await service.deactivate_promo_code(current_user, promo_code_id)
    logger.info(f"Promo code {promo_code_id} deactivated by {current_user.uid}")
    return promo


@promo_code_router.post("/{promo_code_id}/apply", response_model=PromoCode)
async def apply_promo_code(
    promo_code_id: str, current_user: CurrentUser, service: PromoService
) -> PromoCode:
    """Count one redemption by hand, for manual reconciliation (admin)."""
    require_admin(current_user, "apply promo codes manually")
    promo = await service.apply_promo_code(promo_code_id)
    logger.info(f"Promo code {promo_code_id} manually applied by {current_user.uid}")
    return promo


@promo_code_router.delete("/{promo_code_id}")
async def delete_promo_code(
    promo_code_id: str, current_user: CurrentUser, service: PromoService
):
    await service.delete_promo_code(current_user, promo_code_id)
    logger.info(f"Promo code {promo_code_id} deleted by {current_user.uid}")
    return {"message": "success"}
