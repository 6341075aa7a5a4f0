"""
Promo Code Rules

Pure functions over an immutable PromoCode record: redemption-window and
usage checks, course eligibility and discount math.
"""

from datetime import datetime
from typing import Optional

from app.models.promo_codes import DiscountType, PromoCode
from app.services.errors import BelowMinimumError, InvalidStateError
from app.utils.dates import as_utc, utcnow
from app.utils.money import Money, D, round_money


def is_valid(promo: PromoCode, now: Optional[datetime] = None) -> bool:
    """
    Check whether a promo code can be redeemed at the given time.

    Args:
        promo: The promo code record
        now: Evaluation time, defaults to the current UTC time

    Returns:
        False if inactive, outside its window or out of uses, True otherwise
    """
    if not promo.is_active:
        return False

    now = as_utc(now) if now else utcnow()
    if promo.valid_from and now < as_utc(promo.valid_from):
        return False
    if promo.valid_until and now > as_utc(promo.valid_until):
        return False

    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return False

    return True


def can_apply_to_course(promo: PromoCode, course_id: str) -> bool:
    if not promo.applicable_courses:
        return True  # Applies to all
    return course_id in promo.applicable_courses


def calculate_discount(promo: PromoCode, subtotal) -> Money:
    """
    Compute the discount a promo code grants on a subtotal.

    Args:
        promo: The promo code record
        subtotal: Cart subtotal in home-currency major units

    Returns:
        Discount in major units, never larger than the subtotal

    Raises:
        BelowMinimumError: If the subtotal is below the minimum purchase amount
        InvalidStateError: If the discount type is not supported
    """
    subtotal = D(subtotal)
    if subtotal < promo.min_purchase_amount:
        raise BelowMinimumError(
            f"Minimum purchase amount is {promo.min_purchase_amount}"
        )

    if promo.discount_type == DiscountType.PERCENTAGE:
        return round_money(subtotal * promo.discount_value / 100)
    elif promo.discount_type == DiscountType.FIXED:
        return min(D(promo.discount_value), subtotal)

    raise InvalidStateError(f"Unsupported discount type: {promo.discount_type}")


def increment_usage(promo: PromoCode, now: Optional[datetime] = None) -> PromoCode:
    """Return a copy with one more redemption. The usage cap is not checked here."""
    return promo.model_copy(
        update={"used_count": promo.used_count + 1, "updated_at": now or utcnow()}
    )
