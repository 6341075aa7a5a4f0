"""
Promo Code Data Models

This module contains models related to promotional codes: the persisted
record, admin create/update payloads and the validation result returned
to checkout.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.shared import FirestoreBaseModel, MoneyAmount
from app.utils.dates import as_utc

PROMO_CODES_COLLECTION = "promo_codes"


class DiscountType(str, Enum):
    """Discount type enumeration."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


def _check_percentage(discount_type, discount_value) -> None:
    if discount_type == DiscountType.PERCENTAGE and discount_value is not None:
        if discount_value > 100:
            raise ValueError("percentage discount_value must be between 0 and 100")


def _check_window(valid_from, valid_until) -> None:
    if valid_from and valid_until and as_utc(valid_from) > as_utc(valid_until):
        raise ValueError("valid_from must be before valid_until")


class BasePromoCode(BaseModel):
    """Base promo code model shared between Firestore and API."""

    code: str = Field(..., min_length=1, description="Redeemable code, matched exactly")
    discount_type: DiscountType = Field(..., description="Percentage or fixed amount")
    discount_value: MoneyAmount = Field(
        ..., ge=0, description="Percentage points or a major-unit amount"
    )
    is_active: bool = Field(True, description="Whether the code can be redeemed")
    valid_from: Optional[datetime] = Field(None, description="Start of redemption window")
    valid_until: Optional[datetime] = Field(None, description="End of redemption window")
    max_uses: Optional[int] = Field(None, ge=1, description="Usage cap, None = unlimited")
    used_count: int = Field(0, ge=0, description="Completed redemptions")
    min_purchase_amount: MoneyAmount = Field(
        Decimal("0"), ge=0, description="Minimum subtotal for eligibility"
    )
    applicable_courses: List[str] = Field(
        default_factory=list, description="Eligible course IDs, empty = all courses"
    )

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        return value.strip()


class PromoCode(BasePromoCode, FirestoreBaseModel):
    """Promo code document model for the promo_codes collection."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(None, description="Firestore document ID")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @model_validator(mode="after")
    def check_usage_cap(self) -> "PromoCode":
        if self.max_uses is not None and self.used_count > self.max_uses:
            raise ValueError("used_count cannot exceed max_uses")
        return self


class PromoCodeCreate(BasePromoCode):
    """Admin payload for creating a promo code."""

    model_config = ConfigDict(extra="forbid")

    used_count: int = Field(0, ge=0, le=0, description="Always starts at 0")

    @model_validator(mode="after")
    def check_rules(self) -> "PromoCodeCreate":
        _check_percentage(self.discount_type, self.discount_value)
        _check_window(self.valid_from, self.valid_until)
        return self


class PromoCodeUpdate(BaseModel):
    """Admin payload for updating a promo code. The code itself is immutable."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    discount_type: Optional[DiscountType] = None
    discount_value: Optional[MoneyAmount] = Field(None, ge=0)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)
    min_purchase_amount: Optional[MoneyAmount] = Field(None, ge=0)
    applicable_courses: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_rules(self) -> "PromoCodeUpdate":
        _check_percentage(self.discount_type, self.discount_value)
        _check_window(self.valid_from, self.valid_until)
        return self

    def changes(self) -> dict:
        """Fields explicitly set by the caller, ready for a Firestore update."""
        return self.model_dump(exclude_unset=True, mode="python")


class PromoValidationRequest(BaseModel):
    """Request model for the public promo validation endpoint."""

    code: str
    subtotal: MoneyAmount = Field(..., ge=0)
    course_id: Optional[str] = None


class PromoValidationResult(BaseModel):
    """Result of a successful promo code validation."""

    valid: bool = True
    code: str
    discount_type: DiscountType
    discount_value: MoneyAmount
    discount: MoneyAmount
    promo_code_id: str
