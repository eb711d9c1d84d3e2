# cart_coupons/schemas/coupon.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cart_coupons.domain.enums import CouponType, CouponValidationCode, DiscountType


class _CouponRules(BaseModel):
    @field_validator("code", mode="before", check_fields=False)
    @classmethod
    def normalize_code(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.percentage and self.discount_value is not None and self.discount_value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        return self


class CouponCreate(_CouponRules):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    coupon_type: CouponType = CouponType.general
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    max_discount_amount: Optional[float] = Field(default=None, gt=0)
    start_time: datetime
    expiry_time: datetime
    min_cart_items: int = Field(default=0, ge=0)
    min_cart_value: float = Field(default=0, ge=0)
    applicable_product_ids: Optional[list[UUID]] = None
    applicable_categories: Optional[list[str]] = None
    max_total_uses: Optional[int] = Field(default=None, gt=0)
    max_uses_per_user: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True
    priority: int = Field(default=0, ge=0)


class CouponUpdate(_CouponRules):
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    coupon_type: Optional[CouponType] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(default=None, gt=0)
    max_discount_amount: Optional[float] = Field(default=None, gt=0)
    start_time: Optional[datetime] = None
    expiry_time: Optional[datetime] = None
    min_cart_items: Optional[int] = Field(default=None, ge=0)
    min_cart_value: Optional[float] = Field(default=None, ge=0)
    applicable_product_ids: Optional[list[UUID]] = None
    applicable_categories: Optional[list[str]] = None
    max_total_uses: Optional[int] = Field(default=None, gt=0)
    max_uses_per_user: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    priority: Optional[int] = Field(default=None, ge=0)


class CouponRead(BaseModel):
    id: UUID
    code: str
    name: str
    description: Optional[str]
    coupon_type: CouponType
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: Optional[float]
    start_time: datetime
    expiry_time: datetime
    min_cart_items: int
    min_cart_value: float
    applicable_product_ids: Optional[list[str]]
    applicable_categories: Optional[list[str]]
    max_total_uses: Optional[int]
    current_total_uses: int
    max_uses_per_user: Optional[int]
    is_active: bool
    priority: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int


class CouponPage(BaseModel):
    coupons: list[CouponRead]
    meta: PageMeta


class CouponSummary(BaseModel):
    id: UUID
    code: str
    name: str
    coupon_type: CouponType
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: Optional[float]

    model_config = ConfigDict(from_attributes=True)


class CouponValidateRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1, max_length=50)
    customer_id: str = Field(..., min_length=1, max_length=255)


class CouponValidationRead(BaseModel):
    is_valid: bool
    error_code: Optional[CouponValidationCode] = None
    error_message: Optional[str] = None
    coupon: Optional[CouponSummary] = None
    calculated_discount: Optional[float] = None
    applicable_product_ids: Optional[list[str]] = None
