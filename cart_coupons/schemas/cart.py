# cart_coupons/schemas/cart.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from cart_coupons.domain.enums import DiscountType


class CartItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(default=1, gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., gt=0)


class ApplyCouponRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1, max_length=50)


class CartItemRead(BaseModel):
    id: UUID
    product_id: UUID
    product_name: str
    product_price: float
    quantity: int
    line_total: float


class AppliedCouponRead(BaseModel):
    id: UUID
    code: str
    name: str
    discount_type: DiscountType
    discount_value: float
    is_auto_applied: bool


class CartSummary(BaseModel):
    total_before_discount: float
    discount_amount: float
    final_payable: float
    total_item_count: int
    discount_percentage_display: Optional[str] = None


class CartRead(BaseModel):
    id: UUID
    customer_id: str
    items: List[CartItemRead] = Field(default_factory=list)
    applied_coupon: Optional[AppliedCouponRead] = None
    summary: CartSummary
    created_at: datetime
    updated_at: datetime
