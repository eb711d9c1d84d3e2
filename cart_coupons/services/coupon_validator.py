"""Pure coupon rule evaluation.

Nothing in this module touches the database: callers fetch usage counts
beforehand and pass them in, which keeps validation safe to run repeatedly
and concurrently without locks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from cart_coupons.domain.enums import CouponValidationCode
from cart_coupons.models.cart import Cart
from cart_coupons.models.coupon import Coupon
from cart_coupons.services.discounts import ZERO, calculate_discount, to_decimal


@dataclass(frozen=True, slots=True)
class CouponValidationResult:
    is_valid: bool
    coupon: Coupon | None = None
    error_code: CouponValidationCode | None = None
    error_message: str | None = None
    calculated_discount: Decimal | None = None
    applicable_subtotal: Decimal | None = None
    # None means the discount applies to the whole cart.
    applicable_product_ids: list[str] | None = field(default=None)

    @classmethod
    def failure(cls, coupon: Coupon | None, code: CouponValidationCode, message: str) -> "CouponValidationResult":
        return cls(is_valid=False, coupon=coupon, error_code=code, error_message=message)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def applicable_subtotal(coupon: Coupon, cart: Cart) -> tuple[Decimal, list[str] | None]:
    """Return the cart value the coupon may discount and the matched product ids."""
    if not coupon.has_allow_list:
        return cart.subtotal, None

    product_ids = {str(pid) for pid in (coupon.applicable_product_ids or [])}
    categories = set(coupon.applicable_categories or [])

    matched: list[str] = []
    total = ZERO
    for item in cart.items:
        product_id = str(item.product_id)
        category = item.product.category if item.product is not None else None
        if product_id in product_ids or (category is not None and category in categories):
            matched.append(product_id)
            total += item.line_total
    return total, matched


def validate_coupon(
    coupon: Coupon,
    cart: Cart,
    customer_id: str,
    now: datetime,
    user_usage_count: int | None = None,
    *,
    check_usage_limits: bool = True,
) -> CouponValidationResult:
    """Run the coupon rules in order and stop at the first failure.

    ``user_usage_count`` is the number of ledger rows for (coupon, customer);
    it is only consulted when the coupon has a per-user limit.
    ``check_usage_limits=False`` skips both usage ceilings, for coupons whose
    redemption on this cart is already in the ledger.
    """
    now = as_utc(now)

    if not coupon.is_active:
        return CouponValidationResult.failure(
            coupon, CouponValidationCode.coupon_inactive, "This coupon is no longer active"
        )

    start_time = as_utc(coupon.start_time)
    if now < start_time:
        return CouponValidationResult.failure(
            coupon,
            CouponValidationCode.coupon_not_started,
            f"This coupon is not yet active. It starts on {start_time.isoformat()}",
        )

    if now > as_utc(coupon.expiry_time):
        return CouponValidationResult.failure(
            coupon, CouponValidationCode.coupon_expired, "This coupon has expired"
        )

    if not cart.items:
        return CouponValidationResult.failure(
            coupon, CouponValidationCode.cart_empty, "Cannot apply coupon to an empty cart"
        )

    item_count = cart.total_item_count
    if item_count < (coupon.min_cart_items or 0):
        return CouponValidationResult.failure(
            coupon,
            CouponValidationCode.min_cart_items_not_met,
            f"Minimum {coupon.min_cart_items} items required. You have {item_count} items",
        )

    subtotal, matched_ids = applicable_subtotal(coupon, cart)

    min_value = to_decimal(coupon.min_cart_value)
    if subtotal < min_value:
        return CouponValidationResult.failure(
            coupon,
            CouponValidationCode.min_cart_value_not_met,
            f"Minimum cart value of ${min_value:.2f} required. Applicable total is ${subtotal:.2f}",
        )

    if matched_ids is not None and not matched_ids:
        return CouponValidationResult.failure(
            coupon,
            CouponValidationCode.no_applicable_products,
            "This coupon does not apply to any products in your cart",
        )

    if check_usage_limits:
        if coupon.max_total_uses is not None and (coupon.current_total_uses or 0) >= coupon.max_total_uses:
            return CouponValidationResult.failure(
                coupon,
                CouponValidationCode.max_total_uses_reached,
                "This coupon has reached its maximum usage limit",
            )

        if coupon.max_uses_per_user is not None:
            used = user_usage_count or 0
            if used >= coupon.max_uses_per_user:
                return CouponValidationResult.failure(
                    coupon,
                    CouponValidationCode.max_user_uses_reached,
                    f"You have already used this coupon {used} time(s). "
                    f"Maximum allowed: {coupon.max_uses_per_user}",
                )

    return CouponValidationResult(
        is_valid=True,
        coupon=coupon,
        calculated_discount=calculate_discount(coupon, subtotal),
        applicable_subtotal=subtotal,
        applicable_product_ids=matched_ids,
    )
