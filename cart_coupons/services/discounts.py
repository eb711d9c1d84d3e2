from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from cart_coupons.domain.enums import DiscountType
from cart_coupons.models.coupon import Coupon

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    """Round half-up to the cent (15% of 99.99 -> 15.00)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount(coupon: Coupon, applicable_subtotal) -> Decimal:
    """Discount for ``coupon`` over the portion of the cart it applies to.

    FIXED takes the face value, PERCENTAGE takes the share capped at
    ``max_discount_amount``. Either way the result never exceeds the
    applicable subtotal, so the payable total stays non-negative.
    """
    subtotal = max(to_decimal(applicable_subtotal), ZERO)
    value = to_decimal(coupon.discount_value)

    if coupon.discount_type == DiscountType.fixed:
        discount = min(value, subtotal)
    else:
        discount = subtotal * value / Decimal("100")
        if coupon.max_discount_amount is not None:
            discount = min(discount, to_decimal(coupon.max_discount_amount))

    discount = min(discount, subtotal)
    return round_money(discount)


def discount_percentage_display(discount: Decimal, total: Decimal) -> str | None:
    if total <= ZERO or discount <= ZERO:
        return None
    percentage = (discount / total * Decimal("100")).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{percentage}%"
