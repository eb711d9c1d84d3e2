from decimal import Decimal

from cart_coupons.domain.enums import DiscountType
from cart_coupons.services.discounts import calculate_discount, discount_percentage_display, round_money

from builders import coupon


def test_percentage_rounds_half_up_to_the_cent():
    # 15% of 99.99 = 14.9985
    assert calculate_discount(coupon(discount_value=15), Decimal("99.99")) == Decimal("15.00")


def test_percentage_is_capped_by_max_discount_amount():
    capped = coupon(discount_value=50, max_discount_amount=30)
    discount = calculate_discount(capped, Decimal("199.98"))
    assert discount == Decimal("30.00")
    assert Decimal("199.98") - discount == Decimal("169.98")


def test_percentage_without_cap():
    assert calculate_discount(coupon(discount_value=50), Decimal("199.98")) == Decimal("99.99")


def test_fixed_discount_is_clamped_to_subtotal():
    fixed = coupon(discount_type=DiscountType.fixed, discount_value=20)
    assert calculate_discount(fixed, Decimal("149.98")) == Decimal("20.00")
    assert calculate_discount(fixed, Decimal("12.50")) == Decimal("12.50")


def test_discount_never_exceeds_subtotal_or_goes_negative():
    full = coupon(discount_value=100)
    assert calculate_discount(full, Decimal("10.01")) == Decimal("10.01")
    assert calculate_discount(full, Decimal("0")) == Decimal("0.00")


def test_round_money_and_percentage_display():
    assert round_money(Decimal("0.005")) == Decimal("0.01")
    assert discount_percentage_display(Decimal("30.00"), Decimal("199.98")) == "15.0%"
    assert discount_percentage_display(Decimal("0"), Decimal("100")) is None
