"""In-memory (transient) ORM objects for the pure engine tests."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from cart_coupons.domain.enums import CouponType, DiscountType
from cart_coupons.models.cart import Cart, CartItem
from cart_coupons.models.coupon import Coupon
from cart_coupons.models.product import Product

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def product(price="49.99", category="electronics", **kwargs) -> Product:
    return Product(
        id=kwargs.pop("id", uuid.uuid4()),
        name=kwargs.pop("name", "Test product"),
        price=Decimal(str(price)),
        category=category,
        stock=kwargs.pop("stock", 100),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )


def cart(*lines, customer_id="customer-1") -> Cart:
    """``lines`` are (product, quantity) pairs."""
    items = [
        CartItem(id=uuid.uuid4(), product=p, product_id=p.id, quantity=quantity)
        for p, quantity in lines
    ]
    return Cart(id=uuid.uuid4(), customer_id=customer_id, items=items, is_coupon_auto_applied=False)


def coupon(code="SAVE10", **overrides) -> Coupon:
    values = {
        "id": uuid.uuid4(),
        "code": code,
        "name": f"{code} coupon",
        "coupon_type": CouponType.general,
        "discount_type": DiscountType.percentage,
        "discount_value": Decimal("10"),
        "max_discount_amount": None,
        "start_time": NOW - timedelta(days=1),
        "expiry_time": NOW + timedelta(days=30),
        "min_cart_items": 0,
        "min_cart_value": Decimal("0"),
        "applicable_product_ids": None,
        "applicable_categories": None,
        "max_total_uses": None,
        "current_total_uses": 0,
        "max_uses_per_user": None,
        "priority": 0,
        "is_active": True,
    }
    for key, value in overrides.items():
        if key in {"discount_value", "max_discount_amount", "min_cart_value"} and value is not None:
            value = Decimal(str(value))
        values[key] = value
    return Coupon(**values)


def auto_coupon(code, **overrides) -> Coupon:
    return coupon(code, coupon_type=CouponType.auto_applied, **overrides)
