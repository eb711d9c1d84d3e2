# cart_coupons/domain/enums.py
import enum


class CouponType(str, enum.Enum):
    general = "GENERAL"
    auto_applied = "AUTO_APPLIED"


class DiscountType(str, enum.Enum):
    fixed = "FIXED"
    percentage = "PERCENTAGE"


class CouponValidationCode(str, enum.Enum):
    coupon_not_found = "COUPON_NOT_FOUND"
    coupon_inactive = "COUPON_INACTIVE"
    coupon_not_started = "COUPON_NOT_STARTED"
    coupon_expired = "COUPON_EXPIRED"
    cart_empty = "CART_EMPTY"
    min_cart_items_not_met = "MIN_CART_ITEMS_NOT_MET"
    min_cart_value_not_met = "MIN_CART_VALUE_NOT_MET"
    no_applicable_products = "NO_APPLICABLE_PRODUCTS"
    max_total_uses_reached = "MAX_TOTAL_USES_REACHED"
    max_user_uses_reached = "MAX_USER_USES_REACHED"
