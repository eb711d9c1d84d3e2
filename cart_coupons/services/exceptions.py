# cart_coupons/services/exceptions.py
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cart_coupons.domain.enums import CouponValidationCode


class ServiceError(Exception):
    """Base class for service-layer errors."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class InvalidQuantityError(ServiceError):
    """Raised when a quantity is not a positive integer."""


class InsufficientStockError(ServiceError):
    """Raised when the requested quantity exceeds available stock."""


class ProductUnavailableError(ServiceError):
    """Raised when an inactive product is added to a cart."""


class DomainValidationError(ServiceError):
    """Invalid domain input."""


class ResourceNotFoundError(ServiceError):
    """Resource not found."""


class ConflictError(ServiceError):
    """State conflict for the requested operation."""


class CouponValidationFailed(ServiceError):
    """A coupon rule rejected the cart, either advisory or at commit time."""

    def __init__(self, code: "CouponValidationCode", detail: str):
        self.code = code
        super().__init__(detail)


class LockContentionError(ConflictError):
    """The coupon usage lock is held elsewhere; the caller may retry."""

    code = "COUPON_LOCK_BUSY"

    def __init__(self, detail: str = "Unable to apply coupon at this time. Please try again.", retry_after: int = 1):
        self.retry_after = retry_after
        super().__init__(detail)


class LockExpiredError(LockContentionError):
    """The lease ran out before the critical section could commit."""

    code = "COUPON_LOCK_EXPIRED"
