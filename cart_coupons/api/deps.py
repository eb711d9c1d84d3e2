from fastapi import Path

from cart_coupons.services.lock_manager import LockManager, get_lock_manager


def get_coupon_lock_manager() -> LockManager:
    """Process-wide lock manager; tests override this dependency."""
    return get_lock_manager()


def customer_id_path(
    customer_id: str = Path(..., min_length=1, max_length=255, description="Customer identifier"),
) -> str:
    return customer_id.strip()
