from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cart_coupons.core.logging import get_logger
from cart_coupons.core.metrics import record_coupon_application
from cart_coupons.db.operations import rollback_async
from cart_coupons.domain.enums import CouponValidationCode
from cart_coupons.models.cart import Cart, CartItem
from cart_coupons.models.coupon import Coupon
from cart_coupons.schemas.cart import (
    AppliedCouponRead,
    CartItemCreate,
    CartItemRead,
    CartItemUpdate,
    CartRead,
    CartSummary,
)
from cart_coupons.services import coupon_service
from cart_coupons.services.coupon_validator import utcnow, validate_coupon
from cart_coupons.services.discounts import ZERO, discount_percentage_display, round_money
from cart_coupons.services.exceptions import (
    ConflictError,
    CouponValidationFailed,
    InsufficientStockError,
    InvalidQuantityError,
    LockContentionError,
    ProductUnavailableError,
    ResourceNotFoundError,
    ServiceError,
)
from cart_coupons.services.lock_manager import LockManager
from cart_coupons.services.product_service import get_product

logger = get_logger(__name__)

_CART_LOAD = (
    selectinload(Cart.items).selectinload(CartItem.product),
    selectinload(Cart.applied_coupon),
)


# --- Loading ---

async def find_active_cart(db: AsyncSession, customer_id: str) -> Cart | None:
    stmt = (
        select(Cart)
        .options(*_CART_LOAD)
        .where(Cart.customer_id == customer_id, Cart.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    return await db.scalar(stmt)


async def _reload(db: AsyncSession, cart: Cart) -> Cart:
    # Pending changes must be flushed first; populate_existing overwrites them.
    await db.flush()
    stmt = (
        select(Cart)
        .options(*_CART_LOAD)
        .where(Cart.id == cart.id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()


async def get_or_create_cart(db: AsyncSession, customer_id: str) -> Cart:
    cart = await find_active_cart(db, customer_id)
    if cart:
        return cart

    cart = Cart(customer_id=customer_id, is_active=True)
    db.add(cart)
    try:
        await db.flush()
    except IntegrityError:
        # Another request created the active cart first.
        await rollback_async(db)
        cart = await find_active_cart(db, customer_id)
        if cart is None:
            raise
        return cart
    return await _reload(db, cart)


# --- Coupon slot ---

def _set_coupon_slot(cart: Cart, coupon: Coupon | None, *, auto: bool = False) -> None:
    cart.applied_coupon = coupon
    cart.applied_coupon_id = coupon.id if coupon is not None else None
    cart.is_coupon_auto_applied = auto if coupon is not None else False


async def _apply_best_auto_coupon(db: AsyncSession, cart: Cart, now: datetime) -> Coupon | None:
    best = await coupon_service.resolve_best_auto_coupon(db, cart, cart.customer_id, now)
    if best is None:
        if cart.applied_coupon_id is not None and cart.is_coupon_auto_applied:
            logger.info(
                "coupon_auto_cleared",
                extra={"cart_id": str(cart.id), "coupon_id": str(cart.applied_coupon_id)},
            )
            _set_coupon_slot(cart, None)
        return None

    if cart.applied_coupon_id != best.coupon.id or not cart.is_coupon_auto_applied:
        _set_coupon_slot(cart, best.coupon, auto=True)
        logger.info(
            "coupon_auto_applied",
            extra={
                "cart_id": str(cart.id),
                "coupon_code": best.coupon.code,
                "discount": str(best.discount),
            },
        )
    return best.coupon


async def reconcile_coupon(db: AsyncSession, cart: Cart, now: datetime | None = None) -> None:
    """Re-derive the cart's coupon slot from the current cart contents.

    A manual coupon stays until it stops validating; otherwise the best
    auto-applied coupon (if any) takes the slot. Never writes the usage ledger.
    """
    now = now or utcnow()
    coupon = cart.applied_coupon if cart.applied_coupon_id is not None else None

    if cart.applied_coupon_id is not None and coupon is None:
        _set_coupon_slot(cart, None)

    if coupon is not None and not cart.is_coupon_auto_applied:
        # The manual redemption is already in the ledger; usage ceilings do not apply again.
        result = validate_coupon(coupon, cart, cart.customer_id, now, check_usage_limits=False)
        if result.is_valid:
            return
        logger.info(
            "coupon_invalidated",
            extra={
                "cart_id": str(cart.id),
                "coupon_code": coupon.code,
                "reason": result.error_code.value if result.error_code else None,
            },
        )
        _set_coupon_slot(cart, None)

    await _apply_best_auto_coupon(db, cart, now)


async def _reconciled(db: AsyncSession, cart: Cart) -> Cart:
    cart = await _reload(db, cart)
    await reconcile_coupon(db, cart)
    return await _reload(db, cart)


# --- Cart operations ---

async def get_cart(db: AsyncSession, customer_id: str) -> Cart:
    cart = await get_or_create_cart(db, customer_id)
    return await _reconciled(db, cart)


def _get_item(cart: Cart, item_id: uuid.UUID) -> CartItem:
    for item in cart.items:
        if item.id == item_id:
            return item
    raise ResourceNotFoundError("Cart item not found")


async def add_item(db: AsyncSession, customer_id: str, payload: CartItemCreate) -> Cart:
    if payload.quantity < 1:
        raise InvalidQuantityError("Quantity must be at least 1")

    product = await get_product(db, payload.product_id)
    if not product.is_active:
        raise ProductUnavailableError("Product is not available")

    cart = await get_or_create_cart(db, customer_id)
    existing = next((item for item in cart.items if item.product_id == product.id), None)
    quantity = payload.quantity + (existing.quantity if existing else 0)
    if quantity > product.stock:
        raise InsufficientStockError(f"Insufficient stock. Available: {product.stock}")

    if existing:
        existing.quantity = quantity
    else:
        db.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity))

    return await _reconciled(db, cart)


async def update_item(db: AsyncSession, customer_id: str, item_id: uuid.UUID, payload: CartItemUpdate) -> Cart:
    if payload.quantity < 1:
        raise InvalidQuantityError("Quantity must be at least 1")

    cart = await get_or_create_cart(db, customer_id)
    item = _get_item(cart, item_id)
    product = item.product
    if payload.quantity > product.stock:
        raise InsufficientStockError(f"Insufficient stock. Available: {product.stock}")

    item.quantity = payload.quantity
    return await _reconciled(db, cart)


async def remove_item(db: AsyncSession, customer_id: str, item_id: uuid.UUID) -> Cart:
    cart = await get_or_create_cart(db, customer_id)
    item = _get_item(cart, item_id)
    cart.items.remove(item)
    return await _reconciled(db, cart)


async def clear_cart(db: AsyncSession, customer_id: str) -> Cart:
    cart = await get_or_create_cart(db, customer_id)
    cart.items.clear()
    _set_coupon_slot(cart, None)
    return await _reload(db, cart)


async def apply_coupon(db: AsyncSession, customer_id: str, code: str, lock_manager: LockManager) -> Cart:
    """Validate ``code`` against the cart and redeem it under the usage lock.

    The cart slot change and the ledger row are committed together by the
    usage recorder; any failure leaves both untouched.
    """
    cart = await get_or_create_cart(db, customer_id)
    if not cart.items:
        record_coupon_application("rejected")
        raise CouponValidationFailed(CouponValidationCode.cart_empty, "Cannot apply coupon to an empty cart")

    coupon = await coupon_service.get_coupon_by_code(db, code)
    if coupon is None:
        record_coupon_application("rejected")
        raise CouponValidationFailed(
            CouponValidationCode.coupon_not_found,
            f'Coupon "{coupon_service.normalize_code(code)}" not found',
        )

    if cart.applied_coupon_id == coupon.id and not cart.is_coupon_auto_applied:
        raise ConflictError(f'Coupon "{coupon.code}" is already applied to this cart')

    usage_count = await coupon_service.user_usage_for(db, coupon, customer_id)
    result = validate_coupon(coupon, cart, customer_id, utcnow(), usage_count)
    if not result.is_valid:
        record_coupon_application("rejected")
        raise CouponValidationFailed(result.error_code, result.error_message or "Invalid coupon")

    discount = result.calculated_discount or ZERO
    cart_total = cart.subtotal
    cart_id = cart.id
    _set_coupon_slot(cart, coupon, auto=False)

    try:
        await coupon_service.record_coupon_usage(
            db,
            lock_manager=lock_manager,
            coupon_id=coupon.id,
            customer_id=customer_id,
            cart_id=cart_id,
            discount=discount,
            cart_total=cart_total,
        )
    except LockContentionError:
        record_coupon_application("lock_busy")
        raise
    except CouponValidationFailed:
        record_coupon_application("rejected")
        raise

    record_coupon_application("applied")
    return await _reload(db, cart)


async def remove_coupon(db: AsyncSession, customer_id: str) -> Cart:
    cart = await get_or_create_cart(db, customer_id)
    if cart.applied_coupon_id is None:
        raise ServiceError("No coupon applied to this cart")

    _set_coupon_slot(cart, None)
    await _apply_best_auto_coupon(db, cart, utcnow())
    return await _reload(db, cart)


# --- Presentation ---

def _summary_discount(cart: Cart):
    coupon = cart.applied_coupon if cart.applied_coupon_id is not None else None
    if coupon is None or not cart.items:
        return ZERO
    # Ceilings were enforced when the coupon took the slot.
    result = validate_coupon(coupon, cart, cart.customer_id, utcnow(), check_usage_limits=False)
    if not result.is_valid:
        return ZERO
    return result.calculated_discount or ZERO


def serialize_cart(cart: Cart) -> CartRead:
    total = round_money(cart.subtotal)
    discount = min(_summary_discount(cart), total)
    coupon = cart.applied_coupon if cart.applied_coupon_id is not None else None

    items = [
        CartItemRead(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product.name,
            product_price=float(item.product.price),
            quantity=item.quantity,
            line_total=float(round_money(item.line_total)),
        )
        for item in cart.items
    ]
    applied = None
    if coupon is not None:
        applied = AppliedCouponRead(
            id=coupon.id,
            code=coupon.code,
            name=coupon.name,
            discount_type=coupon.discount_type,
            discount_value=float(coupon.discount_value),
            is_auto_applied=cart.is_coupon_auto_applied,
        )

    return CartRead(
        id=cart.id,
        customer_id=cart.customer_id,
        items=items,
        applied_coupon=applied,
        summary=CartSummary(
            total_before_discount=float(total),
            discount_amount=float(discount),
            final_payable=float(round_money(total - discount)),
            total_item_count=cart.total_item_count,
            discount_percentage_display=discount_percentage_display(discount, total),
        ),
        created_at=cart.created_at,
        updated_at=cart.updated_at,
    )
