from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.api.deps import customer_id_path, get_coupon_lock_manager
from cart_coupons.db.operations import commit_async
from cart_coupons.db.session_async import get_async_db
from cart_coupons.schemas.cart import ApplyCouponRequest, CartItemCreate, CartItemUpdate, CartRead
from cart_coupons.services import cart_service
from cart_coupons.services.lock_manager import LockManager

router = APIRouter(prefix="/carts", tags=["carts"])


@router.get("/{customer_id}", response_model=CartRead)
async def get_cart(
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.get_cart(db, customer_id)
    await commit_async(db)
    return cart_service.serialize_cart(cart)


@router.post("/{customer_id}/items", response_model=CartRead, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    item: CartItemCreate,
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.add_item(db, customer_id, item)
    await commit_async(db)
    return cart_service.serialize_cart(cart)


@router.put("/{customer_id}/items/{item_id}", response_model=CartRead)
async def update_cart_item(
    item_id: UUID,
    payload: CartItemUpdate,
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.update_item(db, customer_id, item_id, payload)
    await commit_async(db)
    return cart_service.serialize_cart(cart)


@router.delete("/{customer_id}/items/{item_id}", response_model=CartRead)
async def remove_cart_item(
    item_id: UUID,
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.remove_item(db, customer_id, item_id)
    await commit_async(db)
    return cart_service.serialize_cart(cart)


@router.delete("/{customer_id}", response_model=CartRead)
async def clear_cart(
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.clear_cart(db, customer_id)
    await commit_async(db)
    return cart_service.serialize_cart(cart)


@router.post("/{customer_id}/coupons", response_model=CartRead)
async def apply_coupon(
    payload: ApplyCouponRequest,
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
    lock_manager: LockManager = Depends(get_coupon_lock_manager),
):
    # The usage recorder commits the redemption itself while holding the lock.
    cart = await cart_service.apply_coupon(db, customer_id, payload.coupon_code, lock_manager)
    return cart_service.serialize_cart(cart)


@router.delete("/{customer_id}/coupons", response_model=CartRead)
async def remove_coupon(
    customer_id: str = Depends(customer_id_path),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.remove_coupon(db, customer_id)
    await commit_async(db)
    return cart_service.serialize_cart(cart)
