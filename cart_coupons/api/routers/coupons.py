from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.core.config import settings
from cart_coupons.db.operations import commit_async
from cart_coupons.db.session_async import get_async_db
from cart_coupons.models.cart import Cart
from cart_coupons.schemas.coupon import (
    CouponCreate,
    CouponPage,
    CouponRead,
    CouponSummary,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidationRead,
    PageMeta,
)
from cart_coupons.services import cart_service, coupon_service
from cart_coupons.services.exceptions import ResourceNotFoundError

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    db: AsyncSession = Depends(get_async_db),
):
    coupon = await coupon_service.create_coupon(db, payload)
    await commit_async(db)
    return coupon


@router.get("", response_model=CouponPage)
async def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_async_db),
):
    coupons, total = await coupon_service.list_coupons(db, page=page, limit=limit)
    return CouponPage(
        coupons=[CouponRead.model_validate(coupon) for coupon in coupons],
        meta=PageMeta(page=page, limit=limit, total=total),
    )


@router.get("/active", response_model=list[CouponRead])
async def list_active_coupons(db: AsyncSession = Depends(get_async_db)):
    return await coupon_service.list_active_coupons(db)


@router.get("/code/{code}", response_model=CouponRead)
async def get_coupon_by_code(code: str, db: AsyncSession = Depends(get_async_db)):
    coupon = await coupon_service.get_coupon_by_code(db, code)
    if coupon is None:
        raise ResourceNotFoundError(f'Coupon with code "{coupon_service.normalize_code(code)}" not found')
    return coupon


@router.post("/validate", response_model=CouponValidationRead)
async def validate_coupon(
    payload: CouponValidateRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Advisory check of a code against the customer's active cart; records nothing."""
    customer_id = payload.customer_id.strip()
    cart = await cart_service.find_active_cart(db, customer_id)
    if cart is None:
        # Not persisted; an empty cart simply fails the CART_EMPTY rule.
        cart = Cart(customer_id=customer_id, items=[])
    result = await coupon_service.validate_coupon_code(db, payload.coupon_code, cart, customer_id)
    return CouponValidationRead(
        is_valid=result.is_valid,
        error_code=result.error_code,
        error_message=result.error_message,
        coupon=CouponSummary.model_validate(result.coupon) if result.coupon is not None else None,
        calculated_discount=float(result.calculated_discount) if result.calculated_discount is not None else None,
        applicable_product_ids=result.applicable_product_ids,
    )


@router.get("/{coupon_id}", response_model=CouponRead)
async def get_coupon(coupon_id: UUID, db: AsyncSession = Depends(get_async_db)):
    return await coupon_service.get_coupon(db, coupon_id)


@router.patch("/{coupon_id}", response_model=CouponRead)
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    db: AsyncSession = Depends(get_async_db),
):
    coupon = await coupon_service.update_coupon(db, coupon_id, payload)
    await commit_async(db)
    return coupon


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coupon(coupon_id: UUID, db: AsyncSession = Depends(get_async_db)):
    await coupon_service.delete_coupon(db, coupon_id)
    await commit_async(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
