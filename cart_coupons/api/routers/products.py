from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.core.config import settings
from cart_coupons.db.operations import commit_async
from cart_coupons.db.session_async import get_async_db
from cart_coupons.schemas.product import PaginatedProducts, ProductCreate, ProductRead
from cart_coupons.services import product_service

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, db: AsyncSession = Depends(get_async_db)):
    product = await product_service.create_product(db, payload)
    await commit_async(db)
    return product


@router.get("", response_model=PaginatedProducts)
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_async_db),
):
    items, total = await product_service.list_products(db, page=page, limit=limit)
    return {"total": total, "page": page, "limit": limit, "items": items}


@router.get("/{product_id}", response_model=ProductRead)
async def get_product(product_id: UUID, db: AsyncSession = Depends(get_async_db)):
    return await product_service.get_product(db, product_id)
