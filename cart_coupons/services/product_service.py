from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.db.operations import flush_async, refresh_async
from cart_coupons.models.product import Product
from cart_coupons.schemas.product import ProductCreate
from cart_coupons.services.exceptions import ConflictError, ResourceNotFoundError


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    """Catalog lookup used by the cart; raises when the product does not exist."""
    product = await db.get(Product, product_id)
    if not product:
        raise ResourceNotFoundError(f'Product with ID "{product_id}" not found')
    return product


async def create_product(db: AsyncSession, payload: ProductCreate) -> Product:
    if payload.sku:
        existing = await db.scalar(select(Product.id).where(Product.sku == payload.sku))
        if existing:
            raise ConflictError(f'Product with SKU "{payload.sku}" already exists')

    product = Product(
        name=payload.name,
        description=payload.description,
        price=Decimal(str(payload.price)),
        sku=payload.sku,
        category=payload.category,
        stock=payload.stock,
        is_active=payload.is_active,
        image_url=payload.image_url,
    )
    db.add(product)
    await flush_async(db, product)
    await refresh_async(db, product)
    return product


async def list_products(db: AsyncSession, *, page: int, limit: int) -> tuple[list[Product], int]:
    base = select(Product).where(Product.is_active.is_(True))
    total = await db.scalar(select(func.count()).select_from(base.subquery()))
    result = await db.execute(
        base.order_by(Product.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)
