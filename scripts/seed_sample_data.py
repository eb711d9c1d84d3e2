"""Seed the sample catalog and coupons used for local development and demos."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import select

from cart_coupons.core.config import settings
from cart_coupons.db.session_async import AsyncSessionLocal
from cart_coupons.domain.enums import CouponType, DiscountType
from cart_coupons.models.product import Product
from cart_coupons.schemas.coupon import CouponCreate
from cart_coupons.schemas.product import ProductCreate
from cart_coupons.services import coupon_service, product_service


@dataclass(frozen=True, slots=True)
class ProductSeed:
    name: str
    description: str
    price: float
    sku: str
    category: str
    stock: int


@dataclass(frozen=True, slots=True)
class CouponSeed:
    code: str
    name: str
    description: str
    coupon_type: CouponType
    discount_type: DiscountType
    discount_value: float
    # Window offsets in days relative to the seeding time.
    starts_in: int = -7
    expires_in: int = 365
    max_discount_amount: float | None = None
    min_cart_items: int = 0
    min_cart_value: float = 0
    max_total_uses: int | None = None
    max_uses_per_user: int | None = None
    priority: int = 0


PRODUCT_SEEDS: tuple[ProductSeed, ...] = (
    ProductSeed("Wireless Headphones", "High-quality wireless headphones with noise cancellation", 99.99, "WH-001", "Electronics", 100),
    ProductSeed("Bluetooth Speaker", "Portable bluetooth speaker with 360° sound", 49.99, "BS-001", "Electronics", 150),
    ProductSeed("USB-C Cable", "Fast charging USB-C cable, 2m length", 15.99, "UC-001", "Accessories", 500),
    ProductSeed("Phone Case", "Premium silicone phone case", 29.99, "PC-001", "Accessories", 200),
    ProductSeed("Laptop Stand", "Ergonomic aluminum laptop stand", 79.99, "LS-001", "Office", 75),
    ProductSeed("Mechanical Keyboard", "RGB mechanical keyboard with Cherry MX switches", 149.99, "MK-001", "Electronics", 50),
    ProductSeed("Mouse Pad", "Large gaming mouse pad with stitched edges", 19.99, "MP-001", "Accessories", 300),
    ProductSeed("Webcam HD", "1080p HD webcam with built-in microphone", 69.99, "WC-001", "Electronics", 80),
)

COUPON_SEEDS: tuple[CouponSeed, ...] = (
    CouponSeed(
        "SAVE10", "10% Off", "Get 10% off on orders over $50",
        CouponType.general, DiscountType.percentage, 10,
        max_discount_amount=50, min_cart_items=1, min_cart_value=50, max_total_uses=1000, max_uses_per_user=3,
    ),
    CouponSeed(
        "FLAT20", "$20 Off", "Get $20 off on orders over $100",
        CouponType.general, DiscountType.fixed, 20,
        min_cart_items=2, min_cart_value=100, max_total_uses=500, max_uses_per_user=1,
    ),
    CouponSeed(
        "AUTO15", "Auto 15% Off", "Automatically get 15% off on orders over $75",
        CouponType.auto_applied, DiscountType.percentage, 15,
        max_discount_amount=30, min_cart_items=1, min_cart_value=75, priority=10,
    ),
    CouponSeed(
        "AUTO5", "Auto $5 Off", "Automatically get $5 off on any order",
        CouponType.auto_applied, DiscountType.fixed, 5,
        min_cart_items=1, priority=5,
    ),
    CouponSeed(
        "EXPIRED10", "Expired 10% Off", "This coupon has expired",
        CouponType.general, DiscountType.percentage, 10,
        starts_in=-30, expires_in=-1,
    ),
    CouponSeed(
        "ONEUSE", "One Time Use", "Can only be used once per customer",
        CouponType.general, DiscountType.percentage, 25,
        max_discount_amount=100, max_uses_per_user=1,
    ),
)


async def _seed_products(db, logger: logging.Logger) -> tuple[int, int]:
    created = skipped = 0
    for seed in PRODUCT_SEEDS:
        existing = await db.scalar(select(Product.id).where(Product.sku == seed.sku))
        if existing:
            skipped += 1
            continue
        await product_service.create_product(
            db,
            ProductCreate(
                name=seed.name,
                description=seed.description,
                price=seed.price,
                sku=seed.sku,
                category=seed.category,
                stock=seed.stock,
            ),
        )
        created += 1
        logger.debug("Created product %s", seed.sku)
    return created, skipped


async def _seed_coupons(db, logger: logging.Logger, now: datetime) -> tuple[int, int]:
    created = skipped = 0
    for seed in COUPON_SEEDS:
        if await coupon_service.get_coupon_by_code(db, seed.code):
            skipped += 1
            continue
        await coupon_service.create_coupon(
            db,
            CouponCreate(
                code=seed.code,
                name=seed.name,
                description=seed.description,
                coupon_type=seed.coupon_type,
                discount_type=seed.discount_type,
                discount_value=seed.discount_value,
                max_discount_amount=seed.max_discount_amount,
                start_time=now + timedelta(days=seed.starts_in),
                expiry_time=now + timedelta(days=seed.expires_in),
                min_cart_items=seed.min_cart_items,
                min_cart_value=seed.min_cart_value,
                max_total_uses=seed.max_total_uses,
                max_uses_per_user=seed.max_uses_per_user,
                priority=seed.priority,
            ),
        )
        created += 1
        logger.debug("Created coupon %s", seed.code)
    return created, skipped


async def seed_sample_data() -> None:
    logger = logging.getLogger("seed_sample_data")
    logger.info("Seeding sample data into %s", settings.ASYNC_DATABASE_URL)
    async with AsyncSessionLocal() as session:
        products = await _seed_products(session, logger)
        coupons = await _seed_coupons(session, logger, datetime.now(timezone.utc))
        await session.commit()
    logger.info("Products: %s created, %s skipped", *products)
    logger.info("Coupons: %s created, %s skipped", *coupons)


async def main() -> None:
    await seed_sample_data()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
