import pytest
from sqlalchemy import func, select

from cart_coupons.domain.enums import CouponType
from cart_coupons.models.coupon import Coupon
from cart_coupons.models.product import Product
from scripts import seed_sample_data


@pytest.mark.asyncio
async def test_seed_sample_data_is_idempotent(async_db_session):
    await seed_sample_data.seed_sample_data()
    await seed_sample_data.seed_sample_data()

    total_products = (await async_db_session.execute(select(func.count(Product.id)))).scalar_one()
    total_coupons = (await async_db_session.execute(select(func.count(Coupon.id)))).scalar_one()
    assert total_products == len(seed_sample_data.PRODUCT_SEEDS)
    assert total_coupons == len(seed_sample_data.COUPON_SEEDS)

    auto_codes = (
        await async_db_session.execute(
            select(Coupon.code).where(Coupon.coupon_type == CouponType.auto_applied).order_by(Coupon.code)
        )
    ).scalars().all()
    assert auto_codes == ["AUTO15", "AUTO5"]

    headphones = (await async_db_session.execute(select(Product).where(Product.sku == "WH-001"))).scalar_one()
    assert str(headphones.price) == "99.99"
