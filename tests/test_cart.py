import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from cart_coupons.domain.enums import CouponType, DiscountType
from cart_coupons.models.coupon import CouponUsage
from cart_coupons.services.lock_manager import coupon_lock_keys


def _customer() -> str:
    return f"customer-{uuid.uuid4().hex[:8]}"


async def _add(client: AsyncClient, customer: str, product_id, quantity: int = 1):
    resp = await client.post(
        f"/api/v1/carts/{customer}/items",
        json={"product_id": str(product_id), "quantity": quantity},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _apply(client: AsyncClient, customer: str, code: str):
    return await client.post(f"/api/v1/carts/{customer}/coupons", json={"coupon_code": code})


def _usage_rows(db_session, coupon_id) -> int:
    return db_session.scalar(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id))


@pytest.mark.asyncio
async def test_cart_item_flow(client: AsyncClient, make_product):
    customer = _customer()
    product = make_product("1200.00", stock=5)

    resp = await client.get(f"/api/v1/carts/{customer}")
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["customer_id"] == customer
    assert cart["items"] == []
    assert cart["applied_coupon"] is None

    # Same active cart on every read
    again = await client.get(f"/api/v1/carts/{customer}")
    assert again.json()["id"] == cart["id"]

    cart = await _add(client, customer, product.id, 2)
    item = cart["items"][0]
    assert item["quantity"] == 2
    assert item["line_total"] == 2400.0
    assert cart["summary"]["total_before_discount"] == 2400.0
    assert cart["summary"]["total_item_count"] == 2

    # Re-adding increments instead of duplicating the line
    cart = await _add(client, customer, product.id, 1)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3

    update_resp = await client.put(f"/api/v1/carts/{customer}/items/{item['id']}", json={"quantity": 4})
    assert update_resp.status_code == 200, update_resp.text
    assert update_resp.json()["summary"]["final_payable"] == 4800.0

    delete_resp = await client.delete(f"/api/v1/carts/{customer}/items/{item['id']}")
    assert delete_resp.status_code == 200, delete_resp.text
    cart = delete_resp.json()
    assert cart["items"] == []
    assert cart["summary"]["final_payable"] == 0.0


@pytest.mark.asyncio
async def test_stock_and_availability_are_checked(client: AsyncClient, make_product):
    customer = _customer()
    scarce = make_product("10.00", stock=2)
    hidden = make_product("10.00", is_active=False)

    resp = await client.post(f"/api/v1/carts/{customer}/items", json={"product_id": str(scarce.id), "quantity": 3})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Insufficient stock. Available: 2"

    resp = await client.post(f"/api/v1/carts/{customer}/items", json={"product_id": str(hidden.id), "quantity": 1})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Product is not available"

    resp = await client.post(f"/api/v1/carts/{customer}/items", json={"product_id": str(uuid.uuid4())})
    assert resp.status_code == 404

    cart = await _add(client, customer, scarce.id, 2)
    item_id = cart["items"][0]["id"]
    resp = await client.put(f"/api/v1/carts/{customer}/items/{item_id}", json={"quantity": 5})
    assert resp.status_code == 400

    resp = await client.delete(f"/api/v1/carts/{customer}/items/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Cart item not found"


@pytest.mark.asyncio
async def test_quantity_must_be_positive(client: AsyncClient, make_product):
    product = make_product()
    resp = await client.post(f"/api/v1/carts/{_customer()}/items", json={"product_id": str(product.id), "quantity": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_auto_coupon_applies_when_cart_crosses_minimum(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    mouse = make_product("49.99")
    keyboard = make_product("99.99")
    make_coupon("AUTO10", coupon_type=CouponType.auto_applied, discount_value=Decimal("10"), min_cart_value=Decimal("75"))

    cart = await _add(client, customer, mouse.id)
    assert cart["applied_coupon"] is None
    assert cart["summary"]["total_before_discount"] == 49.99

    cart = await _add(client, customer, keyboard.id)
    assert cart["applied_coupon"]["code"] == "AUTO10"
    assert cart["applied_coupon"]["is_auto_applied"] is True
    assert cart["summary"]["total_before_discount"] == 149.98
    assert cart["summary"]["discount_amount"] == 15.0
    assert cart["summary"]["final_payable"] == 134.98
    assert cart["summary"]["discount_percentage_display"] == "10.0%"

    # Dropping back under the minimum clears the auto coupon
    keyboard_line = next(i for i in cart["items"] if i["product_id"] == str(keyboard.id))
    resp = await client.delete(f"/api/v1/carts/{customer}/items/{keyboard_line['id']}")
    cart = resp.json()
    assert cart["applied_coupon"] is None
    assert cart["summary"]["discount_amount"] == 0.0


@pytest.mark.asyncio
async def test_best_auto_coupon_wins(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("100.00")
    make_coupon("AUTO5", coupon_type=CouponType.auto_applied, discount_value=Decimal("5"), priority=50)
    make_coupon(
        "FLATAUTO",
        coupon_type=CouponType.auto_applied,
        discount_type=DiscountType.fixed,
        discount_value=Decimal("20"),
        priority=1,
    )

    cart = await _add(client, customer, product.id)
    assert cart["applied_coupon"]["code"] == "FLATAUTO"
    assert cart["summary"]["final_payable"] == 80.0


@pytest.mark.asyncio
async def test_manual_coupon_records_usage_and_masks_auto(
    client: AsyncClient, make_product, make_coupon, db_session
):
    customer = _customer()
    product = make_product("100.00")
    make_coupon("AUTO5", coupon_type=CouponType.auto_applied, discount_value=Decimal("5"))
    save10 = make_coupon("SAVE10", discount_value=Decimal("10"))

    cart = await _add(client, customer, product.id)
    assert cart["applied_coupon"]["code"] == "AUTO5"

    resp = await _apply(client, customer, " save10 ")
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["applied_coupon"]["code"] == "SAVE10"
    assert cart["applied_coupon"]["is_auto_applied"] is False
    assert cart["summary"]["discount_amount"] == 10.0
    assert _usage_rows(db_session, save10.id) == 1

    # Manual choice is sticky across cart mutations
    cart = await _add(client, customer, product.id)
    assert cart["applied_coupon"]["code"] == "SAVE10"
    assert cart["summary"]["discount_amount"] == 20.0

    resp = await client.delete(f"/api/v1/carts/{customer}/coupons")
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["applied_coupon"]["code"] == "AUTO5"
    assert cart["applied_coupon"]["is_auto_applied"] is True
    # Removing never touches the ledger
    assert _usage_rows(db_session, save10.id) == 1


@pytest.mark.asyncio
async def test_auto_apply_never_writes_usage(client: AsyncClient, make_product, make_coupon, db_session):
    customer = _customer()
    product = make_product("100.00")
    auto = make_coupon("AUTOONCE", coupon_type=CouponType.auto_applied, max_uses_per_user=1)

    await _add(client, customer, product.id)
    await client.get(f"/api/v1/carts/{customer}")
    cart = await _add(client, customer, product.id)

    assert cart["applied_coupon"]["code"] == "AUTOONCE"
    assert _usage_rows(db_session, auto.id) == 0


@pytest.mark.asyncio
async def test_apply_to_empty_cart_is_rejected(client: AsyncClient, make_coupon):
    make_coupon("SAVE10")
    resp = await _apply(client, _customer(), "SAVE10")
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "CART_EMPTY"
    assert body["detail"] == "Cannot apply coupon to an empty cart"


@pytest.mark.asyncio
async def test_apply_rejections_carry_validation_code(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("20.00")
    now = datetime.now(timezone.utc)
    make_coupon("EXPIRED10", start_time=now - timedelta(days=10), expiry_time=now - timedelta(days=1))
    make_coupon("BIGSPEND", min_cart_value=Decimal("500"))
    await _add(client, customer, product.id)

    resp = await _apply(client, customer, "NOPE")
    assert resp.status_code == 400
    assert resp.json()["code"] == "COUPON_NOT_FOUND"

    resp = await _apply(client, customer, "EXPIRED10")
    assert resp.json()["code"] == "COUPON_EXPIRED"

    resp = await _apply(client, customer, "BIGSPEND")
    assert resp.json()["code"] == "MIN_CART_VALUE_NOT_MET"

    cart = (await client.get(f"/api/v1/carts/{customer}")).json()
    assert cart["applied_coupon"] is None


@pytest.mark.asyncio
async def test_reapplying_same_coupon_conflicts(client: AsyncClient, make_product, make_coupon, db_session):
    customer = _customer()
    product = make_product("50.00")
    coupon = make_coupon("SAVE10")
    await _add(client, customer, product.id)

    assert (await _apply(client, customer, "SAVE10")).status_code == 200
    resp = await _apply(client, customer, "SAVE10")
    assert resp.status_code == 409
    assert _usage_rows(db_session, coupon.id) == 1


@pytest.mark.asyncio
async def test_per_user_limit_blocks_second_redemption(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("50.00")
    make_coupon("ONEUSE", max_uses_per_user=1)
    await _add(client, customer, product.id)

    assert (await _apply(client, customer, "ONEUSE")).status_code == 200
    assert (await client.delete(f"/api/v1/carts/{customer}/coupons")).status_code == 200

    resp = await _apply(client, customer, "ONEUSE")
    assert resp.status_code == 400
    assert resp.json()["code"] == "MAX_USER_USES_REACHED"

    # Another customer still has their own allowance
    other = _customer()
    await _add(client, other, product.id)
    assert (await _apply(client, other, "ONEUSE")).status_code == 200


@pytest.mark.asyncio
async def test_manual_coupon_dropped_when_it_stops_validating(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("30.00")
    make_coupon("MIN2", min_cart_items=2)

    cart = await _add(client, customer, product.id, 2)
    assert (await _apply(client, customer, "MIN2")).status_code == 200

    item_id = cart["items"][0]["id"]
    resp = await client.put(f"/api/v1/carts/{customer}/items/{item_id}", json={"quantity": 1})
    cart = resp.json()
    assert cart["applied_coupon"] is None
    assert cart["summary"]["final_payable"] == 30.0


@pytest.mark.asyncio
async def test_lock_contention_returns_retryable_conflict(
    client: AsyncClient, make_product, make_coupon, lock_manager, db_session
):
    customer = _customer()
    product = make_product("50.00")
    coupon = make_coupon("SAVE10")
    await _add(client, customer, product.id)

    held = await lock_manager.acquire(coupon_lock_keys(coupon.id, customer))
    try:
        resp = await _apply(client, customer, "SAVE10")
    finally:
        await lock_manager.release(held)

    assert resp.status_code == 409
    assert resp.headers["retry-after"] == "1"
    body = resp.json()
    assert body["code"] == "COUPON_LOCK_BUSY"
    assert body["retryable"] is True
    assert _usage_rows(db_session, coupon.id) == 0

    cart = (await client.get(f"/api/v1/carts/{customer}")).json()
    assert cart["applied_coupon"] is None


@pytest.mark.asyncio
async def test_remove_coupon_without_one_is_rejected(client: AsyncClient):
    resp = await client.delete(f"/api/v1/carts/{_customer()}/coupons")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No coupon applied to this cart"


@pytest.mark.asyncio
async def test_clear_cart_empties_items_and_coupon(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("80.00")
    make_coupon("SAVE10")
    await _add(client, customer, product.id, 2)
    await _apply(client, customer, "SAVE10")

    resp = await client.delete(f"/api/v1/carts/{customer}")
    assert resp.status_code == 200, resp.text
    cart = resp.json()
    assert cart["items"] == []
    assert cart["applied_coupon"] is None
    assert cart["summary"]["total_item_count"] == 0


@pytest.mark.asyncio
async def test_deleted_coupon_leaves_cart_consistent(client: AsyncClient, make_product, make_coupon):
    customer = _customer()
    product = make_product("80.00")
    coupon = make_coupon("GONE")
    await _add(client, customer, product.id)
    assert (await _apply(client, customer, "GONE")).status_code == 200

    assert (await client.delete(f"/api/v1/coupons/{coupon.id}")).status_code == 204

    cart = (await client.get(f"/api/v1/carts/{customer}")).json()
    assert cart["applied_coupon"] is None
    assert cart["summary"]["final_payable"] == 80.0
