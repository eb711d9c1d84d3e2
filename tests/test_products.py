# tests/test_products.py
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_and_list_products(client: AsyncClient):
    payload = {
        "name": "Wireless Mouse",
        "price": 49.99,
        "sku": "MOUSE-001",
        "category": "electronics",
        "stock": 25,
    }
    r = await client.post("/api/v1/products", json=payload)
    assert r.status_code == 201, r.text
    product = r.json()
    assert product["price"] == 49.99
    assert product["is_active"] is True

    dup = await client.post("/api/v1/products", json=payload)
    assert dup.status_code == 409

    fetched = await client.get(f"/api/v1/products/{product['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["sku"] == "MOUSE-001"

    listing = await client.get("/api/v1/products", params={"limit": 5})
    assert listing.status_code == 200
    data = listing.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == product["id"]


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    body = health.json()
    assert body["status"] == "healthy"
    assert body["services"]["database"]["status"] == "up"
    assert "redis" not in body["services"]

    await client.get("/api/v1/products")
    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "cart_coupons_http_requests_total" in metrics.text
