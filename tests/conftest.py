# tests/conftest.py
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("COUPON_LOCK_BACKEND", "memory")
os.environ.setdefault("COUPON_LOCK_RETRY_DELAY_MS", "10")
os.environ.setdefault("COUPON_LOCK_RETRY_JITTER_MS", "10")

from cart_coupons.api.deps import get_coupon_lock_manager
from cart_coupons.db.base import Base
from cart_coupons.db.session_async import AsyncSessionLocal
from cart_coupons.domain.enums import CouponType, DiscountType
from cart_coupons.main import app
from cart_coupons.models.coupon import Coupon
from cart_coupons.models.product import Product
from cart_coupons.services.lock_manager import InMemoryLockManager, set_lock_manager

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

sync_engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


# ---------- Fixtures ----------
@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create the SQLite tables once per test session."""
    Base.metadata.create_all(bind=sync_engine)
    yield
    Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with sync_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def lock_manager() -> Generator[InMemoryLockManager, None, None]:
    """A fresh in-process lock manager wired into the app for each test."""
    manager = InMemoryLockManager(retry_count=3, retry_delay_ms=10, retry_jitter_ms=10)
    set_lock_manager(manager)
    app.dependency_overrides[get_coupon_lock_manager] = lambda: manager
    yield manager
    app.dependency_overrides.pop(get_coupon_lock_manager, None)
    set_lock_manager(None)


@pytest_asyncio.fixture(scope="function")
async def client(lock_manager):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_db_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


# --- Data helpers (sync session, committed so the app sees them) ---

@pytest.fixture(scope="function")
def make_product(db_session: Session):
    def _make(price="49.99", *, stock=100, category="electronics", is_active=True, name=None) -> Product:
        product = Product(
            name=name or f"Product-{uuid.uuid4().hex[:8]}",
            price=Decimal(str(price)),
            sku=f"SKU-{uuid.uuid4().hex[:10]}",
            category=category,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture(scope="function")
def make_coupon(db_session: Session):
    def _make(code: str, **overrides) -> Coupon:
        now = datetime.now(timezone.utc)
        values = {
            "code": code,
            "name": f"{code} coupon",
            "coupon_type": CouponType.general,
            "discount_type": DiscountType.percentage,
            "discount_value": Decimal("10"),
            "start_time": now - timedelta(days=1),
            "expiry_time": now + timedelta(days=30),
            "min_cart_items": 0,
            "min_cart_value": Decimal("0"),
            "current_total_uses": 0,
            "priority": 0,
            "is_active": True,
        }
        values.update(overrides)
        coupon = Coupon(**values)
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _make
