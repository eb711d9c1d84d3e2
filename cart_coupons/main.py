from contextlib import asynccontextmanager

from fastapi import FastAPI

from cart_coupons.api.error_handlers import register_exception_handlers
from cart_coupons.api.routers import carts, coupons, health, products
from cart_coupons.core.config import settings
from cart_coupons.core.logging import get_logger, setup_logging
from cart_coupons.core.redis import close_redis
from cart_coupons.db.session_async import async_engine
from cart_coupons.middleware import ObservabilityMiddleware

# --- Models registration (Alembic and create_all need every table) ---
import cart_coupons.models.product  # noqa: F401
import cart_coupons.models.coupon  # noqa: F401
import cart_coupons.models.cart  # noqa: F401

setup_logging()
logger = get_logger(__name__)

TAGS_METADATA = [
    {"name": "carts", "description": "Customer carts, items and coupon application."},
    {"name": "coupons", "description": "Coupon administration and advisory validation."},
    {"name": "products", "description": "Minimal product catalog consumed by carts."},
    {"name": "health", "description": "Liveness and dependency checks."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("app_startup", extra={"lock_backend": settings.COUPON_LOCK_BACKEND})
    yield
    await close_redis()
    await async_engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    description=(
        "Shopping carts with a coupon rules engine.\n\n"
        "- **Carts**: items, totals and the applied coupon, reconciled on every change.\n"
        "- **Coupons**: manual and auto-applied promotions with usage limits.\n"
        "- **Products**: the catalog read model carts are priced from."
    ),
    openapi_tags=TAGS_METADATA,
    lifespan=lifespan,
)

# --- Middlewares ---
app.add_middleware(ObservabilityMiddleware)

register_exception_handlers(app)

# --- Routers ---
app.include_router(carts.router, prefix=settings.API_V1_STR)
app.include_router(coupons.router, prefix=settings.API_V1_STR)
app.include_router(products.router, prefix=settings.API_V1_STR)
app.include_router(health.router)


@app.get("/", include_in_schema=False)
def root():
    return {"status": "ok", "docs_url": "/docs", "redoc_url": "/redoc"}
