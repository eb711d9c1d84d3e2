from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.core.config import settings
from cart_coupons.core.logging import get_logger
from cart_coupons.core.metrics import export_metrics
from cart_coupons.core.redis import get_redis
from cart_coupons.db.session_async import get_async_db

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


async def _probe(name: str, check) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        await check()
    except Exception as exc:
        logger.warning("health_check_failed", extra={"service": name, "error": str(exc)})
        return {"status": "down", "error": str(exc)}
    return {"status": "up", "latency_ms": round((time.perf_counter() - started) * 1000, 3)}


@router.get("/health")
async def health(response: Response, db: AsyncSession = Depends(get_async_db)):
    services = {"database": await _probe("database", lambda: db.execute(text("SELECT 1")))}
    if settings.COUPON_LOCK_BACKEND == "redis":
        services["redis"] = await _probe("redis", lambda: get_redis().ping())

    healthy = all(service["status"] == "up" for service in services.values())
    if not healthy:
        response.status_code = 503
    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    payload, content_type = export_metrics()
    return Response(content=payload, media_type=content_type)
