from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cart_coupons.services.exceptions import (
    ConflictError,
    CouponValidationFailed,
    DomainValidationError,
    LockContentionError,
    ResourceNotFoundError,
    ServiceError,
)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ResourceNotFoundError)
    async def handle_not_found(_: Request, exc: ResourceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(DomainValidationError)
    async def handle_validation(_: Request, exc: DomainValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(CouponValidationFailed)
    async def handle_coupon_rejected(_: Request, exc: CouponValidationFailed) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.detail, "code": exc.code.value})

    @app.exception_handler(LockContentionError)
    async def handle_lock_busy(_: Request, exc: LockContentionError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "code": exc.code, "retryable": True},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ConflictError)
    async def handle_conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(ServiceError)
    async def handle_service_error(_: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.detail})
