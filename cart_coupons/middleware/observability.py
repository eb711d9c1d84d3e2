from __future__ import annotations

import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cart_coupons.core.logging import get_logger
from cart_coupons.core.metrics import normalize_path, record_request_metrics


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Records request latency metrics and logs 4xx/5xx responses."""

    def __init__(self, app, *, log_4xx: bool = True, log_5xx: bool = True) -> None:
        super().__init__(app)
        self.logger = get_logger("cart_coupons.requests")
        self.log_4xx = log_4xx
        self.log_5xx = log_5xx

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            record_request_metrics(request, 500, duration)
            self._log(request, 500, duration, "http_unhandled_error", "error")
            raise

        duration = time.perf_counter() - start
        record_request_metrics(request, response.status_code, duration)

        if response.status_code >= 500 and self.log_5xx:
            self._log(request, response.status_code, duration, "http_server_error", "error")
        elif response.status_code >= 400 and self.log_4xx:
            # 409 lock contention and coupon rejections land here.
            self._log(request, response.status_code, duration, "http_client_error", "warning")

        return response

    def _log(self, request: Request, status_code: int, duration: float, event: str, level: str) -> None:
        payload: dict[str, Any] = {
            "method": request.method,
            "path": normalize_path(request),
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 3),
            "client_ip": request.client.host if request.client else None,
            "request_id": request.headers.get("x-request-id"),
        }
        getattr(self.logger, level, self.logger.error)(event, extra=payload)
