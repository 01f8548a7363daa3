from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from toolgostar.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("toolgostar.request")

# Probe and scrape traffic is logged at DEBUG so it does not drown out lead traffic.
QUIET_PATHS = frozenset({"/api/v1/health", "/metrics"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = _elapsed_ms(started)
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error(
                "http.error",
                exc_info=True,
                extra={"method": method, "path": path, "status_code": 500, "duration_ms": duration_ms},
            )
            raise

        duration_ms = _elapsed_ms(started)
        # Route templates are only known after routing ran.
        path = resolve_http_path_label(request)
        observe_http_request(method=method, path=path, status=response.status_code, duration=duration_ms / 1000)
        logger.log(
            _level_for(path, response.status_code),
            "http.request",
            extra={"method": method, "path": path, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
