from __future__ import annotations

import logging
import threading

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from toolgostar.core.errors import ServiceUnavailable, error_response


logger = logging.getLogger("toolgostar.lifecycle")


class DrainState:
    def __init__(self) -> None:
        self._draining = threading.Event()

    def begin(self) -> None:
        if not self._draining.is_set():
            logger.info("server.draining")
        self._draining.set()

    def reset(self) -> None:
        self._draining.clear()

    @property
    def draining(self) -> bool:
        return self._draining.is_set()


drain_state = DrainState()


class ShutdownDrainMiddleware(BaseHTTPMiddleware):
    """Turns away requests that arrive after shutdown began; in-flight ones finish normally."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        if drain_state.draining:
            response = error_response(
                request,
                status_code=ServiceUnavailable.status_code,
                code=ServiceUnavailable.code,
                message=ServiceUnavailable.message,
            )
            response.headers["Connection"] = "close"
            return response
        return await call_next(request)
