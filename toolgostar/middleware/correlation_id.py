from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from toolgostar.context import reset_correlation_id, set_correlation_id


CORRELATION_HEADER = "x-correlation-id"
# Inbound ids end up in logs and response headers; anything else is replaced.
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def resolve_correlation_id(raw: str | None) -> str:
    if raw and _ACCEPTED_ID.fullmatch(raw.strip()):
        return raw.strip()
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
