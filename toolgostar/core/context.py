from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from toolgostar.core.config import get_settings


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None
    client_ip: str
    user_agent: str | None


def resolve_client_ip(request: Request) -> str:
    if get_settings().rate_limit_trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            user_id=None,
            client_ip=resolve_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request.state.context.request_id
        return response


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if isinstance(context, RequestContext):
        return context
    return RequestContext(
        request_id="",
        correlation_id="",
        user_id=None,
        client_ip=resolve_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
