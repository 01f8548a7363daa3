from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request, Response

from toolgostar.core.config import get_settings
from toolgostar.core.context import get_request_context
from toolgostar.core.errors import RateLimitExceeded
from toolgostar.platform.ratelimit.limiter import get_rate_limiter


logger = logging.getLogger("toolgostar.ratelimit")

_TIER_MESSAGES = {
    "login": "Too many login attempts, please try again later.",
    "auth_surface": "Too many authentication requests, please try again later.",
    "contact": "Too many contact form submissions, please try again later.",
    "quote": "Too many quote requests, please try again tomorrow.",
}


def rate_limited(*endpoint_classes: str) -> Callable[[Request, Response], None]:
    """Dependency admitting a public request against each tier in order; the first denial wins."""

    def dependency(request: Request, response: Response) -> None:
        if get_settings().rate_limit_bypass_active:
            return

        limiter = get_rate_limiter()
        client_key = get_request_context(request).client_ip
        reported = None
        for endpoint_class in endpoint_classes:
            admission = limiter.admit(client_key, endpoint_class)
            if not admission.allowed:
                logger.info(
                    "rate_limit.denied",
                    extra={"tier": endpoint_class, "client_key": client_key, "retry_after": admission.retry_after_seconds},
                )
                raise RateLimitExceeded(
                    endpoint_class,
                    admission.retry_after_seconds,
                    message=_TIER_MESSAGES.get(endpoint_class),
                )
            if reported is None or admission.remaining < reported.remaining:
                reported = admission

        if reported is not None:
            response.headers["X-RateLimit-Limit"] = str(reported.limit)
            response.headers["X-RateLimit-Remaining"] = str(reported.remaining)

    return dependency
