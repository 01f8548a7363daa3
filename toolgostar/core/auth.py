from __future__ import annotations

import logging

from starlette.requests import Request

from toolgostar.context import set_actor_id
from toolgostar.core.errors import AuthenticationError
from toolgostar.metrics import observe_auth_failure
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.tokens import ACCESS_TOKEN, get_token_service


logger = logging.getLogger("toolgostar.security")


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(token: str | None, expected_type: str = ACCESS_TOKEN) -> Principal:
    if not token:
        observe_auth_failure("missing_token")
        raise AuthenticationError("Access denied. No token provided.", code="NO_TOKEN")
    try:
        return get_token_service().verify(token, expected_type=expected_type)
    except AuthenticationError as exc:
        observe_auth_failure(exc.code.lower())
        logger.info("auth.token_rejected", extra={"error_code": exc.code})
        raise


async def get_current_user(request: Request) -> Principal:
    principal = authenticate(extract_bearer_token(request))
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = principal.subject_id
    set_actor_id(principal.subject_id)
    return principal
