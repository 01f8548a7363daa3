from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends

from toolgostar.core.auth import get_current_user
from toolgostar.core.errors import AuthorizationError
from toolgostar.metrics import observe_auth_failure
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.permissions import Action, Decision, Permission, Resource, permission_engine


logger = logging.getLogger("toolgostar.security")


def require_permission(resource: Resource, action: Action) -> Callable[..., Awaitable[Principal]]:
    permission = Permission(resource, action)

    async def checker(user: Principal = Depends(get_current_user)) -> Principal:
        if permission_engine.check(user.role, resource, action) is Decision.DENY:
            observe_auth_failure("forbidden")
            logger.info("auth.forbidden", extra={"permission": str(permission), "role": user.role.value})
            raise AuthorizationError(
                f"Missing permission: {permission}",
                code="PERMISSION_DENIED",
                details={"required": str(permission), "role": user.role.value},
            )
        return user

    return checker
