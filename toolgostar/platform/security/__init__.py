from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.passwords import hash_password, verify_password
from toolgostar.platform.security.permissions import (
    ROLE_PERMISSIONS,
    Action,
    Decision,
    Permission,
    PermissionEngine,
    Resource,
    Role,
    permission_engine,
)
from toolgostar.platform.security.tokens import TokenPair, TokenService, get_token_service

__all__ = [
    "Principal",
    "hash_password",
    "verify_password",
    "ROLE_PERMISSIONS",
    "Action",
    "Decision",
    "Permission",
    "PermissionEngine",
    "Resource",
    "Role",
    "permission_engine",
    "TokenPair",
    "TokenService",
    "get_token_service",
]
