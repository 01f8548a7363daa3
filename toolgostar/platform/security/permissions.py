from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Mapping


class Role(StrEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class Resource(StrEnum):
    CONTACTS = "contacts"
    QUOTES = "quotes"
    ANALYTICS = "analytics"
    USERS = "users"
    METRICS = "metrics"


class Action(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXPORT = "export"


class Decision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True, slots=True)
class Permission:
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"


def _grants(*pairs: tuple[Resource, Action]) -> frozenset[Permission]:
    return frozenset(Permission(resource, action) for resource, action in pairs)


_VIEWER = _grants(
    (Resource.CONTACTS, Action.READ),
    (Resource.QUOTES, Action.READ),
    (Resource.ANALYTICS, Action.READ),
)
_EDITOR = _VIEWER | _grants(
    (Resource.CONTACTS, Action.WRITE),
    (Resource.CONTACTS, Action.EXPORT),
    (Resource.QUOTES, Action.WRITE),
    (Resource.QUOTES, Action.EXPORT),
)
_ADMIN = _EDITOR | _grants(
    (Resource.CONTACTS, Action.DELETE),
    (Resource.QUOTES, Action.DELETE),
    (Resource.USERS, Action.READ),
    (Resource.USERS, Action.WRITE),
    (Resource.METRICS, Action.READ),
)

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = {
    Role.ADMIN: _ADMIN,
    Role.EDITOR: _EDITOR,
    Role.VIEWER: _VIEWER,
}

# Ordered from most to least privileged; each role must contain the next one's grants.
ROLE_HIERARCHY: tuple[Role, ...] = (Role.ADMIN, Role.EDITOR, Role.VIEWER)


def validate_role_table(table: Mapping[Role, frozenset[Permission]] = ROLE_PERMISSIONS) -> None:
    """Fail at import time if the static role table is incomplete or not nested."""

    missing = set(Role) - set(table)
    if missing:
        raise RuntimeError(f"role table missing entries for: {', '.join(sorted(missing))}")
    for higher, lower in zip(ROLE_HIERARCHY, ROLE_HIERARCHY[1:]):
        if not table[lower] <= table[higher]:
            raise RuntimeError(f"role '{higher}' must include every permission of '{lower}'")


validate_role_table()


class PermissionEngine:
    def __init__(self, table: Mapping[Role, frozenset[Permission]] = ROLE_PERMISSIONS) -> None:
        validate_role_table(table)
        self._table = table

    def check(self, role: Role | str, resource: Resource | str, action: Action | str) -> Decision:
        try:
            permission = Permission(Resource(resource), Action(action))
            grants = self._table[Role(role)]
        except (KeyError, ValueError):
            return Decision.DENY
        return Decision.ALLOW if permission in grants else Decision.DENY

    def permissions_for(self, role: Role | str) -> frozenset[Permission]:
        try:
            return self._table[Role(role)]
        except (KeyError, ValueError):
            return frozenset()


permission_engine = PermissionEngine()
