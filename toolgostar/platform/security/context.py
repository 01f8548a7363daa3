from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from toolgostar.platform.security.permissions import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Identity asserted by a verified credential; the role claim is trusted until expiry."""

    subject_id: str
    role: Role
    issued_at: datetime
    expires_at: datetime
    token_type: str = "access"
    email: str | None = None
