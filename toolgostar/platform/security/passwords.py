from __future__ import annotations

import bcrypt

from toolgostar.core.config import get_settings

# bcrypt only looks at the first 72 bytes of a secret.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int | None = None) -> str:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=rounds or get_settings().bcrypt_rounds)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        return False
