from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timezone

QUOTE_NUMBER_PATTERN = r"^Q-\d{14}-[0-9A-F]{10}$"


def generate_quote_number(
    now: datetime | None = None,
    token: Callable[[int], str] = secrets.token_hex,
) -> str:
    """Build ``Q-<UTC timestamp to the second>-<40 random bits>``.

    The random part keeps numbers unique among requests created within the same second.
    """

    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"Q-{moment:%Y%m%d%H%M%S}-{token(5).upper()}"
