from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from toolgostar.context import get_correlation_id

logger = logging.getLogger("toolgostar.audit")

AUDIT_RETENTION = 10_000

# Recent entries kept in process for admin inspection and tests; the log stream is the durable trail.
audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_RETENTION)


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit.recorded",
        extra={"entity_type": entity_type, "entity_id": entity_id, "status": action},
    )
    return entry


def entries_for(entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    return [entry for entry in audit_entries if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id]
