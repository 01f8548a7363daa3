from __future__ import annotations

from collections import deque
from typing import Any

from toolgostar.context import get_actor_id, get_correlation_id
from toolgostar.core.events import event_bus

EVENT_RETENTION = 10_000

published_events: deque[dict[str, Any]] = deque(maxlen=EVENT_RETENTION)


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    if envelope.get("actor_user_id") is None:
        envelope["actor_user_id"] = get_actor_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
