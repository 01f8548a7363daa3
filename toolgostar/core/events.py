import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("toolgostar.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def clear(self) -> None:
        self._subscribers.clear()

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            # Subscribers run after the write is committed; one failing handler must not fail the request.
            try:
                handler(event)
            except Exception:
                logger.exception("events.handler_failed", extra={"event_name": event_name})


event_bus = InProcessEventBus()
