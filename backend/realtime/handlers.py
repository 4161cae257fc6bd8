from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from .events import EVENT_TYPES, Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Union[None, Awaitable[Any]]]


class HandlerRegistry:
    def __init__(self, event_types: tuple[str, ...] = EVENT_TYPES) -> None:
        self._handlers: dict[str, list[EventHandler]] = {event_type: [] for event_type in event_types}

    def add(self, event_type: str, handler: EventHandler) -> None:
        if event_type not in self._handlers:
            raise ValueError(f"Unsupported event type: {event_type}")
        self._handlers[event_type].append(handler)

    def count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    async def dispatch(self, event: Event) -> None:
        for handler in list(self._handlers.get(event.type, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("handler for %s failed", event.type)
