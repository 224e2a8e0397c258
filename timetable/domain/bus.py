"""In-process dispatch of editor domain events."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from timetable.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    A handler subscribed to a base class receives every subclass event, so
    one subscription to ``EditorEvent`` sees saves, deletes and rejections.
    Handlers run in registration order, most specific class first.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: Any) -> None:
        delivered = 0
        for event_type in type(event).__mro__:
            for handler in list(self._handlers.get(event_type, ())):
                handler(event)
                delivered += 1
        logger.debug("event_published", event_type=type(event).__name__, handlers=delivered)
