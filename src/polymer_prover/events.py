"""
Typed event publication.

Programs queue events on their call context; the host publishes them here
only after the call's storage writes are committed.
"""

import logging
from collections import deque
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]


class EventBus:
    """Fan-out of committed events to subscribers, with a bounded history."""

    MAX_HISTORY: int = 1_000

    def __init__(self, max_history: int | None = None) -> None:
        self._subscribers: list[tuple[type | None, EventCallback]] = []
        self.history: deque[Any] = deque(maxlen=max_history or self.MAX_HISTORY)

    def subscribe(self, callback: EventCallback, event_type: type | None = None) -> Callable[[], None]:
        """
        Register ``callback`` for every event, or only events of ``event_type``.

        Returns:
            A function that removes the subscription
        """
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Any) -> None:
        self.history.append(event)
        for event_type, callback in list(self._subscribers):
            if event_type is None or isinstance(event, event_type):
                try:
                    callback(event)
                except Exception as e:
                    # Remaining subscribers still receive the event
                    logger.error(f"Event subscriber failed on {type(event).__name__}: {e}", exc_info=True)

    def events_of(self, event_type: type) -> list[Any]:
        return [e for e in self.history if isinstance(e, event_type)]
