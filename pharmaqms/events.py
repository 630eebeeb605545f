# pharmaqms/events.py

import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

RECORD_CREATED = "record.created"
RECORD_TRANSITIONED = "record.transitioned"
RECORD_UPDATED = "record.updated"
RECORD_DELETED = "record.deleted"


class EventBus:
    """A simple pub/sub pattern for decoupled communication."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribes a callback to an event type."""
        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event_type: str, data: dict) -> int:
        """
        Publishes an event to all subscribers. A failing subscriber is logged and
        skipped; it never reaches the publisher. Returns the number of
        subscribers that handled the event.
        """
        handled = 0
        for callback in self._subscribers.get(event_type, []):
            try:
                callback(data)
                handled += 1
            except Exception as e:
                logger.error(f"Subscriber {getattr(callback, '__name__', callback)} failed on {event_type}: {e}")
        return handled
