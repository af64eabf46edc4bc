"""
Notifier collaborator.

The engine hands events to `notifier.notify(event_type, payload)` and never
waits on delivery. Each event type is gated by a config flag; handlers are
plain callables, and a failing handler is logged and skipped.
"""

import logging
from typing import Callable, Dict, Any, List

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

BACKUP_FAILED = 'backup_failed'
RESTORE_COMPLETED = 'restore_completed'
SCHEDULE_GROUP_COMPLETED = 'schedule_group_completed'

# Config flag gating each event type
EVENT_FLAGS = {
    BACKUP_FAILED: 'NOTIFY_BACKUP_FAILURE',
    RESTORE_COMPLETED: 'NOTIFY_RESTORE_COMPLETE',
    SCHEDULE_GROUP_COMPLETED: 'NOTIFY_SCHEDULE_COMPLETE',
}

Handler = Callable[[str, Dict[str, Any]], None]


def log_handler(event_type: str, payload: Dict[str, Any]):
    """Default handler: write the event to the application log."""
    logger.info(f"Notification {event_type}: {payload}")


class Notifier:
    """Dispatches engine events to registered handlers."""

    def __init__(self):
        self._handlers: List[Handler] = [log_handler]

    def register(self, handler: Handler):
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unregister(self, handler: Handler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    def is_enabled(self, event_type: str) -> bool:
        flag = EVENT_FLAGS.get(event_type)
        if flag is None or not has_app_context():
            return True
        return bool(current_app.config.get(flag, True))

    def notify(self, event_type: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every handler.

        Returns:
            Number of handlers that accepted the event
        """
        if not self.is_enabled(event_type):
            logger.debug(f"Notifications for {event_type} are disabled")
            return 0

        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(event_type, payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Notification handler {getattr(handler, '__name__', handler)} failed for {event_type}: {e}")

        return delivered


# Global instance shared by the engine
notifier = Notifier()
