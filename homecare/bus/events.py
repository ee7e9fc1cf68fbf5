"""
Event Bus - Store change notifications
Stores emit events on every state transition; screen bindings register handlers
instead of polling store state.
"""

from typing import Callable, Dict, List, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus between stores and the screens bound to them.
    One bus per store registry; there is no module-level instance.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives event_data dict
        """
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug(f"Registered handler for event '{event_name}': {getattr(handler, '__name__', handler)}")

    def off(self, event_name: str, handler: Callable):
        """Unregister a handler, e.g. when its screen unmounts. Unknown handlers are ignored."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, event_data: Dict[str, Any] = None):
        """
        Emit an event to all registered handlers.

        Args:
            event_name: Name of the event
            event_data: Optional dict of data to pass to handlers
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting event '{event_name}' with data: {event_data}")

        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(event_data)
            except Exception as e:
                logger.error(f"Error in handler {getattr(handler, '__name__', handler)} for event '{event_name}': {e}")

    def clear(self):
        """Clear all handlers (useful for testing)."""
        self._handlers.clear()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Load lifecycle
EVENT_RESOURCE_LOADING = 'resource_loading'
EVENT_RESOURCE_LOADED = 'resource_loaded'
EVENT_RESOURCE_DEGRADED = 'resource_degraded'

# Optimistic mutations
EVENT_RECORD_CREATED = 'record_created'
EVENT_RECORD_UPDATED = 'record_updated'
EVENT_RECORD_REMOVED = 'record_removed'
EVENT_DEFAULT_CHANGED = 'default_changed'
EVENT_ENTRY_RESCHEDULED = 'entry_rescheduled'

# Reconciliation
EVENT_RECORD_SYNCED = 'record_synced'
EVENT_SYNC_FAILED = 'sync_failed'

# Session
EVENT_SESSION_STARTED = 'session_started'
EVENT_SESSION_ENDED = 'session_ended'
