"""Observer registry keyed by event name."""

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]
Unsubscribe = Callable[[], None]


class EventEmitter:
    """
    Ordered listener sets per event name.

    Emission iterates a snapshot of the listeners, so a listener may
    unsubscribe itself (or others) mid-emission. A listener that raises is
    logged and skipped; delivery to the rest continues.
    """

    def __init__(self):
        self._listeners: Dict[str, Dict[Listener, None]] = {}

    def on(self, event: str, callback: Listener) -> Unsubscribe:
        """Subscribe to an event. Returns a function that unsubscribes."""
        self._listeners.setdefault(event, {})[callback] = None
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Listener):
        listeners = self._listeners.get(event)
        if listeners:
            listeners.pop(callback, None)
            if not listeners:
                del self._listeners[event]

    def emit(self, event: str, *args: Any):
        listeners = self._listeners.get(event)
        if not listeners:
            return

        for callback in list(listeners):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Error in {event} listener")

    def clear(self, event: Optional[str] = None):
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, {}))
        return sum(len(listeners) for listeners in self._listeners.values())
