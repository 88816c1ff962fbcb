"""
Small publish/subscribe hub.

One instance is created by whoever wires the application together and passed
to the components that publish or listen; there is no process-wide instance.
"""
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventBus:
    """Named-event publish/subscribe."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}

    def subscribe(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """
        Register a callback for an event.

        Args:
            event: Event name (e.g. "lessonStatus:updated")
            callback: Called with the arguments passed to emit()

        Returns:
            A function that removes the subscription when called
        """
        self._listeners.setdefault(event, []).append(callback)
        return lambda: self.unsubscribe(event, callback)

    def unsubscribe(self, event: str, callback: Callable[..., Any]) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        callbacks = self._listeners.get(event)
        if not callbacks or callback not in callbacks:
            return
        callbacks.remove(callback)
        if not callbacks:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> int:
        """
        Call every callback registered for an event.

        A failing callback is logged and does not stop the others.

        Returns:
            Number of callbacks that were called
        """
        callbacks = list(self._listeners.get(event, []))
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Listener for %s failed", event)
        return len(callbacks)

    def listener_count(self, event: str) -> int:
        """Number of callbacks registered for an event."""
        return len(self._listeners.get(event, []))
