from collections import deque
from typing import Any, Callable, Deque, Dict, List, Tuple
import logging
logger = logging.getLogger(__name__)


class EventEmitter:
    """
    Synchronous event emitter with ordered, non-re-entrant delivery.

    Listeners run in subscription order. An emit issued from inside a
    listener is queued and delivered after the current dispatch finishes,
    so every listener sees events in the order they were emitted.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._pending: Deque[Tuple[str, tuple, dict]] = deque()
        self._dispatching = False

    def on(self, event_name: str, callback: Callable) -> Callable[[], None]:
        """Subscribe to an event. Returns a function that unsubscribes."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)
        return lambda: self.off(event_name, callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, ()))

    def emit(self, event_name: str, *args: Any, **kwargs: Any):
        """Emit an event to all listeners."""
        self._pending.append((event_name, args, kwargs))
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._pending:
                name, call_args, call_kwargs = self._pending.popleft()
                for callback in self._listeners.get(name, [])[:]:  # Copy list to allow unsubscribe during dispatch
                    try:
                        callback(*call_args, **call_kwargs)
                    except Exception as e:
                        logger.error(f"Error in event listener for {name}: {e}", exc_info=True)
        finally:
            self._dispatching = False
