import logging
import threading
from typing import Any, Callable, Dict, List

class EventEmitter:
    """Minimal observer registry: on()/off()/once() listeners, emit() in registration order."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._listeners_lock = threading.Lock()
        self._event_log = logging.getLogger("EventEmitter")

    def on(self, event: str, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Register callback for event. Returns the callback so it can be used as a decorator."""
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(callback)
        return callback

    def once(self, event: str, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Register callback to run on the next emission of event only."""
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return callback(*args)
        self.on(event, wrapper)
        return wrapper

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        with self._listeners_lock:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

    def listener_count(self, event: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        """Call every listener for event. A failing listener is logged and skipped."""
        with self._listeners_lock:
            listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                callback(*args)
            except Exception as e:
                self._event_log.error(f"Listener for '{event}' raised: {e}", exc_info=True)
