"""Notification channel used to report test progress to a UI collaborator."""

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal synchronous publish/subscribe channel.

    Listeners are called in subscription order. A listener that raises is
    logged and does not prevent the remaining listeners from running, so a
    broken UI callback cannot stall a state transition.

    Example:
        emitter = EventEmitter()
        unsubscribe = emitter.on("test-completed", print)
        emitter.emit("test-completed", "webcam", {"attempts": 1})
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._any: list[Callable[[str, tuple], Any]] = []

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to one event name.

        Returns:
            Callable that removes the subscription
        """
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def on_any(self, listener: Callable[[str, tuple], Any]) -> Callable[[], None]:
        """Subscribe to every event; the listener receives (event, args)."""
        self._any.append(listener)

        def _remove() -> None:
            if listener in self._any:
                self._any.remove(listener)

        return _remove

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, *args: Any) -> int:
        """Deliver an event to its listeners.

        Returns:
            Number of listeners that were called
        """
        called = 0
        for listener in list(self._listeners.get(event, ())):
            called += 1
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' raised")
        for listener in list(self._any):
            called += 1
            try:
                listener(event, args)
            except Exception:
                logger.exception(f"Catch-all listener raised on '{event}'")
        return called

    def listener_count(self, event: str | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values()) + len(self._any)
        return len(self._listeners.get(event, ()))

    def clear(self) -> None:
        self._listeners.clear()
        self._any.clear()
