"""Per-session registry of disposable subscriptions."""

import itertools
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from devices.platform import EventSource
from utils.logger import get_logger

logger = get_logger(__name__)

_handle_ids = itertools.count(1)


@dataclass
class ListenerHandle:
    """One registered subscription and the callable that undoes it."""
    id: int
    target: str
    type: str
    dispose: Callable[[], Any]


class EventListenerRegistry:
    """Tracks every listener a test session registers.

    remove_all() disposes handles in registration order. A disposer that
    raises is logged and the remaining handles are still disposed. After
    close() the registry refuses new handles.
    """

    def __init__(self, event_source: EventSource, owner: str = "session"):
        self.event_source = event_source
        self.owner = owner
        self._handles: dict[int, ListenerHandle] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def handles(self) -> list[ListenerHandle]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def add(self, target: str, type: str, handler: Callable[[Any], Any]) -> int:
        """Subscribe handler through the event source.

        Returns:
            Handle id for remove()

        Raises:
            RuntimeError: If the registry is closed
        """
        self._ensure_open()
        unsubscribe = self.event_source.subscribe(target, type, handler)
        return self._register(target, type, unsubscribe)

    def track(self, dispose: Callable[[], Any], target: str = "task", type: str = "custom") -> int:
        """Register an arbitrary disposer (poll tasks, hardware subscriptions)."""
        self._ensure_open()
        return self._register(target, type, dispose)

    def remove(self, handle_id: int) -> bool:
        """Dispose one handle. Returns False if it was not registered."""
        handle = self._handles.pop(handle_id, None)
        if handle is None:
            return False
        self._dispose(handle)
        return True

    def remove_all(self) -> int:
        """Dispose every handle. Returns the number disposed."""
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            self._dispose(handle)
        if handles:
            logger.debug(f"{self.owner}: disposed {len(handles)} listener(s)")
        return len(handles)

    def close(self) -> None:
        self.remove_all()
        self._closed = True

    def _register(self, target: str, type: str, dispose: Callable[[], Any]) -> int:
        handle = ListenerHandle(id=next(_handle_ids), target=target, type=type, dispose=dispose)
        self._handles[handle.id] = handle
        return handle.id

    def _dispose(self, handle: ListenerHandle) -> None:
        try:
            handle.dispose()
        except Exception:
            logger.warning(
                f"{self.owner}: disposer for {handle.target}:{handle.type} raised",
                exc_info=True,
            )

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"{self.owner}: listener registry is closed")
