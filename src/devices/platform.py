"""Platform capability API consumed by the framework.

A DevicePlatform answers device discovery, permission and session
questions; an EventSource delivers global events (keyboard, mouse, touch,
hardware notifications). Both are injected so tests can substitute the
in-memory implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from devices.models import (
    DeviceDescriptor,
    DeviceKind,
    PermissionState,
    SessionRef,
    StreamConstraints,
)
from utils.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Any]
Unsubscribe = Callable[[], None]


class DevicePlatform(ABC):
    """Host capability API.

    Implementations may raise any exception; the framework classifies them
    with exceptions.classify_error().
    """

    @abstractmethod
    async def enumerate_devices(self, kind: DeviceKind) -> list[DeviceDescriptor]:
        """Discover devices of a kind. May return devices of other kinds."""

    @abstractmethod
    async def check_permission(self, category: str) -> PermissionState:
        """Query a permission without prompting."""

    @abstractmethod
    async def request_permission(self, category: str) -> PermissionState:
        """Request a permission, prompting the user where the host does."""

    @abstractmethod
    async def open_session(self, constraints: StreamConstraints) -> SessionRef:
        """Open a live session for the constraints."""

    @abstractmethod
    def close_session(self, ref: SessionRef) -> None:
        """Close a session previously returned by open_session()."""

    async def read_sensor(self, name: str) -> dict[str, Any] | None:
        """Read a hardware sensor. Returns None when unsupported."""
        return None


class EventSource(ABC):
    """Global event source (window/document/navigator in a browser host)."""

    @abstractmethod
    def subscribe(self, target: str, type: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe handler to events of type on target.

        Returns:
            Callable that removes the subscription
        """


class LocalEventSource(EventSource):
    """In-process event source; events are delivered by dispatch()."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], list[EventHandler]] = defaultdict(list)

    def subscribe(self, target: str, type: str, handler: EventHandler) -> Unsubscribe:
        key = (target, type)
        self._handlers[key].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[key]

        return unsubscribe

    def dispatch(self, target: str, type: str, event: Any = None) -> int:
        """Deliver an event to every handler subscribed to (target, type).

        Returns:
            Number of handlers called
        """
        handlers = list(self._handlers.get((target, type), ()))
        for handler in handlers:
            handler(event)
        logger.debug(f"Dispatched {target}:{type} to {len(handlers)} handler(s)")
        return len(handlers)

    def listener_count(self, target: str | None = None, type: str | None = None) -> int:
        return sum(
            len(handlers)
            for (t, ty), handlers in self._handlers.items()
            if (target is None or t == target) and (type is None or ty == type)
        )
