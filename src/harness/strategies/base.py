"""Base class for device category strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from devices.models import DeviceKind
from devices.platform import DevicePlatform
from devices.streams import StreamManager
from harness.listeners import EventListenerRegistry
from harness.state import TestSession
from utils.events import EventEmitter


@dataclass
class SessionResources:
    """Per-session resources a strategy acquires through.

    Recreated together with the TestSession on every reset.
    """
    session: TestSession
    streams: StreamManager
    registry: EventListenerRegistry
    platform: DevicePlatform
    emitter: EventEmitter


class DeviceStrategy(ABC):
    """Category-specific behaviour plugged into the lifecycle controller.

    Class attributes describe what the controller has to do before the
    test is ready:

    Attributes:
        category: Test name this strategy serves
        device_kind: Kind to enumerate, or None to skip discovery
        permission_category: Permission to check, or None if exempt
        stream_based: Whether the session is a media stream
        requires_session: Whether the test must be started before it can end
        acquire_on_ready: Whether the session opens as soon as the test is ready
    """

    category: str = ""
    device_kind: DeviceKind | None = None
    permission_category: str | None = None
    stream_based: bool = False
    requires_session: bool = True
    acquire_on_ready: bool = False

    @abstractmethod
    async def acquire_session(
        self,
        resources: SessionResources,
        device_id: str | None = None,
    ) -> Any:
        """Open the session for a test run. Returns a session reference."""

    @abstractmethod
    def release_session(self, resources: SessionResources, ref: Any = None) -> None:
        """Release everything acquire_session() opened. Must not raise."""

    @abstractmethod
    def has_active_session(self, resources: SessionResources) -> bool:
        """Whether a session is currently open."""

    def capture_events(self, resources: SessionResources) -> None:
        """Begin capturing category events once the test is running."""

    def summarize(self) -> dict[str, Any]:
        """Metadata merged into the recorded result."""
        return {}

    def reset(self) -> None:
        """Drop data collected during the previous session."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.category!r})"
