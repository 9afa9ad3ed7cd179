"""Device, permission and session data types."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from utils.time import get_timestamp_ms


class DeviceKind(str, Enum):
    """Kinds of device the platform can enumerate."""
    VIDEO_INPUT = "video-input"
    AUDIO_INPUT = "audio-input"
    AUDIO_OUTPUT = "audio-output"
    OTHER = "other"


class PermissionStatus(str, Enum):
    """Status of a capability grant."""
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass(frozen=True)
class DeviceDescriptor:
    """A discovered device.

    Labels are usually empty until the matching permission is granted.
    """
    id: str
    kind: DeviceKind
    label: str = ""
    group_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "group_id": self.group_id,
        }


@dataclass(frozen=True)
class PermissionState:
    """Result of a permission check or request."""
    category: str
    status: PermissionStatus
    checked_at: int = field(default_factory=get_timestamp_ms)

    @property
    def granted(self) -> bool:
        return self.status == PermissionStatus.GRANTED


@dataclass(frozen=True)
class StreamConstraints:
    """Constraints handed to the platform when opening a session.

    Attributes:
        kind: Device kind to open
        device_id: Exact device to open, or None for the platform default
        width: Ideal video width (video only)
        height: Ideal video height (video only)
        extra: Platform-specific constraint values
    """
    kind: DeviceKind
    device_id: str | None = None
    width: int | None = None
    height: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def with_device(self, device_id: str | None) -> "StreamConstraints":
        """Return a copy bound to another device."""
        return replace(self, device_id=device_id, extra=dict(self.extra))


class TrackState(str, Enum):
    LIVE = "live"
    ENDED = "ended"


@dataclass
class TrackRef:
    """One media track of an open session."""
    id: str
    kind: DeviceKind
    label: str = ""
    state: TrackState = TrackState.LIVE

    def stop(self) -> None:
        self.state = TrackState.ENDED

    @property
    def live(self) -> bool:
        return self.state == TrackState.LIVE


@dataclass
class SessionRef:
    """An open platform session as returned by open_session().

    Attributes:
        id: Session identifier
        device_id: Device the session is bound to
        tracks: Media tracks of the session
        native: Platform object backing the session (stream, capture handle)
    """
    device_id: str | None
    tracks: list[TrackRef] = field(default_factory=list)
    native: Any = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class StreamHandle:
    """Live stream owned by a StreamManager on behalf of one test session."""
    generation: int
    owner: str
    constraints: StreamConstraints
    session: SessionRef

    @property
    def tracks(self) -> list[TrackRef]:
        return self.session.tracks

    @property
    def device_id(self) -> str | None:
        return self.constraints.device_id

    @property
    def live(self) -> bool:
        return any(track.live for track in self.tracks)


@dataclass(frozen=True)
class InputEvent:
    """A captured global input event."""
    type: str
    timestamp_ms: int
    data: dict[str, Any] = field(default_factory=dict)
    device_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "timestamp_ms": self.timestamp_ms,
            "data": dict(self.data),
            "device_id": self.device_id,
        }
