"""Device discovery, permissions and stream ownership.

Example usage:
    from devices import (
        DeviceEnumerationService,
        DeviceKind,
        InMemoryPlatform,
        PermissionManager,
    )

    platform = InMemoryPlatform(devices=[...])
    enumeration = DeviceEnumerationService(platform)
    cameras = await enumeration.enumerate(DeviceKind.VIDEO_INPUT)
"""

from .enumeration import DeviceEnumerationService
from .memory import InMemoryPlatform
from .models import (
    DeviceDescriptor,
    DeviceKind,
    InputEvent,
    PermissionState,
    PermissionStatus,
    SessionRef,
    StreamConstraints,
    StreamHandle,
    TrackRef,
    TrackState,
)
from .permissions import PermissionManager
from .platform import DevicePlatform, EventSource, LocalEventSource
from .streams import StreamManager

__all__ = [
    # Models
    'DeviceDescriptor',
    'DeviceKind',
    'InputEvent',
    'PermissionState',
    'PermissionStatus',
    'SessionRef',
    'StreamConstraints',
    'StreamHandle',
    'TrackRef',
    'TrackState',
    # Platform
    'DevicePlatform',
    'EventSource',
    'LocalEventSource',
    'InMemoryPlatform',
    # Services
    'DeviceEnumerationService',
    'PermissionManager',
    'StreamManager',
]
