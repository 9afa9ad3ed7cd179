"""Scriptable in-memory platform for simulation and tests."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

from devices.models import (
    DeviceDescriptor,
    DeviceKind,
    PermissionState,
    PermissionStatus,
    SessionRef,
    StreamConstraints,
    TrackRef,
)
from devices.platform import DevicePlatform
from utils.logger import get_logger

logger = get_logger(__name__)

# Permission category that unlocks device labels for each kind
LABEL_CATEGORIES = {
    DeviceKind.VIDEO_INPUT: "camera",
    DeviceKind.AUDIO_INPUT: "microphone",
}


class InMemoryPlatform(DevicePlatform):
    """DevicePlatform backed by plain Python state.

    Everything the framework can observe is scriptable: the device list,
    permission states and request outcomes, failures per operation, and
    gates that hold an operation until the test releases it. Every call is
    counted in ``calls``.

    Example:
        platform = InMemoryPlatform(
            devices=[DeviceDescriptor("cam-1", DeviceKind.VIDEO_INPUT, "Front")],
            permissions={"camera": PermissionStatus.GRANTED},
        )
        platform.hold("open_session")
        task = asyncio.create_task(manager.acquire(constraints))
        ...
        platform.release("open_session")
    """

    def __init__(
        self,
        devices: list[DeviceDescriptor] | None = None,
        permissions: dict[str, PermissionStatus] | None = None,
        request_outcomes: dict[str, PermissionStatus] | None = None,
        sensors: dict[str, dict[str, Any]] | None = None,
        hide_labels_until_granted: bool = False,
    ):
        """Initialize the platform.

        Args:
            devices: Devices reported by enumerate_devices()
            permissions: Current status per category (default PROMPT)
            request_outcomes: Status a request_permission() call moves a
                category to (default GRANTED)
            sensors: Readings returned by read_sensor()
            hide_labels_until_granted: Report empty labels for camera and
                microphone devices until their permission is granted
        """
        self.devices: list[DeviceDescriptor] = list(devices or [])
        self.permissions: dict[str, PermissionStatus] = dict(permissions or {})
        self.request_outcomes: dict[str, PermissionStatus] = dict(request_outcomes or {})
        self.sensors: dict[str, dict[str, Any]] = dict(sensors or {})
        self.hide_labels_until_granted = hide_labels_until_granted

        self.calls: Counter[str] = Counter()
        self.opened: list[SessionRef] = []
        self.closed: list[SessionRef] = []

        self._errors: dict[str, BaseException] = {}
        self._gates: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Scripting helpers
    # ------------------------------------------------------------------

    def fail(self, operation: str, error: BaseException | None) -> None:
        """Make every call to operation raise error (None clears it)."""
        if error is None:
            self._errors.pop(operation, None)
        else:
            self._errors[operation] = error

    def hold(self, operation: str) -> None:
        """Block calls to operation until release() is called."""
        self._gates[operation] = asyncio.Event()

    def release(self, operation: str) -> None:
        gate = self._gates.pop(operation, None)
        if gate is not None:
            gate.set()

    def set_devices(self, devices: list[DeviceDescriptor]) -> None:
        self.devices = list(devices)

    @property
    def open_sessions(self) -> list[SessionRef]:
        """Sessions opened and not yet closed."""
        closed_ids = {ref.id for ref in self.closed}
        return [ref for ref in self.opened if ref.id not in closed_ids]

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        gate = self._gates.get(operation)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        error = self._errors.get(operation)
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # DevicePlatform
    # ------------------------------------------------------------------

    async def enumerate_devices(self, kind: DeviceKind) -> list[DeviceDescriptor]:
        await self._enter("enumerate_devices")
        result = []
        for device in self.devices:
            category = LABEL_CATEGORIES.get(device.kind)
            hidden = (
                self.hide_labels_until_granted
                and category is not None
                and self.permissions.get(category) != PermissionStatus.GRANTED
            )
            if hidden:
                device = DeviceDescriptor(device.id, device.kind, "", device.group_id)
            result.append(device)
        return result

    async def check_permission(self, category: str) -> PermissionState:
        await self._enter("check_permission")
        status = self.permissions.get(category, PermissionStatus.PROMPT)
        return PermissionState(category=category, status=status)

    async def request_permission(self, category: str) -> PermissionState:
        await self._enter("request_permission")
        status = self.request_outcomes.get(category, PermissionStatus.GRANTED)
        self.permissions[category] = status
        return PermissionState(category=category, status=status)

    async def open_session(self, constraints: StreamConstraints) -> SessionRef:
        await self._enter("open_session")
        device_id = constraints.device_id
        if device_id is None:
            device_id = next(
                (d.id for d in self.devices if d.kind == constraints.kind), None
            )
        label = next((d.label for d in self.devices if d.id == device_id), "")
        ref = SessionRef(device_id=device_id)
        ref.tracks.append(
            TrackRef(id=f"{ref.id}-0", kind=constraints.kind, label=label)
        )
        self.opened.append(ref)
        return ref

    def close_session(self, ref: SessionRef) -> None:
        self.calls["close_session"] += 1
        for track in ref.tracks:
            track.stop()
        self.closed.append(ref)

    async def read_sensor(self, name: str) -> dict[str, Any] | None:
        await self._enter("read_sensor")
        reading = self.sensors.get(name)
        return dict(reading) if reading is not None else None
