"""DevicePlatform implementation for the local host.

Cameras are probed with OpenCV, audio devices are discovered and opened
with sounddevice, and the battery is read through psutil. Every blocking
call runs in the default executor.
"""

import asyncio
import os
import platform
from typing import Any

import cv2
import psutil

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
from exceptions import DeviceNotFoundError, SessionAcquisitionError
from utils.logger import get_logger

logger = get_logger(__name__)

# OS group that grants device access on Linux
LINUX_PERMISSION_GROUPS = {
    "camera": "video",
    "microphone": "audio",
}


def _sounddevice():
    """Import sounddevice on first use (it loads PortAudio at import time)."""
    import sounddevice as sd
    return sd


def _parse_index(device_id: str | None, prefix: str) -> int | None:
    if device_id is None:
        return None
    if not device_id.startswith(prefix):
        raise DeviceNotFoundError(
            f"Device id '{device_id}' does not belong to this host",
            device_id=device_id,
        )
    return int(device_id[len(prefix):])


class SystemPlatform(DevicePlatform):
    """Host platform backed by OpenCV, sounddevice and psutil.

    Attributes:
        max_cameras: Highest camera index probed during enumeration
    """

    VIDEO_PREFIX = "video:"
    AUDIO_INPUT_PREFIX = "audio-in:"
    AUDIO_OUTPUT_PREFIX = "audio-out:"
    BATTERY_ID = "battery"

    def __init__(self, max_cameras: int = 5):
        self.max_cameras = max_cameras

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def enumerate_devices(self, kind: DeviceKind) -> list[DeviceDescriptor]:
        loop = asyncio.get_running_loop()
        if kind == DeviceKind.VIDEO_INPUT:
            return await loop.run_in_executor(None, self._probe_cameras)
        if kind in (DeviceKind.AUDIO_INPUT, DeviceKind.AUDIO_OUTPUT):
            return await loop.run_in_executor(None, self._query_audio, kind)
        if kind == DeviceKind.OTHER:
            battery = await loop.run_in_executor(None, psutil.sensors_battery)
            if battery is None:
                return []
            return [DeviceDescriptor(self.BATTERY_ID, DeviceKind.OTHER, "Battery")]
        return []

    def _probe_cameras(self) -> list[DeviceDescriptor]:
        devices = []
        for index in range(self.max_cameras):
            cap = cv2.VideoCapture(index, cv2.CAP_ANY)
            try:
                if not cap.isOpened():
                    continue
                backend = cap.getBackendName()
                devices.append(DeviceDescriptor(
                    id=f"{self.VIDEO_PREFIX}{index}",
                    kind=DeviceKind.VIDEO_INPUT,
                    label=f"Camera {index} ({backend})",
                    group_id=backend,
                ))
            finally:
                cap.release()
        logger.debug(f"Probed {self.max_cameras} camera indices, found {len(devices)}")
        return devices

    def _query_audio(self, kind: DeviceKind) -> list[DeviceDescriptor]:
        sd = _sounddevice()
        if kind == DeviceKind.AUDIO_INPUT:
            channels_key, prefix = "max_input_channels", self.AUDIO_INPUT_PREFIX
        else:
            channels_key, prefix = "max_output_channels", self.AUDIO_OUTPUT_PREFIX

        devices = []
        for index, info in enumerate(sd.query_devices()):
            if info[channels_key] > 0:
                devices.append(DeviceDescriptor(
                    id=f"{prefix}{index}",
                    kind=kind,
                    label=info["name"],
                    group_id=str(info.get("hostapi", "")),
                ))
        return devices

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def check_permission(self, category: str) -> PermissionState:
        return PermissionState(category=category, status=self._permission_status(category))

    async def request_permission(self, category: str) -> PermissionState:
        # The host has no prompt; report what the OS currently allows.
        status = self._permission_status(category)
        if status != PermissionStatus.GRANTED:
            logger.warning(
                f"Access to {category} is not granted for this user; "
                f"add the user to the '{LINUX_PERMISSION_GROUPS.get(category)}' group"
            )
        return PermissionState(category=category, status=status)

    @staticmethod
    def _permission_status(category: str) -> PermissionStatus:
        group_name = LINUX_PERMISSION_GROUPS.get(category)
        if group_name is None or platform.system() != "Linux":
            # Other hosts gate access when the device is opened
            return PermissionStatus.GRANTED
        if os.geteuid() == 0:
            return PermissionStatus.GRANTED

        import grp
        try:
            group = grp.getgrnam(group_name)
        except KeyError:
            return PermissionStatus.GRANTED
        if group.gr_gid in os.getgroups():
            return PermissionStatus.GRANTED
        return PermissionStatus.DENIED

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def open_session(self, constraints: StreamConstraints) -> SessionRef:
        loop = asyncio.get_running_loop()
        if constraints.kind == DeviceKind.VIDEO_INPUT:
            return await loop.run_in_executor(None, self._open_camera, constraints)
        if constraints.kind in (DeviceKind.AUDIO_INPUT, DeviceKind.AUDIO_OUTPUT):
            return await loop.run_in_executor(None, self._open_audio, constraints)
        raise SessionAcquisitionError(
            f"Devices of kind '{constraints.kind.value}' have no session",
            device_id=constraints.device_id,
        )

    def _open_camera(self, constraints: StreamConstraints) -> SessionRef:
        index = _parse_index(constraints.device_id, self.VIDEO_PREFIX) or 0
        cap = cv2.VideoCapture(index, cv2.CAP_ANY)
        if not cap.isOpened():
            cap.release()
            raise SessionAcquisitionError(
                f"Camera {index} could not be opened",
                device_id=constraints.device_id,
            )
        if constraints.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        if constraints.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)

        device_id = f"{self.VIDEO_PREFIX}{index}"
        ref = SessionRef(device_id=device_id, native=cap)
        ref.tracks.append(TrackRef(
            id=f"{ref.id}-video",
            kind=DeviceKind.VIDEO_INPUT,
            label=f"Camera {index} ({cap.getBackendName()})",
        ))
        logger.info(
            f"Opened camera {index} at "
            f"{int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))}"
        )
        return ref

    def _open_audio(self, constraints: StreamConstraints) -> SessionRef:
        sd = _sounddevice()
        is_input = constraints.kind == DeviceKind.AUDIO_INPUT
        prefix = self.AUDIO_INPUT_PREFIX if is_input else self.AUDIO_OUTPUT_PREFIX
        index = _parse_index(constraints.device_id, prefix)

        stream_cls = sd.InputStream if is_input else sd.OutputStream
        try:
            stream = stream_cls(
                device=index,
                channels=constraints.extra.get("channels", 1),
                dtype="int16",
            )
            stream.start()
        except sd.PortAudioError as e:
            raise SessionAcquisitionError(
                f"Audio device could not be opened: {e}",
                device_id=constraints.device_id,
                cause=e,
            ) from e

        info = sd.query_devices(stream.device)
        ref = SessionRef(device_id=constraints.device_id or f"{prefix}{stream.device}", native=stream)
        ref.tracks.append(TrackRef(
            id=f"{ref.id}-audio",
            kind=constraints.kind,
            label=info["name"],
        ))
        logger.info(f"Opened audio stream on '{info['name']}' at {stream.samplerate:.0f}Hz")
        return ref

    def close_session(self, ref: SessionRef) -> None:
        native = ref.native
        if native is None:
            return
        if (ref.device_id or "").startswith(self.VIDEO_PREFIX):
            native.release()
        else:
            native.stop()
            native.close()
        ref.native = None

    # ------------------------------------------------------------------
    # Sensors
    # ------------------------------------------------------------------

    async def read_sensor(self, name: str) -> dict[str, Any] | None:
        if name != "battery":
            return None
        loop = asyncio.get_running_loop()
        battery = await loop.run_in_executor(None, psutil.sensors_battery)
        if battery is None:
            return None
        discharging = battery.secsleft
        if discharging in (psutil.POWER_TIME_UNLIMITED, psutil.POWER_TIME_UNKNOWN):
            discharging = None
        return {
            "level": round(battery.percent / 100, 3),
            "charging": bool(battery.power_plugged),
            "discharging_time": discharging,
        }
