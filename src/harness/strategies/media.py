"""Strategy for camera, microphone and speaker tests."""

from typing import Any

from devices.models import DeviceKind, StreamConstraints, StreamHandle
from harness.strategies.base import DeviceStrategy, SessionResources
from utils.logger import get_logger

logger = get_logger(__name__)


class MediaStrategy(DeviceStrategy):
    """Acquires a media stream through the session's StreamManager.

    Args:
        category: Test name (e.g. "webcam")
        device_kind: Kind of device the stream is opened on
        permission_category: Permission guarding the device, None if exempt
        stream_based: Whether the stream opens as soon as the test is ready
        video_hints: Resolution hints applied to video constraints
    """

    def __init__(
        self,
        category: str,
        device_kind: DeviceKind,
        permission_category: str | None = None,
        stream_based: bool = True,
        video_hints: dict[str, int] | None = None,
    ):
        self.category = category
        self.device_kind = device_kind
        self.permission_category = permission_category
        self.stream_based = stream_based
        self.acquire_on_ready = stream_based
        self.video_hints = dict(video_hints or {})
        self._acquisitions = 0
        self._last_handle: StreamHandle | None = None

    def build_constraints(self, device_id: str | None = None) -> StreamConstraints:
        """Build the constraints used to open a stream on device_id."""
        if self.device_kind == DeviceKind.VIDEO_INPUT:
            return StreamConstraints(
                kind=self.device_kind,
                device_id=device_id,
                width=self.video_hints.get("ideal_width"),
                height=self.video_hints.get("ideal_height"),
                extra={
                    "min_width": self.video_hints.get("min_width"),
                    "min_height": self.video_hints.get("min_height"),
                },
            )
        return StreamConstraints(
            kind=self.device_kind,
            device_id=device_id,
            extra={"channels": 1},
        )

    async def acquire_session(
        self,
        resources: SessionResources,
        device_id: str | None = None,
    ) -> StreamHandle | None:
        handle = await resources.streams.acquire(self.build_constraints(device_id))
        self._remember(handle)
        return handle

    async def switch_device(
        self,
        resources: SessionResources,
        device_id: str,
    ) -> StreamHandle | None:
        """Move the stream to another device, releasing the current one first."""
        handle = await resources.streams.switch_device(
            device_id, self.build_constraints(device_id)
        )
        self._remember(handle)
        return handle

    def release_session(self, resources: SessionResources, ref: Any = None) -> None:
        resources.streams.release()

    def has_active_session(self, resources: SessionResources) -> bool:
        return resources.streams.has_handle

    def summarize(self) -> dict[str, Any]:
        handle = self._last_handle
        summary: dict[str, Any] = {"acquisitions": self._acquisitions}
        if handle is not None:
            summary["device_id"] = handle.session.device_id
            summary["tracks"] = [track.label for track in handle.tracks]
        return summary

    def reset(self) -> None:
        self._acquisitions = 0
        self._last_handle = None

    def _remember(self, handle: StreamHandle | None) -> None:
        if handle is None:
            return
        self._acquisitions += 1
        self._last_handle = handle
        logger.debug(f"{self.category}: stream generation {handle.generation} active")
