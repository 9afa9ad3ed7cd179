"""Strategy for hardware sensor tests such as the battery."""

import asyncio
from typing import Any

from constants import BATTERY_EVENT_TYPES, HARDWARE_POLL_INTERVAL_MS
from devices.models import DeviceKind
from harness.strategies.base import DeviceStrategy, SessionResources
from utils.logger import get_logger
from utils.time import get_timestamp_ms

logger = get_logger(__name__)


class HardwareStrategy(DeviceStrategy):
    """Follows a hardware sensor through events and optional polling.

    The sensor needs no permission and the test may end without being
    started: the session opens as soon as the test is ready.

    Args:
        category: Test name (e.g. "battery")
        sensor: Sensor name passed to DevicePlatform.read_sensor()
        event_types: Event types subscribed on the sensor target
        poll_interval_ms: Interval between sensor reads, 0 disables polling
    """

    device_kind = DeviceKind.OTHER
    permission_category = None
    stream_based = False
    requires_session = False
    acquire_on_ready = True

    def __init__(
        self,
        category: str = "battery",
        sensor: str = "battery",
        event_types: tuple[str, ...] = BATTERY_EVENT_TYPES,
        poll_interval_ms: float = HARDWARE_POLL_INTERVAL_MS,
    ):
        self.category = category
        self.sensor = sensor
        self.event_types = tuple(event_types)
        self.poll_interval_ms = poll_interval_ms
        self.latest: dict[str, Any] | None = None
        self.reading_count = 0
        self.last_update_ms: int | None = None
        self._handle_ids: list[int] = []

    async def acquire_session(
        self,
        resources: SessionResources,
        device_id: str | None = None,
    ) -> list[int]:
        self.release_session(resources)
        registry = resources.registry
        for event_type in self.event_types:
            self._handle_ids.append(
                registry.add(self.sensor, event_type, self._on_event)
            )

        reading = await resources.platform.read_sensor(self.sensor)
        if registry.closed:
            # Session ended while the first read was pending
            self._handle_ids.clear()
            return []
        if reading is not None:
            self.update(reading)

        if self.poll_interval_ms > 0:
            task = asyncio.get_running_loop().create_task(self._poll(resources))
            self._handle_ids.append(registry.track(task.cancel, self.sensor, "poll"))
        return list(self._handle_ids)

    def release_session(self, resources: SessionResources, ref: Any = None) -> None:
        for handle_id in self._handle_ids:
            resources.registry.remove(handle_id)
        self._handle_ids.clear()

    def has_active_session(self, resources: SessionResources) -> bool:
        return bool(self._handle_ids) and len(resources.registry) > 0

    def update(self, reading: dict[str, Any]) -> None:
        """Store a sensor reading."""
        self.latest = dict(reading)
        self.reading_count += 1
        self.last_update_ms = get_timestamp_ms()
        logger.debug(f"{self.category}: reading {self.reading_count} {self.latest}")

    def summarize(self) -> dict[str, Any]:
        return {
            "supported": self.latest is not None,
            "reading": dict(self.latest) if self.latest is not None else None,
            "reading_count": self.reading_count,
            "last_update_ms": self.last_update_ms,
        }

    def reset(self) -> None:
        self.latest = None
        self.reading_count = 0
        self.last_update_ms = None
        self._handle_ids.clear()

    def _on_event(self, event: Any) -> None:
        if isinstance(event, dict):
            merged = dict(self.latest or {})
            merged.update(event)
            self.update(merged)

    async def _poll(self, resources: SessionResources) -> None:
        interval = self.poll_interval_ms / 1000
        while not resources.registry.closed:
            await asyncio.sleep(interval)
            try:
                reading = await resources.platform.read_sensor(self.sensor)
            except Exception as e:
                logger.warning(f"{self.category}: sensor read failed: {e}")
                continue
            if reading is not None:
                self.update(reading)
