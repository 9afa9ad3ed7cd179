"""Strategy for keyboard, mouse and touch tests."""

from collections import Counter, deque
from typing import Any

from constants import EVENT_INPUT, INPUT_EVENT_HISTORY, INPUT_RECENT_ACTIVITY_MS
from devices.models import InputEvent
from harness.strategies.base import DeviceStrategy, SessionResources
from utils.logger import get_logger
from utils.time import get_timestamp_ms

logger = get_logger(__name__)

# Event attributes copied into InputEvent.data
EVENT_FIELDS = (
    "key", "code", "repeat",
    "button", "buttons", "client_x", "client_y", "delta_y",
    "touches",
)


def _event_data(event: Any) -> dict[str, Any]:
    if event is None:
        return {}
    if isinstance(event, dict):
        return {k: event[k] for k in EVENT_FIELDS if k in event}
    return {k: getattr(event, k) for k in EVENT_FIELDS if hasattr(event, k)}


class InputStrategy(DeviceStrategy):
    """Listens to global input events while the test runs.

    Captured events go into a ring buffer of ``history`` entries and are
    re-emitted as input-event notifications.
    """

    def __init__(
        self,
        category: str,
        event_types: tuple[str, ...],
        target: str = "window",
        history: int = INPUT_EVENT_HISTORY,
    ):
        self.category = category
        self.event_types = tuple(event_types)
        self.target = target
        self.events: deque[InputEvent] = deque(maxlen=history)
        self.total_events = 0
        self.last_activity_ms: int | None = None
        self._handle_ids: list[int] = []
        self._emitter = None

    async def acquire_session(
        self,
        resources: SessionResources,
        device_id: str | None = None,
    ) -> list[int]:
        self.release_session(resources)
        self._emitter = resources.emitter
        for event_type in self.event_types:
            handle_id = resources.registry.add(
                self.target, event_type, self._make_handler(event_type, device_id)
            )
            self._handle_ids.append(handle_id)
        logger.debug(f"{self.category}: listening to {', '.join(self.event_types)}")
        return list(self._handle_ids)

    def release_session(self, resources: SessionResources, ref: Any = None) -> None:
        for handle_id in self._handle_ids:
            resources.registry.remove(handle_id)
        self._handle_ids.clear()

    def has_active_session(self, resources: SessionResources) -> bool:
        return bool(self._handle_ids) and len(resources.registry) > 0

    def record(self, event_type: str, data: dict[str, Any] | None = None, device_id: str | None = None) -> InputEvent:
        """Store an input event and announce it."""
        event = InputEvent(
            type=event_type,
            timestamp_ms=get_timestamp_ms(),
            data=dict(data or {}),
            device_id=device_id,
        )
        self.events.append(event)
        self.total_events += 1
        self.last_activity_ms = event.timestamp_ms
        if self._emitter is not None:
            self._emitter.emit(EVENT_INPUT, event)
        return event

    @property
    def event_summary(self) -> dict[str, int]:
        """Counts by event type over the buffered events."""
        return dict(Counter(event.type for event in self.events))

    @property
    def recent_activity(self) -> bool:
        """True when the last event arrived within INPUT_RECENT_ACTIVITY_MS."""
        if self.last_activity_ms is None:
            return False
        return get_timestamp_ms() - self.last_activity_ms <= INPUT_RECENT_ACTIVITY_MS

    def summarize(self) -> dict[str, Any]:
        return {
            "event_count": len(self.events),
            "event_summary": self.event_summary,
            "total_events": self.total_events,
            "last_activity_ms": self.last_activity_ms,
            "recent_activity": self.recent_activity,
        }

    def reset(self) -> None:
        self.events.clear()
        self.total_events = 0
        self.last_activity_ms = None
        self._handle_ids.clear()
        self._emitter = None

    def _make_handler(self, event_type: str, device_id: str | None):
        def handler(event: Any) -> None:
            self.record(event_type, _event_data(event), device_id)
        return handler
