"""Test lifecycle states and the session record."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from exceptions import DeviceTestError
from utils.time import monotonic_ms


class TestState(str, Enum):
    """Lifecycle states of a device test."""
    __test__ = False

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    PERMISSION_REQUIRED = "permission-required"
    NO_DEVICES = "no-devices"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


# Allowed forward transitions; reset() is handled separately.
TRANSITIONS: dict[TestState, frozenset[TestState]] = {
    TestState.UNINITIALIZED: frozenset({TestState.INITIALIZING}),
    TestState.INITIALIZING: frozenset({
        TestState.PERMISSION_REQUIRED,
        TestState.NO_DEVICES,
        TestState.READY,
        TestState.FAILED,
    }),
    TestState.PERMISSION_REQUIRED: frozenset({
        TestState.READY,
        TestState.NO_DEVICES,
        TestState.INITIALIZING,
        TestState.FAILED,
    }),
    TestState.NO_DEVICES: frozenset({TestState.INITIALIZING}),
    TestState.READY: frozenset({
        TestState.RUNNING,
        TestState.COMPLETED,
        TestState.FAILED,
        TestState.SKIPPED,
    }),
    TestState.RUNNING: frozenset({
        TestState.COMPLETED,
        TestState.FAILED,
        TestState.SKIPPED,
    }),
    TestState.COMPLETED: frozenset(),
    TestState.FAILED: frozenset(),
    TestState.SKIPPED: frozenset(),
}

TERMINAL_STATES = frozenset({TestState.COMPLETED, TestState.FAILED, TestState.SKIPPED})


def can_transition(current: TestState, target: TestState) -> bool:
    return target in TRANSITIONS[current]


@dataclass
class TestSession:
    """Mutable record of one test run. Recreated by reset()."""
    __test__ = False

    test_name: str
    state: TestState = TestState.UNINITIALIZED
    created_at: float = field(default_factory=monotonic_ms)
    started_at: float | None = None
    completed_at: float | None = None
    attempts: int = 0
    last_error: DeviceTestError | None = None
    result_metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def label(self) -> str:
        return f"{self.test_name}#{self.id}"


@dataclass(frozen=True)
class StateFlags:
    """Snapshot of the values a UI renders from."""
    state: TestState
    is_loading: bool
    has_permission: bool
    needs_permission: bool
    has_devices: bool
    show_no_devices_state: bool
    has_active_session: bool
    current_error: DeviceTestError | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_loading": self.is_loading,
            "has_permission": self.has_permission,
            "needs_permission": self.needs_permission,
            "has_devices": self.has_devices,
            "show_no_devices_state": self.show_no_devices_state,
            "has_active_session": self.has_active_session,
            "current_error": str(self.current_error) if self.current_error else None,
        }
