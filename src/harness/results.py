"""Standardized test result reporting."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from constants import (
    EVENT_TEST_COMPLETED,
    EVENT_TEST_FAILED,
    EVENT_TEST_SKIPPED,
    EVENT_TEST_STARTED,
)
from exceptions import DeviceTestError
from harness.state import TestSession
from utils.events import EventEmitter
from utils.logger import get_logger
from utils.time import get_elapsed_ms, get_timestamp_ms, monotonic_ms

logger = get_logger(__name__)


class Outcome(str, Enum):
    """Terminal outcome of a test."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


OUTCOME_EVENTS = {
    Outcome.COMPLETED: EVENT_TEST_COMPLETED,
    Outcome.FAILED: EVENT_TEST_FAILED,
    Outcome.SKIPPED: EVENT_TEST_SKIPPED,
}


@dataclass
class TestResult:
    """Recorded result of one test run.

    Attributes:
        test_name: Name of the test
        outcome: Terminal outcome
        duration_ms: Time from start (or creation) to the terminal transition
        attempts: Number of start() calls in the session
        metadata: Strategy summary merged with caller metadata
        error: Error message for failed tests
        error_kind: ErrorKind value for failed tests
        reason: Reason given for failed or skipped tests
        timestamp: Wall-clock time of recording (ms since epoch)
    """
    __test__ = False

    test_name: str
    outcome: Outcome
    duration_ms: float
    attempts: int
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_kind: str | None = None
    reason: str | None = None
    timestamp: int = field(default_factory=get_timestamp_ms)

    def payload(self) -> dict[str, Any]:
        """Return the notification payload for this outcome."""
        payload: dict[str, Any] = {
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "metadata": dict(self.metadata),
        }
        if self.outcome == Outcome.FAILED:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {"test_name": self.test_name, "timestamp": self.timestamp, **self.payload()}


class TestResultRecorder:
    """Builds results on terminal transitions and emits them.

    Every result goes out through one EventEmitter as test-completed,
    test-failed or test-skipped with (test_name, payload).
    """

    __test__ = False

    def __init__(
        self,
        test_name: str,
        emitter: EventEmitter,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.test_name = test_name
        self.emitter = emitter
        self._clock = clock
        self.results: list[TestResult] = []

    @property
    def last_result(self) -> TestResult | None:
        return self.results[-1] if self.results else None

    def started(self, session: TestSession) -> None:
        self.emitter.emit(EVENT_TEST_STARTED, self.test_name)
        logger.info(f"Test {self.test_name} started (attempt {session.attempts})")

    def record(
        self,
        session: TestSession,
        outcome: Outcome,
        metadata: dict[str, Any] | None = None,
        error: DeviceTestError | None = None,
        reason: str | None = None,
    ) -> TestResult:
        """Record and emit the result of a terminal transition."""
        since = session.started_at if session.started_at is not None else session.created_at
        if session.completed_at is not None:
            duration = max(0.0, session.completed_at - since)
        else:
            duration = get_elapsed_ms(since, self._clock)

        if outcome == Outcome.FAILED and reason is None and error is not None:
            reason = error.message

        result = TestResult(
            test_name=self.test_name,
            outcome=outcome,
            duration_ms=round(duration, 3),
            attempts=session.attempts,
            metadata=dict(metadata or {}),
            error=str(error) if error is not None else (reason if outcome == Outcome.FAILED else None),
            error_kind=error.kind.value if error is not None else None,
            reason=reason,
        )
        self.results.append(result)

        log = logger.warning if outcome == Outcome.FAILED else logger.info
        log(f"Test {self.test_name} {outcome.value} after {result.duration_ms:.0f}ms")
        self.emitter.emit(OUTCOME_EVENTS[outcome], self.test_name, result.payload())
        return result
