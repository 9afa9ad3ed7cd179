"""Lifecycle controller driving one device test.

The controller owns a TestSession and its per-session resources (a
StreamManager and an EventListenerRegistry), delegates category behaviour
to a DeviceStrategy, and reports through a shared EventEmitter.

State graph:
    uninitialized -> initializing
    initializing -> permission-required | no-devices | ready | failed
    permission-required -> ready | no-devices | initializing | failed
    no-devices -> initializing
    ready -> running | completed | failed | skipped
    running -> completed | failed | skipped
    reset() returns any state to uninitialized with a fresh session.
"""

from collections.abc import Callable
from typing import Any

from constants import EVENT_DEVICE_CHANGED, EVENT_STATE_CHANGED
from devices.enumeration import DeviceEnumerationService
from devices.models import DeviceDescriptor, PermissionState
from devices.permissions import PermissionManager
from devices.platform import DevicePlatform, EventSource
from devices.streams import StreamManager
from exceptions import (
    DeviceNotFoundError,
    DeviceTestError,
    InvalidTransitionError,
    PermissionDeniedError,
    classify_error,
)
from harness.config import HarnessConfig
from harness.detection import DetectionGraceWindow
from harness.listeners import EventListenerRegistry
from harness.results import Outcome, TestResult, TestResultRecorder
from harness.state import StateFlags, TestSession, TestState, can_transition
from harness.strategies.base import DeviceStrategy, SessionResources
from utils.events import EventEmitter
from utils.logger import get_logger
from utils.time import monotonic_ms

logger = get_logger(__name__)

StateObserver = Callable[[StateFlags], Any]

_OUTCOME_STATES = {
    Outcome.COMPLETED: TestState.COMPLETED,
    Outcome.FAILED: TestState.FAILED,
    Outcome.SKIPPED: TestState.SKIPPED,
}


class TestLifecycleController:
    """Drives a device test through its lifecycle.

    Recoverable errors (permission denied, no devices) become states with
    ``current_error`` set; any other error fails the test with its
    resources released. A reset() while an operation is suspended bumps
    the controller epoch, and the resumed operation returns without
    touching the new session.

    Example:
        controller = TestLifecycleController(
            "webcam",
            create_strategy("webcam"),
            enumeration=enumeration,
            permissions=permissions,
            platform=platform,
            event_source=events,
        )
        await controller.initialize()
        await controller.start()
        controller.complete({"photo_taken": True})
    """

    __test__ = False

    def __init__(
        self,
        test_name: str,
        strategy: DeviceStrategy,
        *,
        enumeration: DeviceEnumerationService,
        permissions: PermissionManager,
        platform: DevicePlatform,
        event_source: EventSource,
        emitter: EventEmitter | None = None,
        config: HarnessConfig | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.test_name = test_name
        self.strategy = strategy
        self.enumeration = enumeration
        self.permissions = permissions
        self.platform = platform
        self.event_source = event_source
        self.emitter = emitter or EventEmitter()
        self.config = config or HarnessConfig()
        self._clock = clock

        self.recorder = TestResultRecorder(test_name, self.emitter, clock)
        self._observers: list[StateObserver] = []
        self._grace = DetectionGraceWindow(
            self.config.detection_grace_ms,
            on_change=lambda _visible: self._notify(),
        )
        self._epoch = 0
        self._busy = 0
        self._new_session()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> TestState:
        return self.session.state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def flags(self) -> StateFlags:
        """Snapshot of the computed UI flags."""
        state = self.session.state
        permission_ok = self.strategy.permission_category is None or (
            self.permission is not None and self.permission.granted
        )
        return StateFlags(
            state=state,
            is_loading=state == TestState.INITIALIZING or self._busy > 0,
            has_permission=permission_ok,
            needs_permission=state == TestState.PERMISSION_REQUIRED,
            has_devices=self.strategy.device_kind is None or bool(self.devices),
            show_no_devices_state=state == TestState.NO_DEVICES and self._grace.visible,
            has_active_session=self.strategy.has_active_session(self.resources),
            current_error=self.session.last_error,
        )

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Call observer with fresh flags after every state change.

        Returns:
            Callable that removes the observer
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> TestState:
        """Discover devices, check permission and become ready.

        A no-op once initialization is under way or finished, unless the
        session is waiting on a permission or on devices.
        """
        state = self.session.state
        if state not in (
            TestState.UNINITIALIZED,
            TestState.PERMISSION_REQUIRED,
            TestState.NO_DEVICES,
        ):
            logger.debug(f"{self.session.label}: initialize ignored in state {state.value}")
            return state

        force = state == TestState.NO_DEVICES
        epoch = self._epoch
        self.session.last_error = None
        self._transition(TestState.INITIALIZING)

        try:
            kind = self.strategy.device_kind
            if kind is not None:
                devices = await self.enumeration.enumerate(kind, force=force)
                if self._stale(epoch, "initialize"):
                    return self.state
                if not devices:
                    self._enter_no_devices()
                    return self.state
                self._set_devices(devices)

            category = self.strategy.permission_category
            if category is not None:
                permission = await self.permissions.check(category)
                if self._stale(epoch, "initialize"):
                    return self.state
                self.permission = permission
                if not permission.granted:
                    self._enter_permission_required(PermissionDeniedError(
                        f"{category} permission is {permission.status.value}",
                        category=category,
                        status=permission.status.value,
                    ))
                    return self.state

            await self._become_ready(epoch)
        except Exception as e:
            if not self._stale(epoch, "initialize"):
                self._handle_error(e, "initialize")
        return self.state

    async def request_permission(self) -> bool:
        """Ask for the category permission and become ready when granted.

        Returns:
            True if the permission is granted

        Raises:
            InvalidTransitionError: Unless in permission-required
        """
        category = self.strategy.permission_category
        if category is None:
            return True
        self._require("request permission", TestState.PERMISSION_REQUIRED)

        epoch = self._epoch
        self._set_busy(1)
        try:
            permission = await self.permissions.request(category)
        except Exception as e:
            if self._stale(epoch, "request_permission"):
                return False
            error = classify_error(e, operation="permission request")
            if isinstance(error, PermissionDeniedError):
                self.permission = self.permissions.cached(category)
                self._enter_permission_required(error)
            else:
                self._handle_error(error, "request_permission")
            return False
        finally:
            self._done_busy(epoch)

        if self._stale(epoch, "request_permission"):
            return False
        self.permission = permission
        if not permission.granted:
            self._enter_permission_required(PermissionDeniedError(
                f"{category} permission was {permission.status.value}",
                category=category,
                status=permission.status.value,
            ))
            return False

        try:
            await self._become_ready(epoch)
        except Exception as e:
            if not self._stale(epoch, "request_permission"):
                self._handle_error(e, "request_permission")
        return permission.granted

    async def start(self) -> TestState:
        """Run the test: acquire the session and begin event capture.

        Raises:
            InvalidTransitionError: Unless ready
        """
        self._require("start", TestState.READY)
        epoch = self._epoch
        self.session.attempts += 1
        self.session.started_at = self._clock()
        self._transition(TestState.RUNNING)
        self.recorder.started(self.session)

        try:
            if not self.strategy.has_active_session(self.resources):
                await self._acquire(epoch)
                if self._stale(epoch, "start"):
                    return self.state
            self.strategy.capture_events(self.resources)
        except Exception as e:
            if not self._stale(epoch, "start"):
                self._handle_error(e, "start")
        return self.state

    def complete(self, metadata: dict[str, Any] | None = None) -> TestResult:
        """Finish the test as passed."""
        self._require_finishable("complete")
        return self._terminate(Outcome.COMPLETED, metadata=metadata)

    def fail(self, reason: str = "", metadata: dict[str, Any] | None = None) -> TestResult:
        """Finish the test as failed by user or UI decision."""
        self._require_finishable("fail")
        return self._terminate(
            Outcome.FAILED,
            metadata=metadata,
            reason=reason or None,
            error=self.session.last_error,
        )

    def skip(self, reason: str = "", metadata: dict[str, Any] | None = None) -> TestResult:
        """Finish the test as skipped."""
        self._require_finishable("skip")
        return self._terminate(Outcome.SKIPPED, metadata=metadata, reason=reason or None)

    def reset(self) -> None:
        """Release everything and start over with a fresh session."""
        previous = self.session.state
        self._epoch += 1
        self._grace.disarm()
        self._release_resources()
        self.strategy.reset()
        self._new_session()
        logger.info(f"{self.test_name}: reset from {previous.value}")
        self._notify()

    async def retry(self) -> TestState:
        """Reset, initialize again and start when the test becomes ready."""
        self.reset()
        state = await self.initialize()
        if state == TestState.READY:
            state = await self.start()
        return state

    async def switch_device(self, device_id: str) -> DeviceDescriptor:
        """Move the live stream to another device.

        Raises:
            InvalidTransitionError: Unless ready or running, or when the
                strategy has no device streams
            DeviceNotFoundError: If device_id is not among the discovered devices
        """
        switch = getattr(self.strategy, "switch_device", None)
        if switch is None:
            raise InvalidTransitionError("switch device", self.state.value)
        self._require("switch device", TestState.READY, TestState.RUNNING)
        device = self._find_device(device_id)

        epoch = self._epoch
        self._set_busy(1)
        try:
            handle = await switch(self.resources, device_id)
        except Exception as e:
            if not self._stale(epoch, "switch_device"):
                self._handle_error(e, "switch_device")
            return device
        finally:
            self._done_busy(epoch)

        if self._stale(epoch, "switch_device"):
            return device
        if handle is None:
            # A later switch took over the stream
            logger.debug(f"Switch to {device_id} superseded")
            return device
        self._select(device)
        return device

    def select_device(self, device_id: str) -> DeviceDescriptor:
        """Choose the device the next acquisition opens.

        Raises:
            DeviceNotFoundError: If device_id is not among the discovered devices
        """
        device = self._find_device(device_id)
        self._select(device)
        return device

    async def refresh_devices(self) -> list[DeviceDescriptor]:
        """Re-run discovery after an external change such as a hot-plug.

        Before the test is ready this retries initialization; afterwards
        it only refreshes the device list.
        """
        kind = self.strategy.device_kind
        if kind is None:
            return []
        self.enumeration.invalidate(kind)

        if self.state in (
            TestState.UNINITIALIZED,
            TestState.PERMISSION_REQUIRED,
            TestState.NO_DEVICES,
        ):
            await self.initialize()
            return list(self.devices)

        if self.state in (TestState.READY, TestState.RUNNING):
            epoch = self._epoch
            try:
                devices = await self.enumeration.enumerate(kind, force=True)
            except Exception as e:
                if not self._stale(epoch, "refresh_devices"):
                    self._handle_error(e, "refresh_devices")
                return list(self.devices)
            if not self._stale(epoch, "refresh_devices"):
                self._set_devices(devices)
                self._notify()
        return list(self.devices)

    def close(self) -> None:
        """Reset and drop every state observer."""
        self.reset()
        self._observers.clear()

    async def __aenter__(self) -> "TestLifecycleController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_session(self) -> None:
        self.session = TestSession(self.test_name, created_at=self._clock())
        self.streams = StreamManager(self.platform, owner=self.session.label)
        self.registry = EventListenerRegistry(self.event_source, owner=self.session.label)
        self.resources = SessionResources(
            session=self.session,
            streams=self.streams,
            registry=self.registry,
            platform=self.platform,
            emitter=self.emitter,
        )
        self.devices: list[DeviceDescriptor] = []
        self.selected_device_id: str | None = None
        self.permission: PermissionState | None = None
        self._busy = 0

    async def _become_ready(self, epoch: int) -> None:
        kind = self.strategy.device_kind
        if kind is not None and self.strategy.permission_category is not None:
            if not self.devices or any(not d.label for d in self.devices):
                # Labels are only reported once the permission is granted
                devices = await self.enumeration.enumerate(kind, force=True)
                if self._stale(epoch, "initialize"):
                    return
                if not devices:
                    self._enter_no_devices()
                    return
                self._set_devices(devices)

        self.session.last_error = None
        self._transition(TestState.READY)

        if self.config.auto_acquire and self.strategy.acquire_on_ready:
            await self._acquire(epoch)

    async def _acquire(self, epoch: int) -> Any:
        self._set_busy(1)
        try:
            ref = await self.strategy.acquire_session(self.resources, self.selected_device_id)
        finally:
            self._done_busy(epoch)
        if not self._stale(epoch, "acquire"):
            self._notify()
        return ref

    def _terminate(
        self,
        outcome: Outcome,
        metadata: dict[str, Any] | None = None,
        reason: str | None = None,
        error: DeviceTestError | None = None,
    ) -> TestResult:
        summary = self.strategy.summarize()
        self._epoch += 1
        self._busy = 0
        self._release_resources()

        self.session.completed_at = self._clock()
        if error is not None:
            self.session.last_error = error
        self.session.result_metadata = {**summary, **(metadata or {})}
        self._transition(_OUTCOME_STATES[outcome])

        return self.recorder.record(
            self.session,
            outcome,
            metadata=self.session.result_metadata,
            error=error,
            reason=reason,
        )

    def _release_resources(self) -> None:
        try:
            self.strategy.release_session(self.resources)
        except Exception:
            logger.exception(f"{self.session.label}: strategy release failed")
        self.streams.release()
        self.registry.close()

    def _handle_error(self, exc: BaseException, operation: str) -> None:
        error = classify_error(
            exc,
            operation=operation,
            device_kind=self.strategy.device_kind.value if self.strategy.device_kind else None,
        )
        state = self.session.state

        if isinstance(error, PermissionDeniedError) and can_transition(state, TestState.PERMISSION_REQUIRED):
            self._enter_permission_required(error)
            return
        if isinstance(error, DeviceNotFoundError) and can_transition(state, TestState.NO_DEVICES):
            self._enter_no_devices(error)
            return

        logger.error(f"{self.session.label}: {operation} failed: {error}")
        if can_transition(state, TestState.FAILED):
            self._terminate(Outcome.FAILED, error=error)
        else:
            self.session.last_error = error
            self._notify()

    def _enter_permission_required(self, error: PermissionDeniedError) -> None:
        self.session.last_error = error
        if self.session.state == TestState.PERMISSION_REQUIRED:
            self._notify()
        else:
            self._transition(TestState.PERMISSION_REQUIRED)

    def _enter_no_devices(self, error: DeviceNotFoundError | None = None) -> None:
        kind = self.strategy.device_kind
        self.session.last_error = error or DeviceNotFoundError(
            f"No {kind.value if kind else 'matching'} devices found",
            device_kind=kind.value if kind else None,
        )
        self.devices = []
        self._transition(TestState.NO_DEVICES)

    def _transition(self, target: TestState) -> None:
        current = self.session.state
        if not can_transition(current, target):
            raise InvalidTransitionError(f"move to {target.value}", current.value)
        self.session.state = target
        logger.info(f"{self.session.label}: {current.value} -> {target.value}")

        if target == TestState.NO_DEVICES:
            self._grace.arm()
        elif current == TestState.NO_DEVICES:
            self._grace.disarm()
        self._notify()

    def _require(self, operation: str, *allowed: TestState) -> None:
        if self.session.state not in allowed:
            raise InvalidTransitionError(operation, self.session.state.value)

    def _require_finishable(self, operation: str) -> None:
        allowed = [TestState.RUNNING]
        if not self.strategy.requires_session:
            allowed.append(TestState.READY)
        self._require(operation, *allowed)

    def _stale(self, epoch: int, operation: str) -> bool:
        if epoch != self._epoch:
            logger.debug(f"{self.test_name}: {operation} superseded (epoch {epoch} -> {self._epoch})")
            return True
        return False

    def _set_busy(self, delta: int) -> None:
        self._busy = max(0, self._busy + delta)
        self._notify()

    def _done_busy(self, epoch: int) -> None:
        # A reset or terminal transition already cleared the counter
        if epoch == self._epoch:
            self._set_busy(-1)

    def _set_devices(self, devices: list[DeviceDescriptor]) -> None:
        self.devices = list(devices)
        if self.selected_device_id not in {d.id for d in self.devices}:
            self.selected_device_id = None

    def _find_device(self, device_id: str) -> DeviceDescriptor:
        for device in self.devices:
            if device.id == device_id:
                return device
        kind = self.strategy.device_kind
        raise DeviceNotFoundError(
            f"Device '{device_id}' is not available",
            device_kind=kind.value if kind else None,
            device_id=device_id,
        )

    def _select(self, device: DeviceDescriptor) -> None:
        self.selected_device_id = device.id
        self.emitter.emit(EVENT_DEVICE_CHANGED, {"device_id": device.id, "device": device})
        self._notify()

    def _notify(self) -> None:
        flags = self.flags
        for observer in list(self._observers):
            try:
                observer(flags)
            except Exception:
                logger.exception(f"{self.test_name}: state observer raised")
        self.emitter.emit(EVENT_STATE_CHANGED, flags)
