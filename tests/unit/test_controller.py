"""Tests for TestLifecycleController."""

import asyncio

import pytest

from devices.enumeration import DeviceEnumerationService
from devices.memory import InMemoryPlatform
from devices.models import PermissionStatus
from devices.permissions import PermissionManager
from exceptions import (
    DeviceNotFoundError,
    EnumerationError,
    InvalidTransitionError,
    PermissionDeniedError,
    SessionAcquisitionError,
)
from harness.config import HarnessConfig
from harness.state import TestState


async def wait_until(predicate, attempts: int = 50) -> None:
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def event_names(recorded) -> list[str]:
    return [name for name, _ in recorded if name != "state-changed"]


# ============================================================================
# initialize()
# ============================================================================

class TestInitialize:
    """Tests for initialize()."""

    @pytest.mark.asyncio
    async def test_ready_with_session(self, make_controller, platform):
        """Test that a granted camera test becomes ready with a live stream."""
        controller = make_controller("webcam")

        state = await controller.initialize()

        assert state == TestState.READY
        flags = controller.flags
        assert flags.has_permission and flags.has_devices
        assert flags.has_active_session
        assert not flags.is_loading
        assert flags.current_error is None
        assert [d.id for d in controller.devices] == ["cam-front-0001"]
        assert len(platform.open_sessions) == 1

    @pytest.mark.asyncio
    async def test_no_auto_acquire(self, make_controller, platform):
        """Test that auto acquisition can be disabled."""
        controller = make_controller("webcam", config=HarnessConfig(auto_acquire=False))
        await controller.initialize()
        assert controller.state == TestState.READY
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_no_devices(self, make_controller, platform):
        """Test discovery without a matching device."""
        platform.set_devices([])
        controller = make_controller("webcam")

        state = await controller.initialize()

        assert state == TestState.NO_DEVICES
        assert isinstance(controller.session.last_error, DeviceNotFoundError)
        assert controller.flags.has_devices is False
        assert platform.calls["check_permission"] == 0

    @pytest.mark.asyncio
    async def test_no_devices_signal_waits_for_grace_window(self, make_controller, platform):
        """Test that the no-devices flag appears only after the grace window."""
        platform.set_devices([])
        controller = make_controller("webcam")
        seen = []
        controller.subscribe(lambda flags: seen.append(flags.show_no_devices_state))

        await controller.initialize()
        assert controller.flags.show_no_devices_state is False

        await asyncio.sleep(0.1)
        assert controller.flags.show_no_devices_state is True
        assert seen[-1] is True

    @pytest.mark.asyncio
    async def test_permission_prompt(self, make_controller, platform):
        """Test a camera whose permission has not been granted yet."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        controller = make_controller("webcam")

        state = await controller.initialize()

        assert state == TestState.PERMISSION_REQUIRED
        flags = controller.flags
        assert flags.needs_permission
        assert not flags.has_permission
        assert isinstance(flags.current_error, PermissionDeniedError)
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_idempotent(self, make_controller, platform):
        """Test that initialize() after ready is a no-op."""
        controller = make_controller("webcam")
        await controller.initialize()
        calls = dict(platform.calls)

        assert await controller.initialize() == TestState.READY
        assert dict(platform.calls) == calls

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_discovery(self, make_controller, platform):
        """Test that a second initialize() during the first returns at once."""
        controller = make_controller("webcam")

        first, second = await asyncio.gather(controller.initialize(), controller.initialize())

        assert second == TestState.INITIALIZING
        assert first == TestState.READY
        assert platform.calls["enumerate_devices"] == 1
        assert platform.calls["open_session"] == 1

    @pytest.mark.asyncio
    async def test_enumeration_failure_fails_test(self, make_controller, platform, recorded):
        """Test that a discovery error ends the test as failed."""
        platform.fail("enumerate_devices", RuntimeError("bus error"))
        controller = make_controller("webcam")

        state = await controller.initialize()

        assert state == TestState.FAILED
        assert isinstance(controller.session.last_error, EnumerationError)
        assert event_names(recorded) == ["test-failed"]
        assert recorded[-1][1][1]["error_kind"] == "enumeration"

    @pytest.mark.asyncio
    async def test_busy_device_fails_test(self, make_controller, platform, recorded):
        """Test that a device that cannot be opened fails the test."""
        platform.fail("open_session", OSError("device busy"))
        controller = make_controller("webcam")

        state = await controller.initialize()

        assert state == TestState.FAILED
        assert isinstance(controller.session.last_error, SessionAcquisitionError)
        assert controller.recorder.last_result.error_kind == "session-acquisition"


# ============================================================================
# request_permission()
# ============================================================================

class TestRequestPermission:
    """Tests for request_permission()."""

    @pytest.mark.asyncio
    async def test_granted(self, make_controller, platform):
        """Test that a granted request moves the test to ready."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        controller = make_controller("webcam")
        await controller.initialize()

        assert await controller.request_permission() is True
        assert controller.state == TestState.READY
        assert controller.flags.current_error is None
        assert controller.flags.has_active_session

    @pytest.mark.asyncio
    async def test_denied(self, make_controller, platform):
        """Test that a denied request leaves the test waiting on permission."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        platform.request_outcomes["camera"] = PermissionStatus.DENIED
        controller = make_controller("webcam")
        await controller.initialize()

        assert await controller.request_permission() is False
        assert controller.state == TestState.PERMISSION_REQUIRED
        assert "denied" in controller.session.last_error.message

    @pytest.mark.asyncio
    async def test_rejected_by_platform(self, make_controller, platform, permissions):
        """Test a request the platform rejects with an error."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        platform.fail("request_permission", PermissionError("blocked by policy"))
        controller = make_controller("webcam")
        await controller.initialize()

        assert await controller.request_permission() is False
        assert controller.state == TestState.PERMISSION_REQUIRED
        assert controller.permission.status == PermissionStatus.DENIED
        assert permissions.cached("camera").status == PermissionStatus.DENIED

    @pytest.mark.asyncio
    async def test_retry_after_denial(self, make_controller, platform):
        """Test that a later request can still succeed."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        platform.request_outcomes["camera"] = PermissionStatus.DENIED
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.request_permission()

        platform.request_outcomes["camera"] = PermissionStatus.GRANTED
        assert await controller.request_permission() is True
        assert controller.state == TestState.READY

    @pytest.mark.asyncio
    async def test_labels_refreshed_after_grant(self, camera, event_source, emitter, config):
        """Test that devices are re-discovered once labels become visible."""
        from harness.controller import TestLifecycleController
        from harness.strategies import create_strategy

        platform = InMemoryPlatform(devices=[camera], hide_labels_until_granted=True)
        controller = TestLifecycleController(
            "webcam",
            create_strategy("webcam", config),
            enumeration=DeviceEnumerationService(platform),
            permissions=PermissionManager(platform),
            platform=platform,
            event_source=event_source,
            emitter=emitter,
            config=config,
        )
        await controller.initialize()
        assert controller.devices[0].label == ""

        await controller.request_permission()

        assert controller.devices[0].label == "Front Camera"
        assert platform.calls["enumerate_devices"] == 2

    @pytest.mark.asyncio
    async def test_not_waiting_for_permission(self, make_controller):
        """Test that requesting from ready is rejected."""
        controller = make_controller("webcam")
        await controller.initialize()
        with pytest.raises(InvalidTransitionError):
            await controller.request_permission()

    @pytest.mark.asyncio
    async def test_exempt_category(self, make_controller):
        """Test that tests without a permission always report granted."""
        controller = make_controller("keyboard")
        assert await controller.request_permission() is True


# ============================================================================
# start() and terminal operations
# ============================================================================

class TestRun:
    """Tests for start(), complete(), fail() and skip()."""

    @pytest.mark.asyncio
    async def test_start_and_complete(self, make_controller, platform, recorded):
        """Test a full run of the webcam test."""
        controller = make_controller("webcam")
        await controller.initialize()

        assert await controller.start() == TestState.RUNNING
        result = controller.complete({"photo_taken": True})

        assert controller.state == TestState.COMPLETED
        assert result.attempts == 1
        assert result.metadata["photo_taken"] is True
        assert result.metadata["device_id"] == "cam-front-0001"
        assert event_names(recorded) == ["test-started", "test-completed"]
        assert platform.open_sessions == []
        assert controller.flags.has_active_session is False

    @pytest.mark.asyncio
    async def test_start_requires_ready(self, make_controller):
        """Test that start() before ready is rejected."""
        controller = make_controller("webcam")
        with pytest.raises(InvalidTransitionError, match="Cannot start"):
            await controller.start()

    @pytest.mark.asyncio
    async def test_start_twice(self, make_controller):
        """Test that start() while running is rejected."""
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.start()
        with pytest.raises(InvalidTransitionError):
            await controller.start()

    @pytest.mark.asyncio
    async def test_speakers_open_stream_on_start(self, make_controller, platform):
        """Test that a test without auto acquisition opens its session on start."""
        controller = make_controller("speakers")
        await controller.initialize()
        assert platform.open_sessions == []

        await controller.start()

        assert [ref.device_id for ref in platform.open_sessions] == ["spk-0001"]

    @pytest.mark.asyncio
    async def test_fail_with_reason(self, make_controller, recorded):
        """Test a failure reported by the user."""
        controller = make_controller("speakers")
        await controller.initialize()
        await controller.start()

        result = controller.fail("No sound heard")

        assert controller.state == TestState.FAILED
        assert result.reason == "No sound heard"
        payload = recorded[-1][1][1]
        assert payload["error"] == "No sound heard"

    @pytest.mark.asyncio
    async def test_skip(self, make_controller):
        """Test skipping a running test."""
        controller = make_controller("microphone")
        await controller.initialize()
        await controller.start()

        result = controller.skip("No microphone attached")

        assert controller.state == TestState.SKIPPED
        assert result.payload()["reason"] == "No microphone attached"

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, make_controller):
        """Test that no operation leaves a terminal state except reset()."""
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.start()
        controller.complete()

        with pytest.raises(InvalidTransitionError):
            controller.complete()
        with pytest.raises(InvalidTransitionError):
            controller.skip()
        with pytest.raises(InvalidTransitionError):
            await controller.start()
        assert await controller.initialize() == TestState.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_requires_running(self, make_controller):
        """Test that a session-based test cannot finish from ready."""
        controller = make_controller("webcam")
        await controller.initialize()
        with pytest.raises(InvalidTransitionError):
            controller.complete()

    @pytest.mark.asyncio
    async def test_battery_completes_from_ready(self, make_controller):
        """Test that the battery test reads the sensor without being started."""
        controller = make_controller("battery")

        assert await controller.initialize() == TestState.READY
        result = controller.complete()

        assert result.metadata["supported"] is True
        assert result.metadata["reading"]["level"] == 0.8
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_keyboard_captures_events(self, make_controller, event_source):
        """Test that key presses are captured while running."""
        controller = make_controller("keyboard")
        await controller.initialize()
        await controller.start()

        event_source.dispatch("window", "keydown", {"key": "a"})
        event_source.dispatch("window", "keyup", {"key": "a"})
        result = controller.complete()

        assert result.metadata["event_count"] == 2
        assert event_source.listener_count() == 0


# ============================================================================
# reset()
# ============================================================================

class TestReset:
    """Tests for reset()."""

    @pytest.mark.asyncio
    async def test_reset_releases_everything(self, make_controller, platform):
        """Test that reset() closes the stream and starts a fresh session."""
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.start()
        old_session = controller.session

        controller.reset()

        assert controller.state == TestState.UNINITIALIZED
        assert controller.session is not old_session
        assert controller.session.attempts == 0
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_reset_removes_listeners(self, make_controller, event_source):
        """Test that reset() in mid-session removes every listener."""
        controller = make_controller("keyboard")
        await controller.initialize()
        await controller.start()
        assert event_source.listener_count("window") == 2

        controller.reset()

        assert event_source.listener_count() == 0
        event_source.dispatch("window", "keydown", {"key": "a"})
        assert controller.strategy.total_events == 0

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, make_controller, platform):
        """Test that retry() runs a failed test again in a fresh session."""
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.start()
        controller.fail("Black image")
        old_session = controller.session

        state = await controller.retry()

        assert state == TestState.RUNNING
        assert controller.session is not old_session
        assert controller.session.attempts == 1
        assert len(platform.open_sessions) == 1

    @pytest.mark.asyncio
    async def test_retry_stops_short_of_start(self, make_controller, platform):
        """Test that retry() does not start a test that is not ready."""
        platform.permissions["camera"] = PermissionStatus.DENIED
        controller = make_controller("webcam")
        await controller.initialize()

        state = await controller.retry()

        assert state == TestState.PERMISSION_REQUIRED
        assert controller.session.attempts == 0
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_reset_during_acquisition(self, make_controller, platform):
        """Test that a stream opened after reset() is closed and ignored."""
        platform.hold("open_session")
        controller = make_controller("webcam")
        task = asyncio.create_task(controller.initialize())
        await wait_until(lambda: platform.calls["open_session"] == 1)
        assert controller.flags.is_loading

        controller.reset()
        platform.release("open_session")
        await task

        assert controller.state == TestState.UNINITIALIZED
        assert controller.flags.is_loading is False
        assert controller.flags.has_active_session is False
        assert len(platform.opened) == 1
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_reset_during_permission_request(self, make_controller, platform):
        """Test that a grant arriving after reset() does not touch the new session."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        controller = make_controller("webcam")
        await controller.initialize()
        platform.hold("request_permission")

        task = asyncio.create_task(controller.request_permission())
        await wait_until(lambda: platform.calls["request_permission"] == 1)
        controller.reset()
        platform.release("request_permission")

        assert await task is False
        assert controller.state == TestState.UNINITIALIZED
        assert platform.open_sessions == []

    @pytest.mark.asyncio
    async def test_reset_from_terminal_allows_rerun(self, make_controller):
        """Test that a finished test can be run again after reset()."""
        controller = make_controller("webcam")
        await controller.initialize()
        await controller.start()
        controller.complete()

        controller.reset()
        await controller.initialize()
        await controller.start()

        assert controller.state == TestState.RUNNING
        assert len(controller.recorder.results) == 1

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, make_controller, platform):
        """Test that leaving the context releases the session."""
        async with make_controller("webcam") as controller:
            await controller.initialize()
            assert len(platform.open_sessions) == 1
        assert platform.open_sessions == []
        assert controller.state == TestState.UNINITIALIZED


# ============================================================================
# Device selection
# ============================================================================

class TestDevices:
    """Tests for switch_device(), select_device() and refresh_devices()."""

    @pytest.mark.asyncio
    async def test_switch_device(self, make_controller, platform, second_camera, recorded):
        """Test that switching keeps a single open stream."""
        platform.set_devices(platform.devices + [second_camera])
        controller = make_controller("webcam")
        await controller.initialize()

        device = await controller.switch_device(second_camera.id)

        assert device == second_camera
        assert controller.selected_device_id == second_camera.id
        assert [ref.device_id for ref in platform.open_sessions] == [second_camera.id]
        assert "device-changed" in event_names(recorded)

    @pytest.mark.asyncio
    async def test_superseded_switch_does_not_select(
        self, make_controller, platform, camera, second_camera, recorded
    ):
        """Test that only the latest of two overlapping switches selects its device."""
        platform.set_devices(platform.devices + [second_camera])
        controller = make_controller("webcam")
        await controller.initialize()
        recorded.clear()

        platform.hold("open_session")
        earlier = asyncio.create_task(controller.switch_device(second_camera.id))
        await asyncio.sleep(0)
        later = asyncio.create_task(controller.switch_device(camera.id))
        await asyncio.sleep(0)
        platform.release("open_session")
        await asyncio.gather(earlier, later)

        changed = [args[0]["device_id"] for name, args in recorded if name == "device-changed"]
        assert changed == [camera.id]
        assert controller.selected_device_id == camera.id
        assert [ref.device_id for ref in platform.open_sessions] == [camera.id]
        assert controller.flags.is_loading is False

    @pytest.mark.asyncio
    async def test_switch_to_unknown_device(self, make_controller):
        """Test switching to a device that was not discovered."""
        controller = make_controller("webcam")
        await controller.initialize()
        with pytest.raises(DeviceNotFoundError):
            await controller.switch_device("cam-missing")

    @pytest.mark.asyncio
    async def test_switch_without_streams(self, make_controller):
        """Test that input tests have nothing to switch."""
        controller = make_controller("keyboard")
        await controller.initialize()
        with pytest.raises(InvalidTransitionError):
            await controller.switch_device("anything")

    @pytest.mark.asyncio
    async def test_selected_device_used_on_start(self, make_controller, platform, second_camera):
        """Test that select_device() picks the device opened by start()."""
        platform.set_devices(platform.devices + [second_camera])
        controller = make_controller("webcam", config=HarnessConfig(auto_acquire=False))
        await controller.initialize()

        controller.select_device(second_camera.id)
        await controller.start()

        assert [ref.device_id for ref in platform.open_sessions] == [second_camera.id]

    @pytest.mark.asyncio
    async def test_refresh_after_hot_plug(self, make_controller, platform, camera):
        """Test that plugging a device in recovers from no-devices."""
        platform.set_devices([])
        controller = make_controller("webcam")
        await controller.initialize()
        assert controller.state == TestState.NO_DEVICES

        platform.set_devices([camera])
        devices = await controller.refresh_devices()

        assert devices == [camera]
        assert controller.state == TestState.READY
        assert controller.flags.show_no_devices_state is False

    @pytest.mark.asyncio
    async def test_refresh_while_ready(self, make_controller, platform, second_camera):
        """Test that refreshing while ready only updates the list."""
        controller = make_controller("webcam")
        await controller.initialize()

        platform.set_devices(platform.devices + [second_camera])
        devices = await controller.refresh_devices()

        assert second_camera in devices
        assert controller.state == TestState.READY


# ============================================================================
# Observers
# ============================================================================

class TestObservers:
    """Tests for subscribe()."""

    @pytest.mark.asyncio
    async def test_observer_sees_each_transition(self, make_controller):
        """Test that observers are called with fresh flags."""
        controller = make_controller("keyboard")
        states = []
        unsubscribe = controller.subscribe(lambda flags: states.append(flags.state))

        await controller.initialize()
        unsubscribe()
        await controller.start()

        assert states == [TestState.INITIALIZING, TestState.READY]

    @pytest.mark.asyncio
    async def test_failing_observer_is_isolated(self, make_controller):
        """Test that a raising observer does not stop the transition."""
        controller = make_controller("keyboard")
        seen = []

        def broken(flags):
            raise RuntimeError("render failed")

        controller.subscribe(broken)
        controller.subscribe(lambda flags: seen.append(flags.state))

        await controller.initialize()

        assert controller.state == TestState.READY
        assert seen[-1] == TestState.READY
