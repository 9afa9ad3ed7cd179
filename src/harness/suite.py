"""Test suite: shared services and one controller per catalogue test."""

import asyncio
from collections.abc import Iterable
from typing import Any

from devices.enumeration import DeviceEnumerationService
from devices.permissions import PermissionManager
from devices.platform import DevicePlatform, EventSource
from harness.config import HarnessConfig
from harness.controller import TestLifecycleController
from harness.results import TestResult
from harness.state import TestState
from harness.strategies import (
    HardwareStrategy,
    InputStrategy,
    create_strategy,
)
from utils.events import EventEmitter
from utils.logger import get_logger

logger = get_logger(__name__)


class DeviceTestSuite:
    """Runs catalogue tests against one platform.

    The device enumeration service and the permission manager are created
    once and shared by every controller the suite hands out, so device
    lists and permission grants are cached across tests.

    Example:
        suite = DeviceTestSuite(platform, event_source, config)
        controller = suite.controller("webcam")
        await controller.initialize()
    """

    def __init__(
        self,
        platform: DevicePlatform,
        event_source: EventSource,
        config: HarnessConfig | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.platform = platform
        self.event_source = event_source
        self.config = config or HarnessConfig()
        self.emitter = emitter or EventEmitter()
        self.enumeration = DeviceEnumerationService(
            platform, ttl_ms=self.config.device_cache_ttl_ms
        )
        self.permissions = PermissionManager(
            platform, ttl_ms=self.config.permission_cache_ttl_ms
        )
        self._controllers: dict[str, TestLifecycleController] = {}

    @property
    def controllers(self) -> dict[str, TestLifecycleController]:
        return dict(self._controllers)

    def controller(self, test_name: str) -> TestLifecycleController:
        """Return the controller for test_name, creating it on first use."""
        controller = self._controllers.get(test_name)
        if controller is None:
            controller = TestLifecycleController(
                test_name,
                create_strategy(test_name, self.config),
                enumeration=self.enumeration,
                permissions=self.permissions,
                platform=self.platform,
                event_source=self.event_source,
                emitter=self.emitter,
                config=self.config,
            )
            self._controllers[test_name] = controller
        return controller

    async def run_headless(
        self,
        test_name: str,
        duration_s: float = 1.0,
        request_permission: bool = False,
    ) -> dict[str, Any]:
        """Run one test without a user and judge it from what was captured.

        Args:
            test_name: Catalogue test name
            duration_s: How long the test runs before it is judged
            request_permission: Request the permission if it is missing

        Returns:
            Report row with the final state, flags and result (if any)
        """
        controller = self.controller(test_name)
        await controller.initialize()

        if controller.state == TestState.PERMISSION_REQUIRED and request_permission:
            await controller.request_permission()

        if controller.state == TestState.READY:
            await controller.start()
            if controller.state == TestState.RUNNING:
                await asyncio.sleep(duration_s)
                if controller.state == TestState.RUNNING:
                    self._judge(controller)

        return self._report_row(controller)

    async def run_all(
        self,
        test_names: Iterable[str] | None = None,
        duration_s: float = 1.0,
        request_permission: bool = False,
    ) -> list[dict[str, Any]]:
        """Run tests one after another; returns a report row per test."""
        rows = []
        for name in test_names or self.config.tests:
            logger.info(f"Running {name}")
            rows.append(await self.run_headless(name, duration_s, request_permission))
        return rows

    def results(self) -> list[TestResult]:
        """Every result recorded by the suite's controllers."""
        recorded = []
        for controller in self._controllers.values():
            recorded.extend(controller.recorder.results)
        return sorted(recorded, key=lambda r: r.timestamp)

    def reset_all(self) -> None:
        """Reset every controller and drop the shared device and permission caches."""
        for controller in self._controllers.values():
            controller.reset()
        self.enumeration.invalidate()
        self.permissions.invalidate()
        logger.info(f"Reset {len(self._controllers)} test(s)")

    def close(self) -> None:
        for controller in self._controllers.values():
            controller.close()
        self._controllers.clear()

    async def __aenter__(self) -> "DeviceTestSuite":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @staticmethod
    def _judge(controller: TestLifecycleController) -> None:
        strategy = controller.strategy
        summary = strategy.summarize()

        if isinstance(strategy, InputStrategy):
            if summary["event_count"] > 0:
                controller.complete()
            else:
                controller.skip("No input events captured")
        elif isinstance(strategy, HardwareStrategy):
            if summary["supported"]:
                controller.complete()
            else:
                controller.skip("Sensor reported no reading")
        elif controller.flags.has_active_session:
            controller.complete()
        else:
            controller.fail("Device session was not acquired")

    @staticmethod
    def _report_row(controller: TestLifecycleController) -> dict[str, Any]:
        result = controller.recorder.last_result
        error = controller.session.last_error
        return {
            "test_name": controller.test_name,
            "state": controller.state.value,
            "devices": [d.to_dict() for d in controller.devices],
            "result": result.to_dict() if result is not None else None,
            "error": error.to_json() if error is not None else None,
        }
