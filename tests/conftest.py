"""Common fixtures for tests."""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from devices.enumeration import DeviceEnumerationService
from devices.memory import InMemoryPlatform
from devices.models import DeviceDescriptor, DeviceKind, PermissionStatus
from devices.permissions import PermissionManager
from devices.platform import LocalEventSource
from harness.config import HarnessConfig
from harness.controller import TestLifecycleController
from harness.strategies import create_strategy
from utils.events import EventEmitter


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# ============================================================================
# Device Fixtures
# ============================================================================

@pytest.fixture
def camera() -> DeviceDescriptor:
    return DeviceDescriptor("cam-front-0001", DeviceKind.VIDEO_INPUT, "Front Camera", "grp-a")


@pytest.fixture
def second_camera() -> DeviceDescriptor:
    return DeviceDescriptor("cam-usb-0002", DeviceKind.VIDEO_INPUT, "USB Camera", "grp-b")


@pytest.fixture
def microphone() -> DeviceDescriptor:
    return DeviceDescriptor("mic-0001", DeviceKind.AUDIO_INPUT, "Built-in Microphone", "grp-a")


@pytest.fixture
def speaker() -> DeviceDescriptor:
    return DeviceDescriptor("spk-0001", DeviceKind.AUDIO_OUTPUT, "Speakers", "grp-a")


@pytest.fixture
def battery() -> DeviceDescriptor:
    return DeviceDescriptor("battery", DeviceKind.OTHER, "Battery")


@pytest.fixture
def platform(camera, microphone, speaker, battery) -> InMemoryPlatform:
    """Platform with one device of every kind and media permissions granted."""
    return InMemoryPlatform(
        devices=[camera, microphone, speaker, battery],
        permissions={
            "camera": PermissionStatus.GRANTED,
            "microphone": PermissionStatus.GRANTED,
        },
        sensors={"battery": {"level": 0.8, "charging": True}},
    )


@pytest.fixture
def event_source() -> LocalEventSource:
    return LocalEventSource()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> HarnessConfig:
    """Defaults with a short grace window and no sensor polling."""
    return HarnessConfig(detection_grace_ms=50, hardware_poll_interval_ms=0)


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorded(emitter) -> list[tuple[str, tuple]]:
    """Every (event, args) emitted on the shared emitter."""
    events: list[tuple[str, tuple]] = []
    emitter.on_any(lambda event, args: events.append((event, args)))
    return events


@pytest.fixture
def enumeration(platform, config) -> DeviceEnumerationService:
    return DeviceEnumerationService(platform, ttl_ms=config.device_cache_ttl_ms)


@pytest.fixture
def permissions(platform, config) -> PermissionManager:
    return PermissionManager(platform, ttl_ms=config.permission_cache_ttl_ms)


@pytest.fixture
def make_controller(platform, event_source, enumeration, permissions, emitter, config):
    """Factory building a controller for a catalogue test name."""

    def _make(test_name: str = "webcam", **overrides: Any) -> TestLifecycleController:
        cfg = overrides.pop("config", config)
        strategy = overrides.pop("strategy", None) or create_strategy(test_name, cfg)
        return TestLifecycleController(
            test_name,
            strategy,
            enumeration=overrides.pop("enumeration", enumeration),
            permissions=overrides.pop("permissions", permissions),
            platform=overrides.pop("platform", platform),
            event_source=overrides.pop("event_source", event_source),
            emitter=overrides.pop("emitter", emitter),
            config=cfg,
            **overrides,
        )

    return _make


@pytest.fixture
def config_file(tmp_path):
    """Factory writing a YAML config file and returning its path."""

    def _write(content: str) -> Path:
        path = tmp_path / "harness.yaml"
        path.write_text(content)
        return path

    return _write
