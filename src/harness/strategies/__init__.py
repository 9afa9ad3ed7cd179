"""Device category strategies and the test catalogue."""

from constants import (
    KEYBOARD_EVENT_TYPES,
    MOUSE_EVENT_TYPES,
    TOUCH_EVENT_TYPES,
)
from devices.models import DeviceKind
from harness.config import HarnessConfig

from .base import DeviceStrategy, SessionResources
from .hardware import HardwareStrategy
from .input import InputStrategy
from .media import MediaStrategy


def create_strategy(test_name: str, config: HarnessConfig | None = None) -> DeviceStrategy:
    """Build the strategy for a catalogue test name.

    Args:
        test_name: One of webcam, microphone, speakers, keyboard, mouse,
            touch or battery
        config: Harness settings (defaults when omitted)

    Raises:
        ValueError: If test_name is not in the catalogue
    """
    config = config or HarnessConfig()
    history = config.input_event_history

    if test_name == "webcam":
        return MediaStrategy(
            "webcam",
            DeviceKind.VIDEO_INPUT,
            permission_category="camera",
            video_hints=config.video.model_dump(),
        )
    if test_name == "microphone":
        return MediaStrategy("microphone", DeviceKind.AUDIO_INPUT, permission_category="microphone")
    if test_name == "speakers":
        return MediaStrategy("speakers", DeviceKind.AUDIO_OUTPUT, stream_based=False)
    if test_name == "keyboard":
        return InputStrategy("keyboard", KEYBOARD_EVENT_TYPES, target="window", history=history)
    if test_name == "mouse":
        return InputStrategy("mouse", MOUSE_EVENT_TYPES, target="window", history=history)
    if test_name == "touch":
        return InputStrategy("touch", TOUCH_EVENT_TYPES, target="document", history=history)
    if test_name == "battery":
        return HardwareStrategy("battery", poll_interval_ms=config.hardware_poll_interval_ms)
    raise ValueError(f"Unknown test: {test_name}")


__all__ = [
    'DeviceStrategy',
    'SessionResources',
    'MediaStrategy',
    'InputStrategy',
    'HardwareStrategy',
    'create_strategy',
]
