"""Device test lifecycle harness.

Example usage:
    from harness import DeviceTestSuite, load_config

    suite = DeviceTestSuite(platform, event_source, load_config("configs/harness.yaml"))
    webcam = suite.controller("webcam")
    await webcam.initialize()
    await webcam.start()
    webcam.complete({"photo_taken": True})
"""

from .config import HarnessConfig, VideoHints, load_config
from .controller import TestLifecycleController
from .detection import DetectionGraceWindow
from .listeners import EventListenerRegistry, ListenerHandle
from .results import Outcome, TestResult, TestResultRecorder
from .state import TRANSITIONS, StateFlags, TestSession, TestState, can_transition
from .strategies import (
    DeviceStrategy,
    HardwareStrategy,
    InputStrategy,
    MediaStrategy,
    SessionResources,
    create_strategy,
)
from .suite import DeviceTestSuite

__all__ = [
    # Configuration
    'HarnessConfig',
    'VideoHints',
    'load_config',
    # Lifecycle
    'TestLifecycleController',
    'TestSession',
    'TestState',
    'StateFlags',
    'TRANSITIONS',
    'can_transition',
    'DetectionGraceWindow',
    'EventListenerRegistry',
    'ListenerHandle',
    # Results
    'Outcome',
    'TestResult',
    'TestResultRecorder',
    # Strategies
    'DeviceStrategy',
    'SessionResources',
    'MediaStrategy',
    'InputStrategy',
    'HardwareStrategy',
    'create_strategy',
    # Suite
    'DeviceTestSuite',
]
