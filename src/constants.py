"""Application-wide constants.

This module centralizes magic numbers and configuration values
to improve code maintainability and reduce hard-coded values.
"""

# ============================================================================
# Cache Settings
# ============================================================================

DEVICE_CACHE_TTL_MS = 30000  # Device lists are re-discovered after 30s
PERMISSION_CACHE_TTL_MS = 60000  # Permission states are re-queried after 60s

# ============================================================================
# Lifecycle Settings
# ============================================================================

# Delay before the UI is told no devices were found (hot-plug settling)
DETECTION_GRACE_MS = 2000

# Acquire the media session as soon as a stream-based test becomes ready
AUTO_ACQUIRE_SESSION = True

# ============================================================================
# Strategy Settings
# ============================================================================

INPUT_EVENT_HISTORY = 100  # Input events kept in the ring buffer
INPUT_RECENT_ACTIVITY_MS = 2000  # Window in which the last event counts as recent
HARDWARE_POLL_INTERVAL_MS = 5000  # 0 disables sensor polling

# Video constraint hints
VIDEO_MIN_WIDTH = 320
VIDEO_MIN_HEIGHT = 240
VIDEO_IDEAL_WIDTH = 1280
VIDEO_IDEAL_HEIGHT = 720

# ============================================================================
# Notification Events
# ============================================================================

EVENT_TEST_STARTED = "test-started"
EVENT_TEST_COMPLETED = "test-completed"
EVENT_TEST_FAILED = "test-failed"
EVENT_TEST_SKIPPED = "test-skipped"
EVENT_DEVICE_CHANGED = "device-changed"
EVENT_INPUT = "input-event"
EVENT_STATE_CHANGED = "state-changed"

# ============================================================================
# Test Catalogue
# ============================================================================

MEDIA_TESTS = ("webcam", "microphone", "speakers")
INPUT_TESTS = ("keyboard", "mouse", "touch")
HARDWARE_TESTS = ("battery",)
ALL_TESTS = MEDIA_TESTS + INPUT_TESTS + HARDWARE_TESTS

# Global input event types captured per input test
KEYBOARD_EVENT_TYPES = ("keydown", "keyup")
MOUSE_EVENT_TYPES = ("mousedown", "mouseup", "mousemove", "wheel", "contextmenu")
TOUCH_EVENT_TYPES = ("touchstart", "touchmove", "touchend", "touchcancel")

# Hardware event types for the battery test
BATTERY_EVENT_TYPES = (
    "chargingchange",
    "levelchange",
    "chargingtimechange",
    "dischargingtimechange",
)

# ============================================================================
# File Paths (defaults)
# ============================================================================

DEFAULT_HARNESS_CONFIG = "./configs/harness.yaml"
