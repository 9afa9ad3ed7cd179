"""Custom exceptions for devcheck.

Provides the error taxonomy used by the device test framework. Runtime
errors fall into five kinds (see ErrorKind); two are recoverable and are
surfaced by the lifecycle controller as state, the rest end the session.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

# ============================================================================
# Base Exception
# ============================================================================

class DeviceTestError(Exception):
    """Base exception for all devcheck errors.

    Attributes:
        message: Human-readable error message
        context: Dictionary with additional error context
        cause: Original exception that caused this error
        timestamp: When the error occurred
        error_code: Unique error code for this exception type
        recoverable: Whether the session can continue after this error
    """

    error_code: str = "DT000"
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        """Initialize DeviceTestError.

        Args:
            message: Human-readable error message
            context: Additional context information
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now()

    @property
    def kind(self) -> "ErrorKind":
        """Runtime error kind this exception reports as."""
        return _KIND_BY_CLASS.get(type(self).__name__, ErrorKind.UNKNOWN)

    def __str__(self) -> str:
        """Return string representation with context."""
        parts = [self.message]

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[{context_str}]")

        if self.cause:
            parts.append(f"caused by: {type(self.cause).__name__}: {self.cause}")

        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
            "cause": type(self.cause).__name__ if self.cause else None,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> dict[str, Any]:
        """Convert exception to a JSON-serializable summary.

        Returns:
            Dictionary containing error_code, error_type, and message.
        """
        return {
            "error_code": self.error_code,
            "error_type": self.__class__.__name__,
            "message": str(self),
        }

    def log(self, level: int = logging.ERROR) -> None:
        """Log this exception with context.

        Args:
            level: Logging level (default: ERROR)
        """
        from utils.logger import get_logger
        logger = get_logger(__name__)
        logger.log(level, self.message, extra={
            "exception_type": self.__class__.__name__,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        })


class ErrorKind(str, Enum):
    """Runtime error kinds recorded on a test session."""
    PERMISSION_DENIED = "permission-denied"
    DEVICE_NOT_FOUND = "device-not-found"
    SESSION_ACQUISITION = "session-acquisition"
    ENUMERATION = "enumeration"
    UNKNOWN = "unknown"


# ============================================================================
# Recoverable Errors
# ============================================================================

class PermissionDeniedError(DeviceTestError):
    """The user or platform declined a capability grant.

    Recoverable: the user may retry the permission request.

    Attributes:
        category: Permission category (e.g. "camera", "microphone")
        status: Permission status reported by the platform
    """

    error_code: str = "DT100"
    recoverable: bool = True

    def __init__(
        self,
        message: str,
        category: str | None = None,
        status: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        context = context or {}
        context.update({"category": category, "status": status})
        super().__init__(message, context=context, cause=cause)
        self.category = category
        self.status = status


class DeviceNotFoundError(DeviceTestError):
    """No device of the requested kind is present.

    Recoverable only externally, e.g. when a device is plugged in and the
    host triggers a new enumeration.

    Attributes:
        device_kind: Device kind that was searched for
        device_id: Specific device id, when one was requested
    """

    error_code: str = "DT200"
    recoverable: bool = True

    def __init__(
        self,
        message: str,
        device_kind: str | None = None,
        device_id: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        context = context or {}
        context.update({"device_kind": device_kind})
        if device_id is not None:
            context["device_id"] = device_id
        super().__init__(message, context=context, cause=cause)
        self.device_kind = device_kind
        self.device_id = device_id


# ============================================================================
# Session-fatal Errors
# ============================================================================

class SessionAcquisitionError(DeviceTestError):
    """The platform refused to open a device session.

    Raised despite permission and device presence (device busy, constraints
    not satisfiable, driver failure). Ends the session as failed.
    """

    error_code: str = "DT300"

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        context = context or {}
        if device_id is not None:
            context["device_id"] = device_id
        super().__init__(message, context=context, cause=cause)
        self.device_id = device_id


class EnumerationError(DeviceTestError):
    """Transient device discovery failure. Never cached; safe to retry."""

    error_code: str = "DT400"

    def __init__(
        self,
        message: str,
        device_kind: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        context = context or {}
        context.update({"device_kind": device_kind})
        super().__init__(message, context=context, cause=cause)
        self.device_kind = device_kind


class UnknownError(DeviceTestError):
    """Catch-all for unexpected failures. Ends the session as failed."""

    error_code: str = "DT900"


# ============================================================================
# Framework Errors
# ============================================================================

class InvalidTransitionError(DeviceTestError):
    """An operation was called from a state that does not allow it.

    Attributes:
        operation: Name of the rejected operation
        state: State the controller was in
    """

    error_code: str = "DT600"

    def __init__(
        self,
        operation: str,
        state: str,
        context: dict[str, Any] | None = None,
    ):
        context = context or {}
        context.update({"operation": operation, "state": state})
        super().__init__(f"Cannot {operation} from state '{state}'", context=context)
        self.operation = operation
        self.state = state


class ConfigurationError(DeviceTestError):
    """Configuration file missing or invalid.

    Attributes:
        config_path: Path of the offending configuration file
    """

    error_code: str = "DT500"

    def __init__(
        self,
        message: str,
        config_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        context = context or {}
        context.update({"config_path": config_path})
        super().__init__(message, context=context, cause=cause)
        self.config_path = config_path


_KIND_BY_CLASS: dict[str, ErrorKind] = {
    "PermissionDeniedError": ErrorKind.PERMISSION_DENIED,
    "DeviceNotFoundError": ErrorKind.DEVICE_NOT_FOUND,
    "SessionAcquisitionError": ErrorKind.SESSION_ACQUISITION,
    "EnumerationError": ErrorKind.ENUMERATION,
}

# Error names used by media capture platforms
_PERMISSION_NAMES = {"NotAllowedError", "PermissionDeniedError", "SecurityError"}
_NOT_FOUND_NAMES = {"NotFoundError", "DevicesNotFoundError", "OverconstrainedError"}
_BUSY_NAMES = {"NotReadableError", "TrackStartError", "AbortError"}


def classify_error(
    exc: BaseException,
    operation: str = "operation",
    device_kind: str | None = None,
) -> DeviceTestError:
    """Map an arbitrary exception onto the error taxonomy.

    Framework errors pass through unchanged. Other exceptions are matched by
    type and by the conventional platform error name (``exc.name`` or the
    class name), and wrapped with the original as cause.

    Args:
        exc: Exception to classify
        operation: What was being attempted, used in the message
        device_kind: Device kind involved, if known

    Returns:
        A DeviceTestError instance
    """
    if isinstance(exc, DeviceTestError):
        return exc

    name = getattr(exc, "name", None) or type(exc).__name__
    cause = exc if isinstance(exc, Exception) else None
    detail = str(exc) or name

    if isinstance(exc, PermissionError) or name in _PERMISSION_NAMES:
        return PermissionDeniedError(
            f"{operation} was not permitted: {detail}", cause=cause
        )
    if isinstance(exc, FileNotFoundError) or name in _NOT_FOUND_NAMES:
        return DeviceNotFoundError(
            f"No device available for {operation}: {detail}",
            device_kind=device_kind,
            cause=cause,
        )
    if isinstance(exc, OSError) or name in _BUSY_NAMES:
        return SessionAcquisitionError(
            f"Device could not be opened during {operation}: {detail}", cause=cause
        )
    return UnknownError(f"Unexpected error during {operation}: {detail}", cause=cause)


__all__ = [
    "DeviceTestError",
    "ErrorKind",
    "PermissionDeniedError",
    "DeviceNotFoundError",
    "SessionAcquisitionError",
    "EnumerationError",
    "UnknownError",
    "InvalidTransitionError",
    "ConfigurationError",
    "classify_error",
]
