"""Time utilities for devcheck."""

import time
from datetime import datetime


def get_timestamp_ms() -> int:
    """
    Get current timestamp in milliseconds.

    Returns:
        Timestamp in milliseconds since Unix epoch
    """
    return int(time.time() * 1000)


def monotonic_ms() -> float:
    """
    Get a monotonic clock reading in milliseconds.

    Used for durations and cache expiry, which must not jump when the
    wall clock is adjusted.

    Returns:
        Milliseconds from an arbitrary fixed point
    """
    return time.monotonic() * 1000


def format_timestamp(ts_ms: int, format_str: str | None = None) -> str:
    """
    Format timestamp to string.

    Args:
        ts_ms: Timestamp in milliseconds
        format_str: Optional format string (default: ISO format)

    Returns:
        Formatted timestamp string
    """
    dt = datetime.fromtimestamp(ts_ms / 1000)
    if format_str:
        return dt.strftime(format_str)
    return dt.isoformat()


def get_elapsed_ms(start_ms: float, clock=monotonic_ms) -> float:
    """
    Get elapsed time in milliseconds, never negative.

    Args:
        start_ms: Start reading taken from the same clock
        clock: Clock callable returning milliseconds

    Returns:
        Elapsed time in milliseconds
    """
    return max(0.0, clock() - start_ms)
