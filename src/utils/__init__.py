"""Utility modules for devcheck."""

from .cache import MISSING, CacheEntry, CacheStore
from .events import EventEmitter
from .logger import get_logger
from .time import format_timestamp, get_timestamp_ms, monotonic_ms

__all__ = [
    'CacheEntry',
    'CacheStore',
    'EventEmitter',
    'MISSING',
    'format_timestamp',
    'get_logger',
    'get_timestamp_ms',
    'monotonic_ms',
]
