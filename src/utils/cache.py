"""TTL-based memoization store.

Values are kept with an expiry and dropped lazily on read. Coalescing of
concurrent loads lives in the services that own a store.
"""

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

from utils.logger import get_logger
from utils.time import monotonic_ms

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Missing:
    """Sentinel type for cache misses (None is a valid cached value)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """One cached value and the monotonic time (ms) it stops being valid."""
    value: V
    expires_at: float

    def is_expired(self, now_ms: float) -> bool:
        return now_ms >= self.expires_at


class CacheStore(Generic[K, V]):
    """Key/value store whose entries expire after a TTL.

    Attributes:
        name: Label used in log messages
        default_ttl_ms: TTL applied when set() is called without one
    """

    def __init__(
        self,
        default_ttl_ms: float,
        name: str = "cache",
        clock: Callable[[], float] = monotonic_ms,
    ):
        """Initialize the store.

        Args:
            default_ttl_ms: Default time-to-live in milliseconds
            name: Label used in log messages
            clock: Monotonic clock returning milliseconds
        """
        if default_ttl_ms <= 0:
            raise ValueError("default_ttl_ms must be positive")

        self.name = name
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def get(self, key: K, default=MISSING):
        """Return the unexpired value for key, or default.

        Expired entries are removed as a side effect.
        """
        entry = self.entry(key)
        if entry is None:
            return default
        return entry.value

    def entry(self, key: K) -> CacheEntry[V] | None:
        """Return the unexpired entry for key, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug(f"{self.name}: entry for {key!r} expired")
            del self._entries[key]
            return None
        return entry

    def set(self, key: K, value: V, ttl_ms: float | None = None) -> CacheEntry[V]:
        """Store value under key, replacing any previous entry."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        self._entries[key] = entry
        logger.debug(f"{self.name}: stored {key!r} for {ttl:.0f}ms")
        return entry

    def invalidate(self, key: K) -> bool:
        """Drop the entry for key. Returns True if one was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return self.entry(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)
