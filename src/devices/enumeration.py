"""Cached, coalesced device discovery."""

import asyncio
from collections.abc import Callable
from functools import partial

from constants import DEVICE_CACHE_TTL_MS
from devices.models import DeviceDescriptor, DeviceKind
from devices.platform import DevicePlatform
from exceptions import EnumerationError
from utils.cache import MISSING, CacheStore
from utils.logger import get_logger
from utils.time import monotonic_ms

logger = get_logger(__name__)


class DeviceEnumerationService:
    """Discovers devices per kind, shared by every test session.

    Results are cached for ``ttl_ms``. Concurrent callers for the same kind
    share a single in-flight discovery; each caller awaits it through
    ``asyncio.shield`` so cancelling one caller leaves the others (and the
    discovery) running. Failures are raised to every waiting caller as
    EnumerationError and are never cached.

    Example:
        service = DeviceEnumerationService(platform)
        cameras = await service.enumerate(DeviceKind.VIDEO_INPUT)
    """

    def __init__(
        self,
        platform: DevicePlatform,
        ttl_ms: float = DEVICE_CACHE_TTL_MS,
        cache: CacheStore | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        """Initialize the service.

        Args:
            platform: Platform used for discovery
            ttl_ms: How long a device list stays valid
            cache: Store to use instead of a private one
            clock: Monotonic millisecond clock for cache expiry
        """
        self.platform = platform
        self._cache = cache if cache is not None else CacheStore(ttl_ms, name="devices", clock=clock)
        self._inflight: dict[DeviceKind, asyncio.Task] = {}

    async def enumerate(self, kind: DeviceKind, force: bool = False) -> list[DeviceDescriptor]:
        """Return the devices of a kind.

        Args:
            kind: Device kind to discover
            force: Skip the cache. A discovery already in flight is joined,
                since it started after the cached value was taken.

        Returns:
            New list of descriptors (empty when none are present)

        Raises:
            EnumerationError: If discovery failed
        """
        if not force:
            cached = self._cache.get(kind)
            if cached is not MISSING:
                logger.debug(f"Device cache hit for {kind.value}")
                return list(cached)

        task = self._inflight.get(kind)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._discover(kind))
            self._inflight[kind] = task
            task.add_done_callback(partial(self._settle, kind))
        else:
            logger.debug(f"Joining in-flight discovery for {kind.value}")

        devices = await asyncio.shield(task)
        return list(devices)

    async def _discover(self, kind: DeviceKind) -> tuple[DeviceDescriptor, ...]:
        try:
            found = await self.platform.enumerate_devices(kind)
        except Exception as e:
            logger.warning(f"Device discovery for {kind.value} failed: {e}")
            raise EnumerationError(
                f"Could not enumerate {kind.value} devices",
                device_kind=kind.value,
                cause=e,
            ) from e

        devices = tuple(d for d in found if d.kind == kind)
        self._cache.set(kind, devices)
        logger.info(f"Discovered {len(devices)} {kind.value} device(s)")
        return devices

    def _settle(self, kind: DeviceKind, task: asyncio.Task) -> None:
        if self._inflight.get(kind) is task:
            del self._inflight[kind]
        if not task.cancelled():
            # Mark the exception retrieved; callers get it through shield()
            task.exception()

    def cached(self, kind: DeviceKind) -> list[DeviceDescriptor] | None:
        """Return the unexpired cached list for kind without discovering."""
        cached = self._cache.get(kind)
        return None if cached is MISSING else list(cached)

    def invalidate(self, kind: DeviceKind | None = None) -> None:
        """Drop the cached list for kind, or every list when kind is None."""
        if kind is None:
            self._cache.clear()
        else:
            self._cache.invalidate(kind)

    @property
    def in_flight(self) -> int:
        return len(self._inflight)
