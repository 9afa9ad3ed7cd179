"""Permission negotiation with a TTL cache."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial

from constants import PERMISSION_CACHE_TTL_MS
from devices.models import PermissionState, PermissionStatus
from devices.platform import DevicePlatform
from exceptions import PermissionDeniedError, classify_error
from utils.cache import MISSING, CacheStore
from utils.logger import get_logger
from utils.time import monotonic_ms

logger = get_logger(__name__)


class PermissionManager:
    """Checks and requests permissions per category.

    check() answers from the cache while it is valid; request() always asks
    the platform and writes the outcome to the cache before returning.
    Concurrent calls of the same operation for the same category share one
    platform call.
    """

    def __init__(
        self,
        platform: DevicePlatform,
        ttl_ms: float = PERMISSION_CACHE_TTL_MS,
        cache: CacheStore | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.platform = platform
        self._cache = cache if cache is not None else CacheStore(ttl_ms, name="permissions", clock=clock)
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}
        # Bumped on every request outcome; a check that started earlier must not overwrite it
        self._versions: dict[str, int] = {}

    async def check(self, category: str) -> PermissionState:
        """Return the permission state without prompting."""
        cached = self._cache.get(category)
        if cached is not MISSING:
            logger.debug(f"Permission cache hit for {category}: {cached.status.value}")
            return cached
        return await self._coalesce("check", category, self._check)

    async def request(self, category: str) -> PermissionState:
        """Ask the platform for a grant.

        Returns:
            The resulting state (may be denied)

        Raises:
            PermissionDeniedError: If the platform rejected the request
                outright; the category is cached as denied first
            DeviceTestError: For any other platform failure
        """
        return await self._coalesce("request", category, self._request)

    async def _coalesce(
        self,
        operation: str,
        category: str,
        load: Callable[[str], Awaitable[PermissionState]],
    ) -> PermissionState:
        key = (operation, category)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(load(category))
            self._inflight[key] = task
            task.add_done_callback(partial(self._settle, key))
        return await asyncio.shield(task)

    def _settle(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()

    async def _check(self, category: str) -> PermissionState:
        version = self._versions.get(category, 0)
        try:
            state = await self.platform.check_permission(category)
        except Exception as e:
            error = classify_error(e, operation=f"{category} permission check")
            if error is e:
                raise
            raise error from e
        if self._versions.get(category, 0) != version:
            cached = self._cache.get(category)
            logger.debug(f"Permission {category} changed while checking, keeping request outcome")
            return state if cached is MISSING else cached
        self._cache.set(category, state)
        logger.debug(f"Permission {category}: {state.status.value}")
        return state

    async def _request(self, category: str) -> PermissionState:
        try:
            state = await self.platform.request_permission(category)
        except Exception as e:
            error = classify_error(e, operation=f"{category} permission request")
            if isinstance(error, PermissionDeniedError):
                self._bump(category)
                self._cache.set(category, PermissionState(category, PermissionStatus.DENIED))
                logger.info(f"Permission {category} denied by platform")
            if error is e:
                raise
            raise error from e
        self._bump(category)
        self._cache.set(category, state)
        logger.info(f"Permission {category} requested: {state.status.value}")
        return state

    def _bump(self, category: str) -> None:
        self._versions[category] = self._versions.get(category, 0) + 1

    def cached(self, category: str) -> PermissionState | None:
        cached = self._cache.get(category)
        return None if cached is MISSING else cached

    def invalidate(self, category: str | None = None) -> None:
        if category is None:
            self._cache.clear()
        else:
            self._cache.invalidate(category)
