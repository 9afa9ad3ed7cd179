"""Tests for PermissionManager."""

import asyncio

import pytest

from devices.models import PermissionStatus
from devices.permissions import PermissionManager
from exceptions import PermissionDeniedError, UnknownError


class NotAllowedError(Exception):
    """Platform-style denial raised by a permission prompt."""


@pytest.fixture
def manager(platform, clock):
    return PermissionManager(platform, ttl_ms=60000, clock=clock)


class TestCheck:
    """Tests for check()."""

    @pytest.mark.asyncio
    async def test_returns_platform_state(self, manager):
        """Test that check() reports the platform status."""
        state = await manager.check("camera")
        assert state.category == "camera"
        assert state.granted is True

    @pytest.mark.asyncio
    async def test_unknown_category_is_prompt(self, manager):
        """Test the default status for a category never decided."""
        state = await manager.check("notifications")
        assert state.status == PermissionStatus.PROMPT
        assert state.granted is False

    @pytest.mark.asyncio
    async def test_cached_for_ttl(self, platform, manager, clock):
        """Test that check() answers from the cache until the TTL elapses."""
        await manager.check("camera")
        await manager.check("camera")
        assert platform.calls["check_permission"] == 1

        clock.advance(60000)
        await manager.check("camera")
        assert platform.calls["check_permission"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_checks_coalesce(self, platform, manager):
        """Test that concurrent checks share one platform call."""
        platform.hold("check_permission")
        tasks = [asyncio.create_task(manager.check("camera")) for _ in range(3)]
        await asyncio.sleep(0)
        platform.release("check_permission")

        results = await asyncio.gather(*tasks)
        assert platform.calls["check_permission"] == 1
        assert results[0] is results[1] is results[2]


class TestRequest:
    """Tests for request()."""

    @pytest.mark.asyncio
    async def test_always_live_and_updates_cache(self, platform, manager):
        """Test that request() bypasses and then refreshes the cache."""
        platform.permissions["camera"] = PermissionStatus.DENIED
        assert (await manager.check("camera")).granted is False

        platform.request_outcomes["camera"] = PermissionStatus.GRANTED
        state = await manager.request("camera")

        assert state.granted is True
        assert platform.calls["request_permission"] == 1
        assert manager.cached("camera").granted is True
        assert (await manager.check("camera")).granted is True
        assert platform.calls["check_permission"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self, platform, manager):
        """Test that concurrent requests prompt only once."""
        platform.hold("request_permission")
        tasks = [asyncio.create_task(manager.request("microphone")) for _ in range(4)]
        await asyncio.sleep(0)
        platform.release("request_permission")

        results = await asyncio.gather(*tasks)
        assert platform.calls["request_permission"] == 1
        assert all(r.granted for r in results)

    @pytest.mark.asyncio
    async def test_denial_outcome_is_returned_and_cached(self, platform, manager):
        """Test that a denied outcome is cached before being returned."""
        platform.request_outcomes["camera"] = PermissionStatus.DENIED
        state = await manager.request("camera")
        assert state.status == PermissionStatus.DENIED
        assert manager.cached("camera").status == PermissionStatus.DENIED

    @pytest.mark.asyncio
    async def test_raised_denial_is_cached_and_reraised(self, platform, manager):
        """Test that a platform NotAllowedError becomes PermissionDeniedError."""
        platform.fail("request_permission", NotAllowedError("dismissed"))

        with pytest.raises(PermissionDeniedError):
            await manager.request("camera")

        assert manager.cached("camera").status == PermissionStatus.DENIED

    @pytest.mark.asyncio
    async def test_other_failures_are_classified(self, platform, manager):
        """Test that unexpected failures are wrapped, not cached."""
        platform.fail("request_permission", RuntimeError("host crashed"))

        with pytest.raises(UnknownError):
            await manager.request("camera")

        assert manager.cached("camera") is None


class TestCheckAndRequest:
    """Tests for check() and request() overlapping on one category."""

    @pytest.mark.asyncio
    async def test_request_outcome_survives_slower_check(self, platform, manager):
        """Test that a check answered before a grant does not overwrite it."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        platform.hold("check_permission")
        checking = asyncio.create_task(manager.check("camera"))
        await asyncio.sleep(0)

        granted = await manager.request("camera")
        assert granted.granted is True

        # The host answered the check before the grant landed
        platform.permissions["camera"] = PermissionStatus.PROMPT
        platform.release("check_permission")
        await checking

        assert manager.cached("camera").granted is True
        assert (await manager.check("camera")).granted is True
        assert platform.calls["check_permission"] == 1

    @pytest.mark.asyncio
    async def test_check_after_request_is_cached(self, platform, manager):
        """Test that a check started after a request still fills the cache."""
        platform.permissions["camera"] = PermissionStatus.PROMPT
        await manager.request("camera")
        manager.invalidate("camera")

        state = await manager.check("camera")

        assert state.granted is True
        assert manager.cached("camera").granted is True


class TestInvalidate:
    """Tests for invalidate()."""

    @pytest.mark.asyncio
    async def test_invalidate_one_and_all(self, manager):
        """Test dropping cached states."""
        await manager.check("camera")
        await manager.check("microphone")

        manager.invalidate("camera")
        assert manager.cached("camera") is None
        assert manager.cached("microphone") is not None

        manager.invalidate()
        assert manager.cached("microphone") is None
