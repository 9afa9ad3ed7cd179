"""Exclusive ownership of one live device stream."""

from devices.models import SessionRef, StreamConstraints, StreamHandle
from devices.platform import DevicePlatform
from exceptions import SessionAcquisitionError, UnknownError, classify_error
from utils.logger import get_logger

logger = get_logger(__name__)


class StreamManager:
    """Holds at most one open stream for a single test session.

    Each acquisition is stamped with a generation number. release() and
    every new acquire() bump the generation, so an open_session() call that
    resolves after it was superseded is closed immediately and reported as
    None instead of replacing the current handle.

    Attributes:
        owner: Identifier of the owning test session
    """

    def __init__(self, platform: DevicePlatform, owner: str):
        self.platform = platform
        self.owner = owner
        self._generation = 0
        self._handle: StreamHandle | None = None
        self._last_constraints: StreamConstraints | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def handle(self) -> StreamHandle | None:
        return self._handle

    @property
    def has_handle(self) -> bool:
        return self._handle is not None

    async def acquire(self, constraints: StreamConstraints) -> StreamHandle | None:
        """Open a stream, releasing the current one first.

        Returns:
            The new handle, or None if a later acquire() or release()
            superseded this call while it was pending

        Raises:
            DeviceTestError: SessionAcquisitionError for platform refusals;
                permission and absence errors keep their own type
        """
        self.release()
        self._generation += 1
        generation = self._generation
        self._last_constraints = constraints
        logger.debug(f"{self.owner}: acquiring generation {generation}")

        try:
            session = await self.platform.open_session(constraints)
        except Exception as e:
            if generation != self._generation:
                logger.debug(f"{self.owner}: superseded generation {generation} failed: {e}")
                return None
            error = classify_error(e, operation="stream acquisition", device_kind=constraints.kind.value)
            if isinstance(error, UnknownError):
                error = SessionAcquisitionError(
                    f"Could not open {constraints.kind.value} session: {e}",
                    device_id=constraints.device_id,
                    cause=e,
                )
            if error is e:
                raise
            raise error from e

        if generation != self._generation:
            logger.warning(
                f"{self.owner}: discarding stale session from generation {generation} "
                f"(current {self._generation})"
            )
            self._close(session)
            return None

        self._handle = StreamHandle(
            generation=generation,
            owner=self.owner,
            constraints=constraints,
            session=session,
        )
        logger.info(f"{self.owner}: stream open with {len(session.tracks)} track(s)")
        return self._handle

    def release(self) -> None:
        """Stop every track and close the current session, if any."""
        self._generation += 1
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._close(handle.session)
        logger.info(f"{self.owner}: stream released (generation {handle.generation})")

    async def switch_device(
        self,
        device_id: str | None,
        constraints: StreamConstraints | None = None,
    ) -> StreamHandle | None:
        """Release the current stream, then acquire one on another device.

        Args:
            device_id: Device to switch to
            constraints: Base constraints; defaults to those of the last
                acquisition

        Raises:
            SessionAcquisitionError: If there is nothing to base the switch on
        """
        base = constraints or self._last_constraints
        if base is None:
            raise SessionAcquisitionError(
                "Cannot switch device before any stream was acquired",
                device_id=device_id,
            )
        return await self.acquire(base.with_device(device_id))

    def _close(self, session: SessionRef) -> None:
        for track in session.tracks:
            track.stop()
        try:
            self.platform.close_session(session)
        except Exception:
            logger.exception(f"{self.owner}: closing session {session.id} failed")
