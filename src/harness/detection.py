"""Delayed surfacing of the no-devices signal."""

import asyncio
from collections.abc import Callable

from constants import DETECTION_GRACE_MS
from utils.logger import get_logger

logger = get_logger(__name__)


class DetectionGraceWindow:
    """Timer that makes a negative detection visible after a delay.

    arm() starts the window; when it elapses without disarm() being called,
    ``visible`` becomes True and on_change is notified. Presentation only:
    the owning controller changes state immediately.
    """

    def __init__(
        self,
        delay_ms: float = DETECTION_GRACE_MS,
        on_change: Callable[[bool], None] | None = None,
    ):
        self.delay_ms = delay_ms
        self.on_change = on_change
        self._visible = False
        self._timer: asyncio.TimerHandle | None = None

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def arm(self) -> None:
        """Start (or restart) the window."""
        self._cancel_timer()
        if self.delay_ms <= 0:
            self._fire()
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay_ms / 1000, self._fire)
        logger.debug(f"Grace window armed for {self.delay_ms:.0f}ms")

    def disarm(self) -> None:
        """Cancel a pending window and hide the signal."""
        self._cancel_timer()
        self._set_visible(False)

    def _fire(self) -> None:
        self._timer = None
        self._set_visible(True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        if self.on_change is not None:
            self.on_change(visible)
