"""
Heartbeat emitted from inside the monitored event loop.

The tick is scheduled with loop.call_later, so it only runs when the
loop gets around to processing callbacks. A loop stuck in blocking
work stops ticking, and the clock keeps counting up.
"""

import asyncio
from typing import Optional
import structlog

from ui_watchdog.clock import HeartbeatClock
from ui_watchdog.config import DEFAULT_HEARTBEAT_INTERVAL_MS
from ui_watchdog.errors import PreconditionError

logger = structlog.get_logger(__name__)


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class HeartbeatSource:
    """
    Recurring heartbeat bound to one asyncio event loop.

    Each tick does one thing: reset the shared clock.
    """

    def __init__(
        self,
        clock: HeartbeatClock,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Initialize heartbeat source.

        Args:
            clock: Clock shared with the stall detector
            loop: Monitored loop. Defaults to the loop running in the
                thread that calls start().
        """
        self.clock = clock
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._interval_s = DEFAULT_HEARTBEAT_INTERVAL_MS / 1000.0
        self.interval_ms = DEFAULT_HEARTBEAT_INTERVAL_MS
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    def start(self, interval_ms: int = DEFAULT_HEARTBEAT_INTERVAL_MS) -> None:
        """
        Begin ticking every ``interval_ms`` on the monitored loop.

        Must be called from the loop's own thread (or before the loop
        starts running). A second call while running is ignored.
        """
        if self.running:
            return

        if isinstance(interval_ms, bool) or not isinstance(interval_ms, (int, float)) or interval_ms <= 0:
            raise PreconditionError(f"heartbeat interval must be positive, got {interval_ms!r}")

        self._loop = self._bind_loop()
        self.interval_ms = interval_ms
        self._interval_s = interval_ms / 1000.0
        self._handle = self._loop.call_later(self._interval_s, self._tick)

        logger.debug("heartbeat_started", interval_ms=interval_ms)

    def stop(self) -> None:
        """Cancel future ticks. The last recorded beat is left as is."""
        handle, self._handle = self._handle, None
        if handle is None:
            return

        loop = self._loop
        if loop is None or _current_loop() is loop or not loop.is_running():
            handle.cancel()
        else:
            try:
                loop.call_soon_threadsafe(handle.cancel)
            except RuntimeError:
                # Loop already closed; nothing left to cancel.
                pass

        logger.debug("heartbeat_stopped", ticks=self.tick_count)

    def beat(self) -> None:
        """Record one heartbeat by hand, for loops that are not asyncio."""
        self.clock.reset()

    def _tick(self) -> None:
        if self._handle is None:
            return
        self.clock.reset()
        self.tick_count += 1
        self._handle = self._loop.call_later(self._interval_s, self._tick)

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        running = _current_loop()

        if self._loop is None:
            if running is None:
                raise PreconditionError(
                    "HeartbeatSource.start() needs a running event loop or an explicit loop"
                )
            return running

        if running is not None and running is not self._loop:
            raise PreconditionError("HeartbeatSource.start() called from a different event loop")

        if running is None and self._loop.is_running():
            raise PreconditionError(
                "HeartbeatSource.start() must be called from the monitored loop's thread"
            )

        return self._loop
