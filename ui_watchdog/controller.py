"""
Watchdog controller.

Owns the heartbeat source, the shared clock and the background thread
that runs the stall detector. The thread only exists while the
watchdog is RUNNING; stop() joins it with a hard timeout.

A thread that does not exit in time is reported and abandoned rather
than waited on forever: the watchdog must never hang the application
that is shutting it down. The thread is a daemon so an abandoned one
cannot keep the interpreter alive either.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import structlog

from ui_watchdog.alert_sinks import AlertSink, WatchdogOption, sink_for_options
from ui_watchdog.clock import HeartbeatClock
from ui_watchdog.config import DEFAULT_SETTINGS, WatchdogSettings
from ui_watchdog.detector import StallDetector
from ui_watchdog.errors import PreconditionError
from ui_watchdog.heartbeat import HeartbeatSource

logger = structlog.get_logger(__name__)


THREAD_NAME = "ui-watchdog"


class WatchdogState(Enum):
    """Lifecycle state of a WatchdogController."""
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class ShutdownResult:
    """Outcome of WatchdogController.stop()."""
    joined: bool
    waited_ms: float


class WatchdogController:
    """
    Liveness watchdog for one asyncio event loop.

    Usage:
        async def main():
            watchdog = WatchdogController(WatchdogOption.NONE)
            watchdog.start()              # heartbeat every 100 ms
            ...
            watchdog.stop()

    Or as a context manager:
        with WatchdogController(loop=loop) as watchdog:
            loop.run_until_complete(app())

    start() and stop() are meant to be called by a single owner, from
    the monitored loop's thread.
    """

    def __init__(
        self,
        options: WatchdogOption = WatchdogOption.NONE,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        sink: Optional[AlertSink] = None,
        settings: Optional[WatchdogSettings] = None,
        thread_factory: Callable[..., threading.Thread] = threading.Thread,
        clock: Optional[HeartbeatClock] = None,
    ):
        """
        Initialize watchdog controller.

        Args:
            options: Behavior flags; DEBUG_BREAK breaks into the
                debugger on every alert
            loop: Monitored loop (defaults to the running loop at start())
            sink: Custom alert sink, overrides the one picked by options
            settings: Timing configuration (defaults to DEFAULT_SETTINGS);
                settings.debug_break implies WatchdogOption.DEBUG_BREAK
            thread_factory: Builds the background thread; called like
                threading.Thread(target=..., name=..., daemon=True)
            clock: Shared heartbeat clock (tests inject a fake time source)
        """
        self.settings = (settings or DEFAULT_SETTINGS).validate()
        self.options = WatchdogOption(options)
        if self.settings.debug_break:
            self.options |= WatchdogOption.DEBUG_BREAK
        self.sink = sink or sink_for_options(self.options)
        self.clock = clock or HeartbeatClock()

        self._heartbeat = HeartbeatSource(self.clock, loop=loop)
        self._thread_factory = thread_factory
        self._thread: Optional[threading.Thread] = None
        self._detector: Optional[StallDetector] = None
        self._state = WatchdogState.STOPPED

        self.last_shutdown: Optional[ShutdownResult] = None

        logger.debug(
            "watchdog_created",
            options=int(self.options),
            sink=type(self.sink).__name__,
        )

    # ==========================================================================
    # State
    # ==========================================================================

    @property
    def state(self) -> WatchdogState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is WatchdogState.RUNNING

    @property
    def detector(self) -> Optional[StallDetector]:
        """Detector of the current cycle, None while stopped."""
        return self._detector

    @property
    def heartbeat(self) -> HeartbeatSource:
        return self._heartbeat

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(self, heartbeat_interval_ms: Optional[int] = None) -> None:
        """
        Start watching the monitored loop.

        Does nothing if already running.

        Args:
            heartbeat_interval_ms: Heartbeat cadence on the monitored
                loop (defaults to settings.heartbeat_interval_ms)

        Raises:
            PreconditionError: non-positive interval, or called from
                outside the monitored loop's thread
        """
        if self._state is WatchdogState.RUNNING:
            return

        if heartbeat_interval_ms is None:
            heartbeat_interval_ms = self.settings.heartbeat_interval_ms
        if (
            isinstance(heartbeat_interval_ms, bool)
            or not isinstance(heartbeat_interval_ms, (int, float))
            or heartbeat_interval_ms <= 0
        ):
            raise PreconditionError(
                f"heartbeat_interval_ms must be positive, got {heartbeat_interval_ms!r}"
            )

        self._heartbeat.start(heartbeat_interval_ms)

        detector = StallDetector(
            self.clock,
            self.sink,
            threshold_ms=self.settings.stall_threshold_ms,
        )
        thread = self._thread_factory(
            target=_run_detector,
            args=(
                detector,
                self.settings.poll_interval_ms,
                self.settings.stall_threshold_ms,
            ),
            name=THREAD_NAME,
            daemon=True,
        )

        try:
            thread.start()
        except Exception:
            self._heartbeat.stop()
            raise

        self._detector = detector
        self._thread = thread
        self._state = WatchdogState.RUNNING

        logger.info(
            "watchdog_started",
            heartbeat_interval_ms=heartbeat_interval_ms,
            poll_interval_ms=self.settings.poll_interval_ms,
            stall_threshold_ms=self.settings.stall_threshold_ms,
        )

    def stop(self) -> Optional[ShutdownResult]:
        """
        Stop watching and join the background thread.

        Blocks for at most settings.join_timeout_ms. Does nothing and
        returns None if already stopped.

        Returns:
            ShutdownResult telling whether the thread exited in time
        """
        if self._state is WatchdogState.STOPPED:
            return None

        thread = self._thread
        detector = self._detector

        self._heartbeat.stop()
        if detector is not None:
            detector.stop()

        joined = True
        waited_ms = 0.0
        if thread is threading.current_thread():
            # Stopped from inside a sink; the loop exits after this poll.
            joined = False
        elif thread is not None:
            started = time.monotonic()
            thread.join(timeout=self.settings.join_timeout_ms / 1000.0)
            waited_ms = (time.monotonic() - started) * 1000.0
            joined = not thread.is_alive()

        if joined:
            logger.debug("watchdog_thread_joined", waited_ms=round(waited_ms, 1))
        else:
            logger.warning(
                "watchdog_join_timeout",
                join_timeout_ms=self.settings.join_timeout_ms,
                waited_ms=round(waited_ms, 1),
                message="Background thread still running; abandoning it",
            )

        self._thread = None
        self._detector = None
        self._state = WatchdogState.STOPPED

        result = ShutdownResult(joined=joined, waited_ms=waited_ms)
        self.last_shutdown = result

        logger.info(
            "watchdog_stopped",
            joined=joined,
            polls=detector.poll_count if detector else 0,
            alerts=detector.alert_count if detector else 0,
        )
        return result

    def close(self) -> None:
        """Stop if still running."""
        if self._state is WatchdogState.RUNNING:
            self.stop()

    def __enter__(self) -> "WatchdogController":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self):
        if getattr(self, "_state", WatchdogState.STOPPED) is WatchdogState.RUNNING:
            self.close()


def _run_detector(detector: StallDetector, interval_ms: float, threshold_ms: float) -> None:
    """
    Background thread body.

    Must not hold a reference to the controller: the controller stops
    this thread from __del__.
    """
    try:
        detector.start(interval_ms=interval_ms, threshold_ms=threshold_ms)
    except Exception as e:
        logger.exception("stall_detector_crashed", error=str(e))
        raise
