"""
Stall detector.

Runs on the watchdog's own thread and checks the heartbeat clock at a
fixed interval, independent of the monitored loop. If the loop stops
ticking, the detector keeps polling and reports the stall once per
poll until heartbeats resume or the watchdog is stopped.

Repeated alerts for one long stall are intentional: the condition is
ongoing, so it is reported continuously. There is no separate
"stall cleared" notification.
"""

import threading
from datetime import datetime
from typing import Optional
import structlog

from ui_watchdog.alert_sinks import AlertSink, StallAlert
from ui_watchdog.clock import HeartbeatClock
from ui_watchdog.config import DEFAULT_POLL_INTERVAL_MS, DEFAULT_STALL_THRESHOLD_MS
from ui_watchdog.errors import PreconditionError

logger = structlog.get_logger(__name__)


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise PreconditionError(f"{name} must be positive, got {value!r}")


class StallDetector:
    """
    Polls a HeartbeatClock and alerts when it exceeds a threshold.

    A detector serves one watchdog cycle: once stopped it stays stopped.
    The controller builds a fresh one for every start().

    Usage (on a dedicated thread):
        detector = StallDetector(clock, LogOnlySink())
        detector.start(interval_ms=200, threshold_ms=300)   # blocks

    From any other thread:
        detector.stop()
    """

    def __init__(
        self,
        clock: HeartbeatClock,
        sink: AlertSink,
        threshold_ms: float = DEFAULT_STALL_THRESHOLD_MS,
    ):
        """
        Initialize stall detector.

        Args:
            clock: Clock reset by the monitored loop's heartbeat
            sink: Receives a StallAlert for every poll over threshold
            threshold_ms: Longest tolerated gap since the last heartbeat
        """
        _require_positive("threshold_ms", threshold_ms)

        self.clock = clock
        self.sink = sink
        self.threshold_ms = threshold_ms
        self.interval_ms = DEFAULT_POLL_INTERVAL_MS

        self._stop_event = threading.Event()
        self._started = False

        # Counters (read by tests and diagnostics)
        self.poll_count = 0
        self.alert_count = 0
        self.alert_failures = 0
        self.last_alert: Optional[StallAlert] = None

    def start(
        self,
        interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        threshold_ms: Optional[float] = None,
    ) -> None:
        """
        Run the poll loop on the calling thread until stop() is called.

        The clock is restarted first, so time spent before the detector
        came up is not counted as a stall.

        Args:
            interval_ms: Time between polls
            threshold_ms: Overrides the threshold given at construction
        """
        _require_positive("interval_ms", interval_ms)
        if threshold_ms is not None:
            _require_positive("threshold_ms", threshold_ms)
            self.threshold_ms = threshold_ms

        if self._started:
            logger.warning("stall_detector_already_started")
            return
        self._started = True

        self.interval_ms = interval_ms
        interval_s = interval_ms / 1000.0
        self.clock.reset()

        logger.debug(
            "stall_detector_started",
            interval_ms=interval_ms,
            threshold_ms=self.threshold_ms,
        )

        # Event.wait returns True as soon as stop() is called, so the
        # stop request is seen at the next poll boundary at the latest.
        while not self._stop_event.wait(interval_s):
            try:
                self.poll()
            except Exception:
                self.alert_failures += 1
                logger.exception(
                    "watchdog_alert_failed",
                    sink=type(self.sink).__name__,
                    elapsed_ms=self.last_alert.elapsed_ms if self.last_alert else None,
                    poll_count=self.poll_count,
                    failures=self.alert_failures,
                )

        logger.debug(
            "stall_detector_stopped",
            polls=self.poll_count,
            alerts=self.alert_count,
        )

    def stop(self) -> None:
        """Ask the poll loop to exit. Safe from any thread."""
        self._stop_event.set()

    def poll(self) -> Optional[StallAlert]:
        """
        Check the clock once.

        Returns:
            The alert that was delivered, or None if the loop is healthy.
            Exceptions from the sink propagate to the caller.
        """
        self.poll_count += 1
        elapsed = self.clock.elapsed_ms()

        if elapsed <= self.threshold_ms:
            return None

        alert = StallAlert(
            elapsed_ms=elapsed,
            threshold_ms=self.threshold_ms,
            poll_count=self.poll_count,
            detected_at=datetime.now(),
        )
        self.last_alert = alert
        self.alert_count += 1
        self.sink.alert(alert)
        return alert
