"""
Thread-safe elapsed-time cell shared by the heartbeat and the detector.

The monitored loop writes (reset) and the background thread reads
(elapsed). Both operations take the same lock for exactly one read or
one write of the stored timestamp, so a reader never sees a partial
update and the lock is never held across callbacks.
"""

import time
from threading import Lock
from typing import Callable, Optional


class HeartbeatClock:
    """
    Stopwatch measuring time since the last heartbeat.

    Usage:
        clock = HeartbeatClock()
        clock.reset()          # on every heartbeat
        clock.elapsed_ms()     # from the detector thread
    """

    def __init__(self, time_source: Optional[Callable[[], float]] = None):
        """
        Initialize the clock.

        Args:
            time_source: Monotonic clock returning seconds. Defaults to
                time.monotonic; tests pass a fake.
        """
        self._now = time_source or time.monotonic
        self._lock = Lock()
        self._last_beat = self._now()

    def reset(self) -> None:
        """Restart the stopwatch from zero."""
        now = self._now()
        with self._lock:
            self._last_beat = now

    def elapsed_ms(self) -> float:
        """Milliseconds since the last reset."""
        with self._lock:
            last_beat = self._last_beat
        return (self._now() - last_beat) * 1000.0
