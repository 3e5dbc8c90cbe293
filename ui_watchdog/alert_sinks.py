"""
Alert sinks for stall notifications.

The detector only knows the AlertSink interface. What happens on a
stall is decided here:
- LogOnlySink: structured warning log record
- LogAndBreakSink: log, then break into the debugger
- CallbackSink: log, then hand the alert to caller code

Sinks run on the watchdog's background thread. Exceptions they raise
are caught and logged by the detector, so a faulty sink cannot kill
the polling loop.
"""

import sys
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import IntFlag
from typing import Callable, Optional
import structlog

logger = structlog.get_logger(__name__)


class WatchdogOption(IntFlag):
    """Behavior flags fixed at controller construction."""
    NONE = 0
    DEBUG_BREAK = 1


@dataclass(frozen=True)
class StallAlert:
    """
    One stall observation.

    Delivered once per poll while the monitored loop stays blocked.
    """
    elapsed_ms: float
    threshold_ms: float
    poll_count: int
    detected_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["detected_at"] = self.detected_at.isoformat()
        return data


class AlertSink:
    """Interface for anything that reacts to a stall."""

    def alert(self, alert: StallAlert) -> None:
        raise NotImplementedError


class LogOnlySink(AlertSink):
    """Emit a structured log record for every stall."""

    def __init__(self, event: str = "ui_blocked"):
        self.event = event

    def alert(self, alert: StallAlert) -> None:
        record = alert.to_dict()
        record["elapsed_ms"] = round(alert.elapsed_ms, 1)
        logger.warning(self.event, **record)


class LogAndBreakSink(LogOnlySink):
    """
    Log the stall, then trigger a debugger break.

    The break goes through sys.breakpointhook, so PYTHONBREAKPOINT
    selects the debugger (or disables breaks with PYTHONBREAKPOINT=0).
    """

    def __init__(
        self,
        break_hook: Optional[Callable[[], object]] = None,
        event: str = "ui_blocked",
    ):
        super().__init__(event=event)
        self._break_hook = break_hook

    def alert(self, alert: StallAlert) -> None:
        super().alert(alert)
        self.debug_break()

    def debug_break(self) -> None:
        hook = self._break_hook or sys.breakpointhook
        logger.debug("watchdog_debug_break")
        hook()


class CallbackSink(LogOnlySink):
    """
    Log the stall, then call ``callback(alert)``.

    Set ``log=False`` when the callback does its own reporting.
    """

    def __init__(
        self,
        callback: Callable[[StallAlert], object],
        log: bool = True,
        event: str = "ui_blocked",
    ):
        super().__init__(event=event)
        self.callback = callback
        self.log = log

    def alert(self, alert: StallAlert) -> None:
        if self.log:
            super().alert(alert)
        self.callback(alert)


def sink_for_options(
    options: WatchdogOption,
    break_hook: Optional[Callable[[], object]] = None,
) -> AlertSink:
    """Pick the default sink for a set of options."""
    if options & WatchdogOption.DEBUG_BREAK:
        return LogAndBreakSink(break_hook=break_hook)
    return LogOnlySink()
