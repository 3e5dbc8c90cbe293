"""
UI watchdog.

Detects when an asyncio event loop stops turning for longer than an
acceptable duration:
- A heartbeat scheduled on the monitored loop resets a shared clock
- A detector on its own thread polls that clock
- Every poll that finds the clock past the threshold raises an alert

The watchdog observes stalls. It does not diagnose or recover them.
"""

from ui_watchdog.alert_sinks import (
    AlertSink,
    CallbackSink,
    LogAndBreakSink,
    LogOnlySink,
    StallAlert,
    WatchdogOption,
    sink_for_options,
)
from ui_watchdog.clock import HeartbeatClock
from ui_watchdog.config import (
    DEFAULT_HEARTBEAT_INTERVAL_MS,
    DEFAULT_JOIN_TIMEOUT_MS,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SETTINGS,
    DEFAULT_STALL_THRESHOLD_MS,
    WatchdogSettings,
)
from ui_watchdog.controller import ShutdownResult, WatchdogController, WatchdogState
from ui_watchdog.detector import StallDetector
from ui_watchdog.errors import ConfigError, PreconditionError, WatchdogError
from ui_watchdog.heartbeat import HeartbeatSource

__all__ = [
    "AlertSink",
    "CallbackSink",
    "LogAndBreakSink",
    "LogOnlySink",
    "StallAlert",
    "WatchdogOption",
    "sink_for_options",
    "HeartbeatClock",
    "DEFAULT_HEARTBEAT_INTERVAL_MS",
    "DEFAULT_JOIN_TIMEOUT_MS",
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_SETTINGS",
    "DEFAULT_STALL_THRESHOLD_MS",
    "WatchdogSettings",
    "ShutdownResult",
    "WatchdogController",
    "WatchdogState",
    "StallDetector",
    "ConfigError",
    "PreconditionError",
    "WatchdogError",
    "HeartbeatSource",
]
