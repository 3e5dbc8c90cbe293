"""
Exceptions raised by the UI watchdog.

Lifecycle errors are synchronous: they are raised from the call that
caused them and are never retried. Stalls are not errors; they are
delivered to the alert sink.
"""


class WatchdogError(Exception):
    """Base class for watchdog errors."""


class PreconditionError(WatchdogError, ValueError):
    """
    A caller broke a usage contract.

    Raised for non-positive intervals or thresholds, and for a heartbeat
    started from a thread other than the monitored loop's own thread.
    """


class ConfigError(WatchdogError):
    """Settings could not be parsed or failed validation."""
