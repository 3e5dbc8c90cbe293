"""
Watchdog settings.

Defaults are module constants so they are visible to callers instead
of being buried in method signatures. WatchdogSettings bundles them
into a frozen value that can be loaded from YAML or the environment.

The stall threshold must exceed the heartbeat interval, otherwise normal
scheduling jitter produces false alarms. That is the caller's call to
make; validate() only rejects values that cannot work at all.
"""

import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional
import structlog
import yaml

from ui_watchdog.errors import ConfigError

logger = structlog.get_logger(__name__)


DEFAULT_HEARTBEAT_INTERVAL_MS = 100
DEFAULT_POLL_INTERVAL_MS = 200
DEFAULT_STALL_THRESHOLD_MS = 300
DEFAULT_JOIN_TIMEOUT_MS = 2000

ENV_PREFIX = "UI_WATCHDOG_"

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class WatchdogSettings:
    """
    Timing configuration for one watchdog.

    All values are milliseconds.
    """

    # How often the monitored loop resets the heartbeat clock
    heartbeat_interval_ms: int = DEFAULT_HEARTBEAT_INTERVAL_MS

    # How often the background thread checks the clock
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    # Longest tolerated gap between heartbeats
    stall_threshold_ms: int = DEFAULT_STALL_THRESHOLD_MS

    # Upper bound on how long stop() waits for the background thread
    join_timeout_ms: int = DEFAULT_JOIN_TIMEOUT_MS

    # Break into the debugger on every alert
    debug_break: bool = False

    def validate(self) -> "WatchdogSettings":
        """Raise ConfigError unless every duration is a positive number."""
        for name in (
            "heartbeat_interval_ms",
            "poll_interval_ms",
            "stall_threshold_ms",
            "join_timeout_ms",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")

        if self.stall_threshold_ms <= self.heartbeat_interval_ms:
            logger.warning(
                "stall_threshold_not_above_heartbeat",
                stall_threshold_ms=self.stall_threshold_ms,
                heartbeat_interval_ms=self.heartbeat_interval_ms,
            )
        return self

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "WatchdogSettings":
        """Build settings from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("unknown_watchdog_settings_ignored", keys=unknown)

        values = {}
        for key in known & set(data):
            value = _expand_env_vars(data[key])
            values[key] = _coerce(key, value)

        return replace(cls(), **values).validate()

    @classmethod
    def from_yaml(cls, path: str) -> "WatchdogSettings":
        """
        Load settings from a YAML file.

        The file may hold the settings at the top level or under a
        ``watchdog`` key. String values may reference environment
        variables as ``${NAME}``. A missing file yields the defaults.
        """
        config_path = Path(path)

        if not config_path.exists():
            logger.warning("config_not_found_using_defaults", path=str(path))
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")

        section = data.get("watchdog", data)
        if not isinstance(section, dict):
            raise ConfigError(f"'watchdog' section in {path} must be a mapping")

        settings = cls.from_mapping(section)
        logger.info("config_loaded", path=str(path))
        return settings

    @classmethod
    def from_env(cls, base: Optional["WatchdogSettings"] = None) -> "WatchdogSettings":
        """
        Overlay UI_WATCHDOG_* environment variables on ``base``.

        Example: UI_WATCHDOG_STALL_THRESHOLD_MS=500
        """
        base = base or cls()
        values = {}
        for f in fields(cls):
            raw = os.environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = _coerce(f.name, raw)

        return replace(base, **values).validate()


def _expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} references in string values."""
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            return os.environ.get(match.group(1), match.group(0))
        return _ENV_VAR_PATTERN.sub(replace_env, value)
    return value


def _coerce(name: str, value: Any) -> Any:
    if name == "debug_break":
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value

    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer number of milliseconds, got {value!r}") from e


DEFAULT_SETTINGS = WatchdogSettings()
