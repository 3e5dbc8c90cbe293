"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import asyncio
import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from ui_watchdog import CallbackSink, HeartbeatClock, WatchdogSettings


class FakeTime:
    """Manually advanced monotonic clock, in milliseconds."""

    def __init__(self):
        self.now_ms = 0

    def __call__(self) -> float:
        return self.now_ms / 1000.0

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def set(self, ms: int) -> None:
        self.now_ms = ms


class RecordingSink(CallbackSink):
    """Sink that keeps every alert and signals the first one."""

    def __init__(self):
        self.alerts = []
        self.first_alert = threading.Event()
        super().__init__(self._record, log=False)

    def _record(self, alert) -> None:
        self.alerts.append(alert)
        self.first_alert.set()


class CountingThreadFactory:
    """threading.Thread stand-in that tracks how many threads are alive."""

    def __init__(self):
        self.created = []
        self.alive = 0
        self.max_alive = 0
        self._lock = threading.Lock()

    def __call__(self, target, args=(), name=None, daemon=None):
        def wrapped(*a):
            with self._lock:
                self.alive += 1
                self.max_alive = max(self.max_alive, self.alive)
            try:
                target(*a)
            finally:
                with self._lock:
                    self.alive -= 1

        thread = threading.Thread(target=wrapped, args=args, name=name, daemon=daemon)
        self.created.append(thread)
        return thread


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def fake_clock(fake_time):
    """HeartbeatClock driven by fake_time."""
    return HeartbeatClock(time_source=fake_time)


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def thread_factory():
    return CountingThreadFactory()


@pytest.fixture
def idle_loop():
    """
    Event loop that is never run.

    Heartbeats scheduled on it never fire, so a watchdog bound to it
    sees a permanently stalled loop.
    """
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def fast_settings():
    """Short intervals so threaded tests finish quickly."""
    return WatchdogSettings(
        heartbeat_interval_ms=10,
        poll_interval_ms=10,
        stall_threshold_ms=30,
        join_timeout_ms=1000,
    )
