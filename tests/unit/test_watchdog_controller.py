"""
Tests for the watchdog controller lifecycle.

These run synchronously against an event loop that is never run, so
the heartbeat never fires and the detector sees a stalled loop. That
makes alert delivery deterministic without touching the loop.
"""

import gc
import threading
import time
from unittest.mock import Mock

import pytest
from structlog.testing import capture_logs

from ui_watchdog import (
    DEFAULT_SETTINGS,
    CallbackSink,
    ConfigError,
    LogAndBreakSink,
    LogOnlySink,
    PreconditionError,
    ShutdownResult,
    WatchdogController,
    WatchdogOption,
    WatchdogSettings,
    WatchdogState,
)
from ui_watchdog.controller import THREAD_NAME


def watchdog_threads():
    return [t for t in threading.enumerate() if t.name == THREAD_NAME and t.is_alive()]


def wait_for_no_watchdog_threads(timeout: float = 2.0) -> list:
    deadline = time.monotonic() + timeout
    while watchdog_threads() and time.monotonic() < deadline:
        time.sleep(0.01)
    return watchdog_threads()


@pytest.fixture
def controller(idle_loop, recording_sink, fast_settings, thread_factory):
    watchdog = WatchdogController(
        loop=idle_loop,
        sink=recording_sink,
        settings=fast_settings,
        thread_factory=thread_factory,
    )
    yield watchdog
    watchdog.close()


class TestControllerState:
    """Tests for the STOPPED/RUNNING state machine."""

    def test_initial_state(self, controller):
        """A new controller is stopped with no detector."""
        assert controller.state is WatchdogState.STOPPED
        assert not controller.is_running
        assert controller.detector is None

    def test_default_settings(self, idle_loop):
        """Without settings the controller uses the module defaults."""
        assert WatchdogController(loop=idle_loop).settings is DEFAULT_SETTINGS

    def test_stop_when_stopped_is_noop(self, controller, thread_factory):
        """stop() on a stopped controller returns None and creates nothing."""
        assert controller.stop() is None
        assert controller.state is WatchdogState.STOPPED
        assert thread_factory.created == []

    def test_start_runs_background_thread(self, controller, thread_factory):
        """start() launches one named daemon thread and the heartbeat."""
        controller.start()

        assert controller.state is WatchdogState.RUNNING
        assert controller.detector is not None
        assert controller.heartbeat.running
        assert len(thread_factory.created) == 1

        thread = thread_factory.created[0]
        assert thread.name == THREAD_NAME
        assert thread.daemon
        assert thread.is_alive()

    def test_start_twice_creates_one_thread(self, controller, thread_factory):
        """A second start() keeps the running cycle."""
        controller.start()
        detector = controller.detector
        controller.start()

        assert len(thread_factory.created) == 1
        assert controller.detector is detector

    def test_stop_joins_thread(self, controller, thread_factory):
        """stop() joins the thread and releases the cycle's resources."""
        controller.start()
        thread = thread_factory.created[0]

        result = controller.stop()

        assert isinstance(result, ShutdownResult)
        assert result.joined is True
        assert result.waited_ms < 1000
        assert not thread.is_alive()
        assert controller.state is WatchdogState.STOPPED
        assert controller.detector is None
        assert not controller.heartbeat.running

    def test_stop_twice_is_noop(self, controller):
        """Only the first stop() does any work."""
        controller.start()
        first = controller.stop()
        second = controller.stop()

        assert first is not None
        assert second is None
        assert controller.last_shutdown is first

    def test_default_heartbeat_interval_from_settings(self, controller, fast_settings):
        """Without an argument the heartbeat uses the configured interval."""
        controller.start()
        assert controller.heartbeat.interval_ms == fast_settings.heartbeat_interval_ms

    def test_explicit_heartbeat_interval(self, controller):
        """An explicit interval overrides the configured one."""
        controller.start(25)
        assert controller.heartbeat.interval_ms == 25

    def test_restart_cycles_keep_single_thread(self, controller, thread_factory):
        """Any number of start/stop cycles never overlaps two threads."""
        for _ in range(5):
            controller.start()
            assert len(watchdog_threads()) <= 1
            controller.stop()

        assert len(thread_factory.created) == 5
        assert thread_factory.max_alive <= 1
        assert thread_factory.alive == 0
        assert watchdog_threads() == []

    def test_context_manager(self, idle_loop, recording_sink, fast_settings, thread_factory):
        """The with-block starts and stops the watchdog."""
        with WatchdogController(
            loop=idle_loop,
            sink=recording_sink,
            settings=fast_settings,
            thread_factory=thread_factory,
        ) as watchdog:
            assert watchdog.is_running

        assert watchdog.state is WatchdogState.STOPPED
        assert not thread_factory.created[0].is_alive()


class TestControllerPreconditions:
    """Invalid starts fail synchronously and leave nothing behind."""

    @pytest.mark.parametrize("interval", [0, -1])
    def test_non_positive_interval(self, controller, thread_factory, interval):
        """Zero or negative intervals are rejected before any thread exists."""
        with pytest.raises(PreconditionError):
            controller.start(interval)

        assert controller.state is WatchdogState.STOPPED
        assert thread_factory.created == []

    def test_no_loop_outside_event_loop(self, recording_sink, thread_factory):
        """Without an explicit loop, start() must run inside the monitored loop."""
        watchdog = WatchdogController(sink=recording_sink, thread_factory=thread_factory)

        with pytest.raises(PreconditionError):
            watchdog.start()

        assert watchdog.state is WatchdogState.STOPPED
        assert thread_factory.created == []

    def test_invalid_settings(self, idle_loop):
        """Unusable settings fail at construction."""
        with pytest.raises(ConfigError):
            WatchdogController(loop=idle_loop, settings=WatchdogSettings(poll_interval_ms=0))

    def test_thread_start_failure_rolls_back(self, idle_loop, recording_sink):
        """A thread that cannot start leaves the heartbeat stopped."""
        thread = Mock()
        thread.start.side_effect = RuntimeError("can't start new thread")
        watchdog = WatchdogController(
            loop=idle_loop,
            sink=recording_sink,
            thread_factory=Mock(return_value=thread),
        )

        with pytest.raises(RuntimeError):
            watchdog.start()

        assert watchdog.state is WatchdogState.STOPPED
        assert not watchdog.heartbeat.running


class TestControllerAlerts:
    """Alert delivery through the controller."""

    def test_stalled_loop_alerts(self, controller, recording_sink, fast_settings):
        """A loop that never ticks produces an alert over threshold."""
        controller.start()

        assert recording_sink.first_alert.wait(timeout=5)
        controller.stop()

        alert = recording_sink.alerts[0]
        assert alert.elapsed_ms > fast_settings.stall_threshold_ms
        assert alert.threshold_ms == fast_settings.stall_threshold_ms

    def test_default_sink_from_options(self, idle_loop):
        """Options pick the default sink."""
        assert type(WatchdogController(loop=idle_loop).sink) is LogOnlySink
        assert isinstance(
            WatchdogController(WatchdogOption.DEBUG_BREAK, loop=idle_loop).sink,
            LogAndBreakSink,
        )

    def test_debug_break_setting_enables_option(self, idle_loop):
        """settings.debug_break turns on DEBUG_BREAK and its sink."""
        watchdog = WatchdogController(loop=idle_loop, settings=WatchdogSettings(debug_break=True))

        assert watchdog.options & WatchdogOption.DEBUG_BREAK
        assert isinstance(watchdog.sink, LogAndBreakSink)

    def test_debug_break_setting_off_keeps_options(self, idle_loop):
        """Without debug_break the options are used as given."""
        watchdog = WatchdogController(loop=idle_loop, settings=WatchdogSettings(debug_break=False))

        assert watchdog.options == WatchdogOption.NONE
        assert type(watchdog.sink) is LogOnlySink

    def test_custom_sink_overrides_options(self, idle_loop, recording_sink):
        """An explicit sink wins over the options."""
        watchdog = WatchdogController(WatchdogOption.DEBUG_BREAK, loop=idle_loop, sink=recording_sink)
        assert watchdog.sink is recording_sink

    def test_debug_break_on_stall(self, idle_loop, fast_settings):
        """DEBUG_BREAK breaks into the debugger on a stall."""
        broke = threading.Event()
        watchdog = WatchdogController(
            loop=idle_loop,
            sink=LogAndBreakSink(break_hook=broke.set),
            settings=fast_settings,
        )

        watchdog.start()
        try:
            assert broke.wait(timeout=5)
        finally:
            watchdog.stop()


class TestBoundedShutdown:
    """stop() never hangs on an unresponsive background thread."""

    def test_stuck_poll_times_out(self, idle_loop, thread_factory):
        """stop() gives up on a stuck poll after the join bound."""
        entered = threading.Event()
        release = threading.Event()

        def stuck(alert):
            entered.set()
            release.wait(timeout=10)

        watchdog = WatchdogController(
            loop=idle_loop,
            sink=CallbackSink(stuck, log=False),
            settings=WatchdogSettings(
                heartbeat_interval_ms=10,
                poll_interval_ms=10,
                stall_threshold_ms=20,
                join_timeout_ms=200,
            ),
            thread_factory=thread_factory,
        )

        watchdog.start()
        try:
            assert entered.wait(timeout=5)

            with capture_logs() as logs:
                started = time.monotonic()
                result = watchdog.stop()
                elapsed = time.monotonic() - started

            assert result.joined is False
            assert elapsed < 0.2 + 1.0
            assert result.waited_ms >= 150
            assert watchdog.state is WatchdogState.STOPPED
            assert watchdog.detector is None
            assert any(entry["event"] == "watchdog_join_timeout" for entry in logs)
        finally:
            release.set()
            thread_factory.created[0].join(timeout=5)

        assert not thread_factory.created[0].is_alive()

    def test_close_stops_running_watchdog(self, controller, thread_factory):
        """close() stops a running watchdog."""
        controller.start()
        controller.close()

        assert controller.state is WatchdogState.STOPPED
        assert not thread_factory.created[0].is_alive()

    def test_dropped_controller_stops_thread(self, idle_loop, recording_sink, fast_settings):
        """Dropping a running controller stops its background thread."""
        assert wait_for_no_watchdog_threads() == []

        watchdog = WatchdogController(loop=idle_loop, sink=recording_sink, settings=fast_settings)
        watchdog.start()
        assert len(watchdog_threads()) == 1

        del watchdog
        gc.collect()

        assert wait_for_no_watchdog_threads() == []

    def test_stop_from_inside_sink(self, idle_loop, fast_settings, thread_factory):
        """stop() called on the watchdog thread does not try to join itself."""
        results = []
        done = threading.Event()

        def stop_self(alert):
            results.append(watchdog.stop())
            done.set()

        watchdog = WatchdogController(
            loop=idle_loop,
            sink=CallbackSink(stop_self, log=False),
            settings=fast_settings,
            thread_factory=thread_factory,
        )
        watchdog.start()

        assert done.wait(timeout=5)
        thread_factory.created[0].join(timeout=2)

        assert results[0].joined is False
        assert watchdog.state is WatchdogState.STOPPED
        assert not thread_factory.created[0].is_alive()
