"""
Unit tests for scheduler module.
"""

import threading
from unittest.mock import MagicMock

from form_engine.error_reporting import ErrorReporter
from form_engine.exceptions import PersistenceError
from form_engine.scheduler import (
    AutoExecuteScheduler,
    CancellableTimer,
    FormAction,
    ThreadingTimerBackend,
    default_actions,
    find_auto_execute_action,
)
from test_fixtures import ManualTimerBackend


class TestCancellableTimer:

    def test_schedule_fires_after_delay(self):
        backend = ManualTimerBackend()
        timer = CancellableTimer(backend)
        callback = MagicMock()

        timer.schedule(callback, 500)
        assert timer.pending
        backend.advance(499)
        callback.assert_not_called()
        backend.advance(1)
        callback.assert_called_once()
        assert not timer.pending

    def test_reschedule_replaces_pending_callback(self):
        backend = ManualTimerBackend()
        timer = CancellableTimer(backend)
        first, second = MagicMock(), MagicMock()

        timer.schedule(first, 100)
        timer.schedule(second, 100)
        assert backend.pending_count == 1
        backend.advance(1000)
        first.assert_not_called()
        second.assert_called_once()

    def test_cancel(self):
        backend = ManualTimerBackend()
        timer = CancellableTimer(backend)
        callback = MagicMock()
        timer.schedule(callback, 100)
        timer.cancel()
        backend.advance(1000)
        callback.assert_not_called()

    def test_threading_backend(self):
        fired = threading.Event()
        timer = CancellableTimer(ThreadingTimerBackend())
        timer.schedule(fired.set, 10)
        assert fired.wait(timeout=5)


class TestActions:

    def test_default_action_is_submit(self):
        actions = default_actions()
        assert len(actions) == 1
        assert actions[0].type == "submit"
        assert find_auto_execute_action(actions) is None

    def test_first_auto_execute_action_wins(self):
        a = FormAction(id="a")
        b = FormAction(id="b", auto_execute=True)
        c = FormAction(id="c", auto_execute=True)
        assert find_auto_execute_action([a, b, c]) is b


class TestAutoExecuteScheduler:

    def setup_method(self):
        self.backend = ManualTimerBackend()
        self.execute = MagicMock()
        self.action = FormAction(id="autosave", auto_execute=True)
        self.scheduler = AutoExecuteScheduler(self.action, self.execute, backend=self.backend)

    def test_burst_of_edits_fires_once_after_last(self):
        for _ in range(3):
            self.scheduler.notify_edit()
            self.backend.advance(200)
        # last edit at t=400
        self.backend.advance(799)
        self.execute.assert_not_called()
        self.backend.advance(1)
        self.execute.assert_called_once_with(self.action)
        assert self.backend.now == 1400
        self.backend.advance(5000)
        assert self.execute.call_count == 1

    def test_custom_debounce(self):
        action = FormAction(auto_execute=True, auto_execute_debounce_ms=300)
        scheduler = AutoExecuteScheduler(action, self.execute, backend=self.backend)
        scheduler.notify_edit()
        self.backend.advance(300)
        self.execute.assert_called_once()

    def test_non_auto_action_never_fires(self):
        scheduler = AutoExecuteScheduler(FormAction(), self.execute, backend=self.backend)
        scheduler.notify_edit()
        self.backend.advance(5000)
        self.execute.assert_not_called()

    def test_loading_minimum_duration(self):
        self.scheduler.notify_edit()
        assert not self.scheduler.loading
        self.backend.advance(1000)
        assert self.scheduler.loading
        assert self.scheduler.progress_text == "Auto-saving..."
        self.backend.advance(999)
        assert self.scheduler.loading
        self.backend.advance(1)
        assert not self.scheduler.loading
        assert self.scheduler.progress_text == ""

    def test_loading_held_while_action_runs(self):
        observed = []

        def slow_action(action):
            self.backend.advance(1500)
            observed.append(scheduler.loading)

        scheduler = AutoExecuteScheduler(self.action, slow_action, backend=self.backend)
        scheduler.notify_edit()
        self.backend.advance(1000)

        assert observed == [True]
        assert self.backend.now == 2500
        # the minimum window counts from the end of the action
        self.backend.advance(999)
        assert scheduler.loading
        self.backend.advance(1)
        assert not scheduler.loading

    def test_reported_completion_clears_loading(self):
        self.action.auto_execute_loading = False
        self.scheduler.notify_edit()
        self.backend.advance(1000)
        assert self.scheduler.loading

        self.scheduler.report_loading(True)
        assert self.scheduler.loading
        self.scheduler.report_loading(False)
        assert not self.scheduler.loading

    def test_failure_is_reported(self):
        reporter = ErrorReporter()
        execute = MagicMock(side_effect=PersistenceError("save submission", "s-1", ConnectionError("down")))
        scheduler = AutoExecuteScheduler(self.action, execute, reporter=reporter, backend=self.backend)

        scheduler.notify_edit()
        self.backend.advance(1000)
        assert len(reporter.messages) == 1
        assert reporter.messages[0].context == "auto-execute autosave"

        # the scheduler keeps working after a failure
        execute.side_effect = None
        scheduler.notify_edit()
        self.backend.advance(1000)
        assert execute.call_count == 2

    def test_close_abandons_pending_trigger(self):
        self.scheduler.notify_edit()
        self.scheduler.close()
        self.backend.advance(5000)
        self.execute.assert_not_called()

        self.scheduler.notify_edit()
        assert not self.scheduler.pending
