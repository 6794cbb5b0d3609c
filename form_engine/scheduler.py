"""
Auto-execute scheduling for form actions.

An action declared with ``auto_execute`` runs after field edits settle: every
edit restarts a single debounce timer, so a burst of edits fires the action
once. While it runs a loading flag is raised for the console's progress text.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 1000
DEFAULT_LOADING_MS = 1000
DEFAULT_PROGRESS_TEXT = "Auto-saving..."


class ThreadingTimerBackend:
    """Runs callbacks on ``threading.Timer`` threads."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return timer


class CancellableTimer:
    """
    Handle for at most one pending callback.

    ``schedule`` cancels whatever is pending before arming the new callback;
    ``cancel`` drops it without running it. A callback whose timer thread
    already woke up is skipped if it was superseded in the meantime.
    """

    def __init__(self, backend: Any = None):
        self._backend = backend or ThreadingTimerBackend()
        self._lock = threading.Lock()
        self._handle: Any = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, callback: Callable[[], None], delay_ms: int) -> None:
        with self._lock:
            self._cancel_locked()
            generation = self._generation

            def _fire() -> None:
                with self._lock:
                    if generation != self._generation:
                        return
                    self._handle = None
                callback()

            self._handle = self._backend.call_later(delay_ms, _fire)

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


@dataclass
class FormAction:
    """
    An action button declared on a form.

    Attributes:
        id: Action identifier
        type: "submit", "button" or "reset"
        value: Button text
        order: Display order
        auto_execute: Run the action automatically after edits
        auto_execute_debounce_ms: Debounce interval (default 1000 ms)
        auto_execute_progress_text: Text shown while the action runs
        auto_execute_loading: Loading signal reported by the action itself;
            None when the action reports no completion signal
        callback: Handler run instead of the form's submit handler
    """
    id: str = "submit"
    type: str = "submit"
    value: str = "Submit"
    order: Optional[int] = None
    auto_execute: bool = False
    auto_execute_debounce_ms: Optional[int] = None
    auto_execute_progress_text: str = DEFAULT_PROGRESS_TEXT
    auto_execute_loading: Optional[bool] = None
    callback: Optional[Callable[..., Any]] = None


def default_actions() -> List[FormAction]:
    return [FormAction()]


def find_auto_execute_action(actions: List[FormAction]) -> Optional[FormAction]:
    for action in actions:
        if action.auto_execute:
            return action
    return None


class AutoExecuteScheduler:
    """
    Debounces one auto-executing action.

    Args:
        action: The declared action
        execute: Called with the action when the debounce interval elapses
        reporter: ErrorReporter receiving failures of ``execute``
        backend: Timer backend (threads by default)
        loading_ms: Minimum time the loading flag stays raised when the
            action reports no completion signal
    """

    def __init__(self, action: FormAction, execute: Callable[[FormAction], Any],
                 reporter: Any = None, backend: Any = None,
                 debounce_ms: Optional[int] = None, loading_ms: int = DEFAULT_LOADING_MS):
        self.action = action
        self._execute = execute
        self._reporter = reporter
        self.debounce_ms = action.auto_execute_debounce_ms or debounce_ms or DEFAULT_DEBOUNCE_MS
        self.loading_ms = loading_ms
        self._debounce = CancellableTimer(backend)
        self._loading_timer = CancellableTimer(backend)
        self._loading = False
        self.closed = False
        self.run_count = 0

    @property
    def pending(self) -> bool:
        return self._debounce.pending

    @property
    def loading(self) -> bool:
        if self.action.auto_execute_loading is not None:
            return self._loading or bool(self.action.auto_execute_loading)
        return self._loading

    @property
    def progress_text(self) -> str:
        return self.action.auto_execute_progress_text if self.loading else ""

    def notify_edit(self) -> None:
        """Restart the debounce window after an edit."""
        if self.closed or not self.action.auto_execute:
            return
        self._debounce.schedule(self._run, self.debounce_ms)

    def report_loading(self, loading: bool) -> None:
        """Completion signal from the action: False ends the loading state."""
        self.action.auto_execute_loading = loading
        if not loading:
            self._loading_timer.cancel()
            self._loading = False

    def close(self) -> None:
        """Abandon pending timers without running them."""
        self.closed = True
        self._debounce.cancel()
        self._loading_timer.cancel()
        self._loading = False

    def _run(self) -> None:
        if self.closed:
            return
        self._loading = True
        self.run_count += 1
        logger.debug(f"Auto-executing action '{self.action.id}'")
        try:
            self._execute(self.action)
        except Exception as e:
            if self._reporter is None:
                logger.error(f"Auto-execute of '{self.action.id}' failed: {e}", exc_info=True)
            else:
                self._reporter.report(e, f"auto-execute {self.action.id}")

        # the minimum loading window starts once the action has returned
        if self.action.auto_execute_loading is None and not self.closed:
            self._loading_timer.schedule(self._clear_loading, self.loading_ms)

    def _clear_loading(self) -> None:
        self._loading = False
