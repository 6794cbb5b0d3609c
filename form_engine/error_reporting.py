"""
Shared alert collaborator for the form engine.
Turns I/O and transition failures into dismissable, user-friendly messages.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import streamlit as st

from .exceptions import (
    FormEngineError,
    PersistenceError,
    SchemaInvariantError,
    UploadError,
    VersionTransitionError,
)

logger = logging.getLogger(__name__)


class ErrorType:
    """Error type constants."""
    PERSISTENCE = "persistence"
    UPLOAD = "upload"
    VERSIONING = "versioning"
    SCHEMA = "schema"
    NETWORK = "network"
    USER_INPUT = "user_input"
    SYSTEM = "system"


_FRIENDLY_MESSAGES: Dict[str, Dict[Any, str]] = {
    ErrorType.PERSISTENCE: {
        PermissionError: "🔒 Permission denied while saving. Please contact your administrator.",
        FileNotFoundError: "📁 The requested form could not be found. It may have been deleted.",
        "default": "💾 Your changes could not be saved. Please try again.",
    },
    ErrorType.UPLOAD: {
        "default": "Oops, we couldn't upload that file.",
    },
    ErrorType.NETWORK: {
        ConnectionError: "🌐 Network connection error. Please check your internet connection.",
        TimeoutError: "⏱️ Request timed out. Please try again.",
        "default": "🌐 Network error occurred. Please check your connection and try again.",
    },
    ErrorType.USER_INPUT: {
        ValueError: "⚠️ Invalid input provided. Please check your data and try again.",
        "default": "⚠️ Input error. Please review your data and try again.",
    },
    ErrorType.SYSTEM: {
        "default": "💻 Something went wrong. Please try again or contact support.",
    },
}


def classify(error: Exception) -> str:
    """Pick the ErrorType category of an exception."""
    if isinstance(error, UploadError):
        return ErrorType.UPLOAD
    if isinstance(error, PersistenceError):
        if isinstance(error.original_error, (ConnectionError, TimeoutError)):
            return ErrorType.NETWORK
        return ErrorType.PERSISTENCE
    if isinstance(error, VersionTransitionError):
        return ErrorType.VERSIONING
    if isinstance(error, SchemaInvariantError):
        return ErrorType.SCHEMA
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorType.NETWORK
    if isinstance(error, FormEngineError):
        return ErrorType.USER_INPUT
    return ErrorType.SYSTEM


def friendly_message(error: Exception, error_type: Optional[str] = None) -> str:
    """
    Generate a user-friendly message for an error.

    Engine errors for versioning, schema and user input already carry a
    readable message and are shown as is.
    """
    error_type = error_type or classify(error)
    if error_type in (ErrorType.VERSIONING, ErrorType.SCHEMA) or (
            error_type == ErrorType.USER_INPUT and isinstance(error, FormEngineError)):
        return str(error)

    messages = _FRIENDLY_MESSAGES.get(error_type, _FRIENDLY_MESSAGES[ErrorType.SYSTEM])
    cause = getattr(error, "original_error", None) or error
    for exception_type, message in messages.items():
        if exception_type != "default" and isinstance(cause, exception_type):
            return message
    return messages.get("default", "An unexpected error occurred.")


@dataclass
class AlertMessage:
    id: int
    text: str
    error_type: str
    context: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class ErrorReporter:
    """
    Collects dismissable alert messages.

    A single reporter is shared by the sessions and schedulers of a console
    so every failure ends up in one place.
    """

    def __init__(self):
        self._messages: List[AlertMessage] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def messages(self) -> List[AlertMessage]:
        with self._lock:
            return list(self._messages)

    @property
    def has_errors(self) -> bool:
        return bool(self._messages)

    def set_error(self, text: str, error_type: str = ErrorType.SYSTEM, context: str = "",
                  details: Optional[Dict[str, Any]] = None) -> AlertMessage:
        """Add a plain-text alert."""
        with self._lock:
            message = AlertMessage(next(self._ids), text, error_type, context, details or {})
            self._messages.append(message)
        self._display(message)
        return message

    def report(self, error: Exception, context: str,
               user_message: Optional[str] = None) -> AlertMessage:
        """
        Log an exception and turn it into an alert.

        Args:
            error: The exception that occurred
            context: Where it occurred (e.g. "auto-execute submit")
            user_message: Custom text overriding the derived message

        Returns:
            The stored AlertMessage
        """
        logger.error(f"Error in {context}: {error}", exc_info=error)
        error_type = classify(error)
        details = error.get_full_details() if isinstance(error, FormEngineError) else {
            'error_type': type(error).__name__,
            'message': str(error),
        }
        return self.set_error(user_message or friendly_message(error, error_type), error_type, context, details)

    def dismiss(self, message_id: int) -> bool:
        with self._lock:
            before = len(self._messages)
            self._messages = [m for m in self._messages if m.id != message_id]
            return len(self._messages) != before

    def clear(self) -> None:
        with self._lock:
            self._messages = []

    def _display(self, message: AlertMessage) -> None:
        """Hook for UI-backed reporters."""


class StreamlitErrorReporter(ErrorReporter):
    """
    ErrorReporter rendered through ``st.error``.

    Alerts can be raised on the auto-execute timer thread, where Streamlit
    calls are not allowed, so they are drawn by ``render`` during a script run.
    """

    def render(self) -> None:
        """Show every open alert with a dismiss button."""
        for message in self.messages:
            col1, col2 = st.columns([6, 1])
            with col1:
                st.error(message.text)
            with col2:
                if st.button("Dismiss", key=f"dismiss_alert_{message.id}"):
                    self.dismiss(message.id)
                    st.rerun()
