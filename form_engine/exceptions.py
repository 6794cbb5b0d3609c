"""
Custom exception classes for the form engine.

This module provides specialized exception classes for schema invariant
violations, version transition violations and I/O failures. Coercion failures
never raise; they are recovered inside the field type registry.
"""

import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class FormEngineError(Exception):
    """
    Base exception for form engine errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


# --- Schema invariant violations -------------------------------------------

class SchemaInvariantError(FormEngineError):
    """Raised when a structural rule of the form schema would be broken."""


class InvalidParentError(SchemaInvariantError):
    """
    Exception raised when a node is attached to a parent that cannot hold it.

    This covers subgroups receiving child groups (depth > 2) and nodes that
    would end up with zero or two parents.
    """

    def __init__(self, child_kind: str, parent_kind: str, reason: str,
                 message: Optional[str] = None):
        self.child_kind = child_kind
        self.parent_kind = parent_kind
        self.reason = reason

        if message is None:
            message = f"Cannot attach {child_kind} to {parent_kind}: {reason}"

        context = {
            'child_kind': child_kind,
            'parent_kind': parent_kind,
            'reason': reason
        }

        recovery_suggestions = [
            "Attach the group to the form or to a top-level group instead",
            "Field groups support a single level of subgroups"
        ]

        super().__init__(message, context, recovery_suggestions)


class NameDerivationError(SchemaInvariantError):
    """Raised when no unique machine name can be found for a label."""

    def __init__(self, label: str, base_name: str, attempts: int):
        self.label = label
        self.base_name = base_name
        self.attempts = attempts

        message = (f"Could not derive a unique field name from label '{label}' "
                   f"after {attempts} attempts")
        context = {
            'label': label,
            'base_name': base_name,
            'attempts': attempts
        }
        super().__init__(message, context, ["Use a more distinctive label"])


# --- Version transition violations ------------------------------------------

class VersionTransitionError(FormEngineError):
    """
    Base exception for illegal draft/publish transitions.

    Attributes:
        slug: Form lineage slug
        language: Language code of the lineage
        transition: Name of the rejected transition
    """

    def __init__(self, transition: str, slug: Optional[str], language: Optional[str],
                 reason: str, recovery_suggestions: Optional[List[str]] = None):
        self.transition = transition
        self.slug = slug
        self.language = language
        self.reason = reason

        message = f"Cannot {transition} form '{slug}' ({language}): {reason}"
        context = {
            'transition': transition,
            'slug': slug,
            'language': language,
            'reason': reason
        }
        super().__init__(message, context, recovery_suggestions)


class PublishNotAllowedError(VersionTransitionError):
    """Raised when publishing a row that is already published."""

    def __init__(self, slug: Optional[str], language: Optional[str], version: int):
        self.version = version
        super().__init__(
            "publish", slug, language,
            f"version {version} is already published",
            ["Create a new draft to make further changes"]
        )


class DraftAlreadyExistsError(VersionTransitionError):
    """Raised when a lineage already holds a draft."""

    def __init__(self, slug: Optional[str], language: Optional[str]):
        super().__init__(
            "create draft for", slug, language,
            "a draft already exists for this language",
            ["Open the existing draft instead"]
        )


class NotADraftError(VersionTransitionError):
    """Raised when a draft-only transition is applied to a published row."""

    def __init__(self, transition: str, slug: Optional[str], language: Optional[str],
                 version: int):
        self.version = version
        super().__init__(
            transition, slug, language,
            f"version {version} is published and can no longer be changed",
            ["Create a new draft to make further changes"]
        )


class SoleLanguageVariantError(VersionTransitionError):
    """Raised when deleting the only remaining row of a form."""

    def __init__(self, slug: Optional[str], language: Optional[str]):
        super().__init__(
            "delete draft of", slug, language,
            "it is the only variant of this form",
            ["Add another language or publish the draft first"]
        )


class VersionNotFoundError(VersionTransitionError):
    """Raised when a requested version does not exist in the lineage."""

    def __init__(self, slug: Optional[str], language: Optional[str],
                 version: Optional[int]):
        self.version = version
        super().__init__(
            "select", slug, language,
            f"version {version if version is not None else 'latest'} does not exist"
        )


# --- I/O failures ------------------------------------------------------------

class PersistenceError(FormEngineError):
    """Raised by repositories when a load/save/delete cannot be completed."""

    def __init__(self, operation: str, target: Optional[str], original_error: Optional[Exception] = None,
                 message: Optional[str] = None):
        self.operation = operation
        self.target = target
        self.original_error = original_error

        if message is None:
            message = f"Failed to {operation} {target}"
            if original_error is not None:
                message = f"{message}: {original_error}"

        context = {
            'operation': operation,
            'target': target,
            'original_error_type': type(original_error).__name__ if original_error else None
        }
        super().__init__(message, context, ["Retry the operation"])


class UploadError(FormEngineError):
    """Raised when a file upload fails."""

    def __init__(self, filename: str, original_error: Optional[Exception] = None):
        self.filename = filename
        self.original_error = original_error
        message = f"Failed to upload {filename}"
        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(message, {'filename': filename}, ["Retry the upload"])
