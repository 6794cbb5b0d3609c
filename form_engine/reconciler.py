"""
Response reconciliation for the form engine.
Merges a form schema with previously submitted field responses into an edit
buffer, applies edits to it and flattens it back into a submission payload.
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from deepdiff import DeepDiff

from .entities import FieldRef, FieldResponse, Form, FormRef, FormSubmission
from .field_registry import FieldTypeRegistry

logger = logging.getLogger(__name__)

_default_registry = FieldTypeRegistry()


class EditBuffer(Mapping[str, FieldResponse]):
    """
    Immutable map of field id -> FieldResponse for an editing session.

    Updates return a new buffer; the previous one is left untouched.
    """

    def __init__(self, responses: Optional[Mapping[str, FieldResponse]] = None):
        self._responses: Dict[str, FieldResponse] = dict(responses or {})

    def __getitem__(self, field_id: str) -> FieldResponse:
        return self._responses[field_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._responses)

    def __len__(self) -> int:
        return len(self._responses)

    def __repr__(self) -> str:
        return f"EditBuffer({self._responses!r})"

    def value_of(self, field_id: Optional[str], default: Any = None) -> Any:
        response = self._responses.get(field_id or "")
        return response.value if response is not None else default

    def loaded_value_of(self, field_id: Optional[str]) -> Any:
        response = self._responses.get(field_id or "")
        return response.loaded_value if response is not None else None

    def replace(self, field_id: str, response: FieldResponse) -> "EditBuffer":
        updated = dict(self._responses)
        updated[field_id] = response
        return EditBuffer(updated)

    def snapshot(self) -> Dict[str, Any]:
        """Plain ``{field_id: value}`` view used for change detection."""
        return {
            field_id: response.model_dump(mode="json", by_alias=True)["value"]
            for field_id, response in self._responses.items()
        }


def build_edit_buffer(schema: Form, submission: Optional[FormSubmission] = None) -> EditBuffer:
    """
    Build the edit buffer for a form and an optional prior submission.

    Each seeded response keeps only the field id as back-reference, so schema
    data stored with an old submission never leaks into the buffer.

    Args:
        schema: Form being filled (authoritative schema)
        submission: Previously saved submission, if any

    Returns:
        EditBuffer keyed by field id (empty without a submission)
    """
    if submission is None:
        return EditBuffer()

    responses: Dict[str, FieldResponse] = {}
    for response in submission.field_responses:
        field_id = response.field.id
        responses[field_id] = FieldResponse(
            value=response.value,
            field=FieldRef(id=field_id),
            loaded_value=response.loaded_value,
        )

    logger.info(f"Seeded edit buffer for form {schema.id} with {len(responses)} responses "
                f"from submission {submission.id}")
    return EditBuffer(responses)


def apply_edit(buffer: EditBuffer, field_id: str, field_type: Optional[str], raw_value: Any,
               registry: Optional[FieldTypeRegistry] = None) -> EditBuffer:
    """
    Apply one edit event to the buffer.

    The entry for ``field_id`` is replaced wholesale with the coerced value
    and a ``{id, type}`` back-reference.

    Returns:
        New EditBuffer; the given buffer is unchanged
    """
    registry = registry or _default_registry
    previous = buffer.value_of(field_id)
    value = registry.coerce_edit(field_type, raw_value, previous)
    response = FieldResponse(value=value, field=FieldRef(id=field_id, type=field_type))
    return buffer.replace(field_id, response)


def flatten(buffer: EditBuffer) -> List[FieldResponse]:
    """Emit the buffered responses; untouched fields are omitted."""
    return [response.model_copy(deep=True) for response in buffer.values()]


def build_submission_payload(form: Form, buffer: EditBuffer,
                             submission: Optional[FormSubmission] = None) -> FormSubmission:
    """Flatten the buffer into the outbound FormSubmission payload."""
    payload = FormSubmission(
        id=submission.id if submission else None,
        form=FormRef(id=form.id),
        field_responses=flatten(buffer),
    )
    if submission is not None:
        payload.status = submission.status
        payload.user_id = submission.user_id
    return payload


def changed_field_ids(buffer: EditBuffer, baseline: Optional[EditBuffer] = None) -> Set[str]:
    """
    Field ids whose value differs between the buffer and a baseline.

    Args:
        buffer: Live edit buffer
        baseline: Buffer as seeded from the last loaded submission

    Returns:
        Set of changed field ids
    """
    before = baseline.snapshot() if baseline is not None else {}
    after = buffer.snapshot()
    diff = DeepDiff(before, after, ignore_order=True, view="tree")

    changed: Set[str] = set()
    for change_type in ("dictionary_item_added", "dictionary_item_removed", "values_changed",
                        "type_changes", "iterable_item_added", "iterable_item_removed"):
        for level in diff.get(change_type, []):
            path = level.path(output_format="list")
            if path:
                changed.add(str(path[0]))
    return changed


def _submission_identity(submission: FormSubmission) -> Any:
    return submission.id if submission.id else id(submission)


class SubmissionSeedLatch:
    """
    Seeds an edit buffer from a submission at most once per submission identity.

    Once seeded, later loads of the same submission (re-renders, re-fetches)
    leave in-progress edits alone.
    """

    def __init__(self):
        self.loaded = False
        self._identity: Any = None

    def seed(self, schema: Form, submission: Optional[FormSubmission],
             current: EditBuffer) -> EditBuffer:
        """
        Return the buffer to use after a (re)load.

        Args:
            schema: Form being filled
            submission: Submission passed by the caller (may be None)
            current: Buffer currently in use

        Returns:
            A freshly seeded buffer, or ``current`` when the latch is closed
        """
        if submission is not None and self.loaded and self._identity == _submission_identity(submission):
            return current

        if submission is None:
            return current

        buffer = build_edit_buffer(schema, submission)
        self.loaded = True
        self._identity = _submission_identity(submission)
        return buffer

    def adopt(self, submission: FormSubmission) -> None:
        """Record a freshly saved submission as already seeded."""
        self.loaded = True
        self._identity = _submission_identity(submission)

    def reset(self) -> None:
        self.loaded = False
        self._identity = None
