"""
Editing sessions for the form engine.

A session is created by the caller for one screen and owns everything that
screen mutates: the edit buffer and auto-execute scheduler when filling in a
form, or the slide-over flags and working copies when building one. Closing
a session abandons its pending timers.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .config_loader import FormsSettings
from .entities import Field, FieldGroup, Form, FormParent, FormSubmission, GroupParent, Language
from .error_reporting import ErrorReporter
from .exceptions import InvalidParentError, NotADraftError
from .field_registry import FieldTypeRegistry, FileUploadTracker, ResolvedField, UploadedFile
from .reconciler import (
    EditBuffer,
    SubmissionSeedLatch,
    apply_edit,
    build_submission_payload,
    changed_field_ids,
)
from .scheduler import AutoExecuteScheduler, FormAction, default_actions, find_auto_execute_action
from .schema_model import (
    attach_field,
    attach_group,
    can_add_subgroup,
    detach_field,
    detach_group,
    find_field,
    find_group,
    order_sorted,
    parent_options,
    relabel_field,
)
from .versioning import FormLineage, FormVersionService

logger = logging.getLogger(__name__)


class FormFillSession:
    """
    One user filling in (or re-opening) a submission of a form.

    Args:
        form: Form being filled
        submission: Previously saved submission, if any
        submission_store: Store used by the default submit handler
        uploader: FileUploader for file fields
        reporter: Shared ErrorReporter
        actions: Declared form actions (a single submit action by default)
        on_submit: Handler replacing ``submission_store.save_submission``;
            receives the payload and returns the saved submission
        registry: Field type registry
        timer_backend: Timer backend for the auto-execute scheduler
        settings: Forms settings (debounce and loading durations, upload URL)
    """

    def __init__(self, form: Form, submission: Optional[FormSubmission] = None, *,
                 submission_store: Any = None, uploader: Any = None,
                 reporter: Optional[ErrorReporter] = None,
                 actions: Optional[Sequence[FormAction]] = None,
                 on_submit: Optional[Callable[[FormSubmission], FormSubmission]] = None,
                 registry: Optional[FieldTypeRegistry] = None,
                 timer_backend: Any = None,
                 settings: Optional[FormsSettings] = None):
        self.form = form
        self.submission: Optional[FormSubmission] = None
        self.submission_store = submission_store
        self.uploader = uploader
        self.reporter = reporter or ErrorReporter()
        self.registry = registry or FieldTypeRegistry()
        self.settings = settings or FormsSettings()
        self.actions: List[FormAction] = list(actions) if actions else default_actions()
        self._on_submit = on_submit

        # the auto-execute timer thread and the caller share the session state
        self._lock = threading.RLock()
        self.latch = SubmissionSeedLatch()
        self.buffer = EditBuffer()
        self.baseline = EditBuffer()
        self.upload_trackers: Dict[str, FileUploadTracker] = {}

        self.scheduler: Optional[AutoExecuteScheduler] = None
        auto_action = find_auto_execute_action(self.actions)
        if auto_action is not None:
            self.scheduler = AutoExecuteScheduler(
                auto_action,
                self.run_action,
                reporter=self.reporter,
                backend=timer_backend,
                debounce_ms=self.settings.auto_execute_debounce_ms,
                loading_ms=self.settings.auto_execute_loading_ms,
            )

        self.load(submission)

    def __enter__(self) -> "FormFillSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- Loading ---------------------------------------------------------

    def load(self, submission: Optional[FormSubmission]) -> EditBuffer:
        """
        Hand a (re)loaded submission to the session.

        The buffer is seeded only the first time a given submission arrives;
        repeated loads of the same one keep the user's edits.
        """
        with self._lock:
            seeded = self.latch.seed(self.form, submission, self.buffer)
            if seeded is not self.buffer:
                self.buffer = seeded
                self.baseline = seeded
                self.submission = submission
                self.upload_trackers = {}
            return self.buffer

    # --- Editing ---------------------------------------------------------

    def value_of(self, field_id: str, default: Any = None) -> Any:
        return self.buffer.value_of(field_id, default)

    def handle_change(self, field_id: str, raw_value: Any) -> EditBuffer:
        """Apply an edit event and restart the auto-execute debounce."""
        field = find_field(self.form, field_id)
        field_type = field.type if field is not None else None
        with self._lock:
            self.buffer = apply_edit(self.buffer, field_id, field_type, raw_value, self.registry)
            buffer = self.buffer
        if self.scheduler is not None:
            self.scheduler.notify_edit()
        return buffer

    def resolve(self, field: Field) -> ResolvedField:
        return self.registry.resolve(field, self.buffer.value_of(field.id))

    def changed_fields(self) -> Set[str]:
        return changed_field_ids(self.buffer, self.baseline)

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self.changed_fields())

    # --- File uploads ----------------------------------------------------

    def tracker_for(self, field: Field) -> FileUploadTracker:
        with self._lock:
            tracker = self.upload_trackers.get(field.id)
            if tracker is None:
                tracker = FileUploadTracker(self.buffer.loaded_value_of(field.id))
                self.upload_trackers[field.id] = tracker
            return tracker

    def upload(self, field: Field, files: Sequence[Any]) -> bool:
        """
        Upload files for a file field and record the accumulated keys.

        Returns:
            True if at least one file was uploaded
        """
        tracker = self.tracker_for(field)
        target = field.type_params.get("mediaUploadUrl") or self.settings.media_upload_url
        envelope = tracker.upload(
            self.uploader, target, files,
            on_error=lambda e: self.reporter.report(e, f"upload for field '{field.name}'"),
        )
        if envelope is None:
            return False
        self.handle_change(field.id, envelope)
        return True

    def remove_upload(self, field: Field, entry: UploadedFile) -> None:
        """Hide an uploaded file; the field value is left as it is."""
        self.tracker_for(field).remove(entry)

    def uploads_complete(self) -> bool:
        return all(tracker.is_complete for tracker in self.upload_trackers.values())

    # --- Actions ---------------------------------------------------------

    def sorted_actions(self) -> List[FormAction]:
        return order_sorted(self.actions)

    @property
    def loading(self) -> bool:
        return self.scheduler.loading if self.scheduler is not None else False

    def submit(self) -> Optional[FormSubmission]:
        """
        Flatten the buffer and save it.

        Failures are reported and leave the buffer untouched so the user can
        retry.

        Returns:
            The saved submission, or None on failure
        """
        with self._lock:
            submitted = self.buffer
            payload = build_submission_payload(self.form, submitted, self.submission)
            try:
                if self._on_submit is not None:
                    saved = self._on_submit(payload)
                else:
                    saved = self.submission_store.save_submission(payload)
            except Exception as e:
                self.reporter.report(e, f"submit form '{self.form.slug}'")
                return None

            if saved is not None:
                self.submission = saved
                self.latch.adopt(saved)
                # edits made while the save was in flight stay dirty
                self.baseline = submitted
                logger.info(f"Submitted {len(payload.field_responses)} responses for form {self.form.id}")
            return saved

    def run_action(self, action: FormAction) -> Any:
        """Run an action: its callback if it has one, otherwise submit."""
        if action.callback is not None:
            return action.callback(self)
        return self.submit()

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.close()


class FormBuilderSession:
    """
    Authoring session for one Form row.

    Replaces a global context with explicit state: which slide-over is open
    and which field or group is being edited. Field and group edits work on
    copies that reach the form only when saved.
    """

    def __init__(self, form: Form, repository: Any, reporter: Optional[ErrorReporter] = None,
                 settings: Optional[FormsSettings] = None):
        self.form = form
        self.repository = repository
        self.versions = FormVersionService(repository)
        self.reporter = reporter or ErrorReporter()
        self.settings = settings or FormsSettings()

        self.metadata_open = False
        self.edit_field_open = False
        self.edit_field_group_open = False
        self.active_field: Optional[Field] = None
        self.active_field_group: Optional[FieldGroup] = None

    # --- Slide-over state ------------------------------------------------

    def open_metadata(self) -> None:
        self.metadata_open = True

    def close_metadata(self) -> None:
        self.metadata_open = False

    def start_new_field(self, parent: Optional[Any] = None) -> Field:
        field = Field()
        field.parent = self._parent_ref(parent or self.form)
        return self._activate_field(field)

    def edit_field(self, field: Field) -> Field:
        return self._activate_field(field.model_copy(deep=True))

    def close_field(self) -> None:
        self.edit_field_open = False
        self.active_field = None

    def start_new_group(self, parent: Optional[Any] = None) -> FieldGroup:
        group = FieldGroup()
        group.parent = self._parent_ref(parent or self.form)
        return self._activate_group(group)

    def edit_group(self, group: FieldGroup) -> FieldGroup:
        return self._activate_group(group.model_copy(deep=True))

    def close_group(self) -> None:
        self.edit_field_group_open = False
        self.active_field_group = None

    def _activate_field(self, field: Field) -> Field:
        self.active_field = field
        self.edit_field_open = True
        return field

    def _activate_group(self, group: FieldGroup) -> FieldGroup:
        self.active_field_group = group
        self.edit_field_group_open = True
        return group

    # --- Field editing ---------------------------------------------------

    def parent_options(self) -> Dict[str, str]:
        return parent_options(self.form)

    def can_add_subgroup(self, group: FieldGroup) -> bool:
        return can_add_subgroup(group)

    def set_label(self, label: str) -> str:
        """Relabel the active field; its name follows the label."""
        return relabel_field(self.form, self.active_field, label, self.settings.name_max_length)

    def set_parent(self, node: Any, parent_id: str) -> None:
        """Point the active field or group at a parent chosen from ``parent_options``."""
        if parent_id not in self.parent_options():
            raise InvalidParentError(type(node).__name__, parent_id, "unknown parent")
        node.parent = self._parent_ref(self._resolve_parent(None, parent_id))

    def save_field(self) -> bool:
        """
        Attach the active field to its parent and save the form.

        Returns:
            True on success; failures are reported
        """
        field = self.active_field
        if field is None:
            return False
        try:
            self._check_editable("save field")
            parent = self._resolve_parent(field.parent)
            existing = find_field(self.form, field.id) if field.id else None
            if existing is not None and self._same_parent(existing, field):
                self._replace_in_place(existing, field)
            else:
                attach_field(field, parent, self.form)
            self._persist()
        except Exception as e:
            self.reporter.report(e, "save field")
            return False
        self.close_field()
        return True

    def delete_field(self, field: Field) -> bool:
        try:
            self._check_editable("delete field")
            detach_field(self.form, field)
            self._persist()
        except Exception as e:
            self.reporter.report(e, "delete field")
            return False
        self.close_field()
        return True

    def save_group(self) -> bool:
        group = self.active_field_group
        if group is None:
            return False
        try:
            self._check_editable("save field group")
            parent = self._resolve_parent(group.parent)
            existing = find_group(self.form, group.id) if group.id else None
            if existing is not None and self._same_parent(existing, group):
                self._replace_in_place(existing, group)
            else:
                attach_group(group, parent, self.form)
            self._persist()
        except Exception as e:
            self.reporter.report(e, "save field group")
            return False
        self.close_group()
        return True

    def delete_group(self, group: FieldGroup) -> bool:
        try:
            self._check_editable("delete field group")
            detach_group(self.form, group)
            self._persist()
        except Exception as e:
            self.reporter.report(e, "delete field group")
            return False
        self.close_group()
        return True

    def update_metadata(self, **values: Any) -> bool:
        """
        Update slug/title/subtitle/description/language and save the draft.

        The changes are applied to a copy; a rejected save leaves the open
        form as it was.
        """
        try:
            self._check_editable("save form metadata")
            updated = self.form.model_copy(deep=True)
            for key, value in values.items():
                if key == "language" and isinstance(value, str):
                    value = Language(code=value)
                setattr(updated, key, value)
            self.form = self.versions.save_draft(updated)
        except Exception as e:
            self.reporter.report(e, "save form metadata")
            return False
        self.close_metadata()
        return True

    # --- Versions --------------------------------------------------------

    def lineage(self) -> FormLineage:
        return self.versions.lineage(self.form.slug)

    def affordance(self) -> str:
        return self.lineage().affordance(self.form)

    def list_versions(self) -> List[int]:
        return self.versions.list_versions(self.form.slug, self.form.language_code())

    def save_draft(self) -> bool:
        try:
            self._persist()
        except Exception as e:
            self.reporter.report(e, "save draft")
            return False
        return True

    def publish(self) -> bool:
        try:
            self.form = self.versions.publish(self.form)
        except Exception as e:
            self.reporter.report(e, "publish form")
            return False
        return True

    def new_version(self) -> bool:
        try:
            self.form = self.versions.new_draft(self.form.slug, self.form.language or self.form.language_code(),
                                                self.form.title)
        except Exception as e:
            self.reporter.report(e, "create new version")
            return False
        return True

    def go_to_draft(self) -> bool:
        return self.select_version(None)

    def select_version(self, version: Optional[int]) -> bool:
        try:
            self.form = self.versions.select_version(self.form.slug, self.form.language_code(), version)
        except Exception as e:
            self.reporter.report(e, "select version")
            return False
        self.close_field()
        self.close_group()
        return True

    def delete_draft(self) -> bool:
        try:
            self.versions.delete_draft(self.form)
            remaining = self.lineage()
            self.form = remaining.select_version(self.form.language_code()) if remaining.rows_for(
                self.form.language_code()) else remaining.rows[0]
        except Exception as e:
            self.reporter.report(e, "delete draft")
            return False
        return True

    # --- Helpers ---------------------------------------------------------

    def _check_editable(self, transition: str) -> None:
        if not self.form.is_draft:
            raise NotADraftError(transition, self.form.slug, self.form.language_code(default=None),
                                 self.form.version)

    def _persist(self) -> None:
        self.form = self.versions.save_draft(self.form)

    def _parent_ref(self, parent: Any):
        if isinstance(parent, FieldGroup):
            return GroupParent(group_id=parent.id)
        return FormParent(form_id=self.form.id)

    def _resolve_parent(self, parent_ref: Any, parent_id: Optional[str] = None) -> Any:
        if parent_id is None:
            if isinstance(parent_ref, GroupParent):
                parent_id = parent_ref.group_id
            else:
                return self.form
        if parent_id == self.form.id:
            return self.form
        group = find_group(self.form, parent_id)
        if group is None:
            raise InvalidParentError("node", "field group", f"group {parent_id} does not exist")
        return group

    @staticmethod
    def _same_parent(existing: Any, edited: Any) -> bool:
        return (existing.parent is not None and edited.parent is not None
                and existing.parent.model_dump() == edited.parent.model_dump())

    @staticmethod
    def _replace_in_place(existing: Any, edited: Any) -> None:
        for name in type(edited).model_fields:
            setattr(existing, name, getattr(edited, name))
