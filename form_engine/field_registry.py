"""
Field type registry for the form engine.
Maps a field's declared type to the component that renders it and to the
rules that coerce stored and edited values for that type.
"""

import json
import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Dict, List, Optional, Sequence

from dateutil import parser as date_parser

from .entities import (
    FILE_UPLOADS_DATA_TYPE,
    Field,
    FieldType,
    FileUploadsValue,
    InternalFieldType,
)
from .exceptions import UploadError

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


class Component:
    """Component identifiers returned by the registry."""
    INPUT = "input"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO_GROUP = "radio-group"
    CHECKBOX = "checkbox"
    FILE_UPLOAD = "file-upload"
    JSON_EDITOR = "json-editor"
    HTML_EDITOR = "html-editor"
    NONE = "none"


@dataclass
class ResolvedField:
    """
    Outcome of resolving a field against its current value.

    Attributes:
        component: Component identifier that should render the field
        coerced_value: Display value after type coercion
        attributes: Input attribute set handed to the component
        options: Raw value -> label map for select/radio fields
    """
    component: str
    coerced_value: Any
    attributes: Dict[str, Any]
    options: Dict[str, str] = dataclass_field(default_factory=dict)


# --- Coercion rules ----------------------------------------------------------

def coerce_checkbox(raw_value: Any) -> bool:
    return bool(raw_value)


def format_date(raw_value: Any) -> Any:
    """
    Reformat a date value to ``YYYY-MM-DD``.

    Unparseable input is returned unchanged.
    """
    if raw_value is None or raw_value == "":
        return ""
    if hasattr(raw_value, "strftime"):
        return raw_value.strftime(DATE_FORMAT)
    try:
        return date_parser.parse(str(raw_value)).strftime(DATE_FORMAT)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Failed to parse date value '{raw_value}': {e}")
        return raw_value


def coerce_json(raw_value: Any, previous_value: Any = None) -> Any:
    """
    Round-trip a JSON authoring string through parse/stringify.

    A parse failure keeps the previously valid value.
    """
    if raw_value is None or raw_value == "":
        return ""
    if not isinstance(raw_value, str):
        return json.dumps(raw_value, indent=2)
    try:
        parsed = json.loads(raw_value)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON edit ignored, keeping previous value: {e}")
        return previous_value if previous_value is not None else ""
    return json.dumps(parsed, indent=2)


def display_json(raw_value: Any) -> Any:
    if isinstance(raw_value, str):
        return raw_value
    return coerce_json(raw_value)


def coerce_file_uploads(raw_value: Any) -> FileUploadsValue:
    """Normalize anything file-like into the ``file-uploads`` envelope."""
    if isinstance(raw_value, FileUploadsValue):
        return raw_value.model_copy(deep=True)
    if isinstance(raw_value, dict) and raw_value.get("dataType", raw_value.get("data_type")) == FILE_UPLOADS_DATA_TYPE:
        return FileUploadsValue.model_validate(raw_value)
    if isinstance(raw_value, (list, tuple)):
        return FileUploadsValue(keys=[str(k) for k in raw_value if k])
    return FileUploadsValue()


def coerce_text(raw_value: Any) -> Any:
    return "" if raw_value is None else raw_value


def select_options(field: Field, current_value: Any) -> Dict[str, str]:
    """
    Options of a select/radio field.

    A selected value missing from the configured options is appended with
    itself as label so it still renders.
    """
    configured = field.type_params.get("options") or {}
    options = {str(k): str(v) for k, v in configured.items()} if isinstance(configured, dict) else {}
    if current_value not in (None, "") and str(current_value) not in options:
        options[str(current_value)] = str(current_value)
    return options


# --- Handlers ----------------------------------------------------------------

@dataclass
class FieldTypeHandler:
    """
    Behaviour registered for one field type.

    Attributes:
        component: Component identifier
        display: Coerces a stored value for rendering
        edit: Coerces an edited value before it is written to the buffer;
            receives (raw_value, previous_value)
    """
    component: str
    display: Callable[[Any], Any] = coerce_text
    edit: Callable[[Any, Any], Any] = lambda raw, previous: coerce_text(raw)


def _default_handlers() -> Dict[str, FieldTypeHandler]:
    text = FieldTypeHandler(Component.INPUT)
    handlers = {t.value: text for t in FieldType}
    handlers.update({
        FieldType.TEXTAREA.value: FieldTypeHandler(Component.TEXTAREA),
        FieldType.SELECT.value: FieldTypeHandler(Component.SELECT),
        FieldType.RADIO.value: FieldTypeHandler(Component.RADIO_GROUP),
        FieldType.CHECKBOX.value: FieldTypeHandler(
            Component.CHECKBOX,
            display=coerce_checkbox,
            edit=lambda raw, previous: coerce_checkbox(raw),
        ),
        FieldType.DATE.value: FieldTypeHandler(
            Component.INPUT,
            display=format_date,
            edit=lambda raw, previous: format_date(raw),
        ),
        FieldType.FILE.value: FieldTypeHandler(
            Component.FILE_UPLOAD,
            display=coerce_file_uploads,
            edit=lambda raw, previous: coerce_file_uploads(raw),
        ),
        FieldType.NONE.value: FieldTypeHandler(Component.NONE),
        InternalFieldType.HTML.value: FieldTypeHandler(Component.HTML_EDITOR),
        InternalFieldType.JSON.value: FieldTypeHandler(
            Component.JSON_EDITOR,
            display=display_json,
            edit=coerce_json,
        ),
        InternalFieldType.HIDDEN.value: text,
    })
    return handlers


class FieldTypeRegistry:
    """Dispatches rendering and coercion by field type."""

    def __init__(self, handlers: Optional[Dict[str, FieldTypeHandler]] = None):
        self._handlers: Dict[str, FieldTypeHandler] = handlers if handlers is not None else _default_handlers()
        self._fallback = FieldTypeHandler(Component.INPUT)

    def register(self, field_type: str, handler: FieldTypeHandler) -> None:
        self._handlers[field_type] = handler

    def handler_for(self, field_type: Optional[str]) -> FieldTypeHandler:
        """Handler of a type; unknown types fall back to the plain-text input."""
        handler = self._handlers.get(field_type or "")
        if handler is None:
            logger.debug(f"Unknown field type '{field_type}', using plain text input")
            return self._fallback
        return handler

    def is_known(self, field_type: Optional[str]) -> bool:
        return (field_type or "") in self._handlers

    def coerce_edit(self, field_type: Optional[str], raw_value: Any, previous_value: Any = None) -> Any:
        """Coerce a raw edit event value for storage in the edit buffer."""
        return self.handler_for(field_type).edit(raw_value, previous_value)

    def build_attributes(self, field: Field, raw_value: Any = None,
                         extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Build the input attribute set for a field.

        ``checked`` and ``value`` are mutually exclusive: checkbox fields
        carry only ``checked``.
        """
        attrs: Dict[str, Any] = {
            "id": field.id,
            "data-fieldid": field.id,
            "data-fieldtype": field.type,
            "name": field.name,
            "type": field.type,
        }
        if field.placeholder is not None:
            attrs["placeholder"] = field.placeholder
        attrs.update(extra or {})
        attrs.update(field.element_properties or {})
        attrs["value"] = raw_value

        if field.required:
            attrs["required"] = True

        if "style" in attrs and not isinstance(attrs["style"], dict):
            del attrs["style"]

        handler = self.handler_for(field.type)
        if field.type == FieldType.CHECKBOX.value:
            attrs["checked"] = handler.display(attrs.pop("value"))
        else:
            attrs.pop("checked", None)
            attrs["value"] = handler.display(attrs["value"])
        return attrs

    def resolve(self, field: Field, raw_value: Any = None) -> ResolvedField:
        """
        Resolve a field and its stored value to a component and coerced value.

        Args:
            field: Schema field
            raw_value: Stored value from the edit buffer (may be None)

        Returns:
            ResolvedField describing how to render the field
        """
        handler = self.handler_for(field.type)
        attrs = self.build_attributes(field, raw_value)
        coerced = attrs["checked"] if "checked" in attrs else attrs["value"]

        options: Dict[str, str] = {}
        if handler.component in (Component.SELECT, Component.RADIO_GROUP):
            options = select_options(field, coerced)
            if handler.component == Component.RADIO_GROUP:
                attrs["orientation"] = field.type_params.get("orientation", "vertical")

        return ResolvedField(handler.component, coerced, attrs, options)


# --- File uploads ------------------------------------------------------------

UPLOADING = "uploading"
UPLOADED = "uploaded"

UPLOAD_IN_PROGRESS_MESSAGE = "File upload is still in progress."
UPLOAD_FAILED_MESSAGE = "Oops, we couldn't upload that file."


@dataclass
class UploadedFile:
    filename: Optional[str] = None
    status: str = UPLOADING
    key: Optional[str] = None
    url: Optional[str] = None


class FileUploadTracker:
    """
    Per-field list of uploads backing a file input.

    The field's value envelope holds the keys of every successfully uploaded
    file still listed. Removing an entry only hides it; nothing is deleted
    from storage.
    """

    def __init__(self, loaded_value: Any = None):
        self.files: List[UploadedFile] = []
        self.seed(loaded_value)

    def seed(self, loaded_value: Any) -> None:
        """Populate the list from ``[{key, url}, ...]`` pairs."""
        self.files = []
        if not isinstance(loaded_value, list):
            return
        for pair in loaded_value:
            if isinstance(pair, dict) and "key" in pair and "url" in pair:
                self.files.append(UploadedFile(key=pair["key"], url=pair["url"], status=UPLOADED))

    @property
    def uploaded_keys(self) -> List[str]:
        return [f.key for f in self.files if f.status == UPLOADED and f.key]

    @property
    def is_complete(self) -> bool:
        return all(f.status == UPLOADED for f in self.files)

    @property
    def validity_message(self) -> str:
        return "" if self.is_complete else UPLOAD_IN_PROGRESS_MESSAGE

    def envelope(self) -> FileUploadsValue:
        return FileUploadsValue(keys=self.uploaded_keys)

    def upload(self, uploader: Any, target: str, files: Sequence[Any],
               on_error: Optional[Callable[[Exception], None]] = None) -> Optional[FileUploadsValue]:
        """
        Upload files one by one and accumulate their keys.

        A failed upload is dropped from the list and reported through ``on_error``;
        previously uploaded keys are kept.

        Returns:
            The updated envelope, or None when nothing was uploaded
        """
        changed = False
        for file in files:
            entry = UploadedFile(filename=getattr(file, "name", None))
            self.files.append(entry)
            try:
                results = uploader.upload_files(target, [file])
                if not results:
                    raise UploadError(entry.filename or "file")
                result = results[0]
                entry.key = result.key
                entry.url = result.url
                entry.status = UPLOADED
                changed = True
            except Exception as e:
                self.files.remove(entry)
                error = e if isinstance(e, UploadError) else UploadError(entry.filename or "file", e)
                logger.error(f"Upload of {entry.filename} failed: {e}")
                if on_error is not None:
                    on_error(error)
        return self.envelope() if changed else None

    def remove(self, entry: UploadedFile) -> None:
        """Hide an entry from the visible list; stored objects are kept."""
        self.files = [f for f in self.files if f is not entry]
