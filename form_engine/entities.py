"""
Entity models for the form engine.

Forms are described by pydantic models that mirror the REST payloads of the
console (camelCase on the wire, snake_case in Python). A node's parent is a
tagged union so a field or group can never point at a form and a group at
the same time.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as ModelField
from pydantic.alias_generators import to_camel


class FieldType(str, Enum):
    """Primitive field types offered to form authors."""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    CHECKBOX = "checkbox"
    TEXTAREA = "textarea"
    FILE = "file"
    EMAIL = "email"
    TEL = "tel"
    RADIO = "radio"
    RANGE = "range"
    COLOR = "color"
    DATETIME_LOCAL = "datetime-local"
    SEARCH = "search"
    TIME = "time"
    URL = "url"
    NONE = "none"


class InternalFieldType(str, Enum):
    """Types used only by the authoring screens."""
    JSON = "json"
    HTML = "html"
    HIDDEN = "hidden"


KNOWN_FIELD_TYPES = {t.value for t in FieldType} | {t.value for t in InternalFieldType}


class FormState(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class SubmissionStatus(str, Enum):
    NOT_COMPLETE = "not_complete"
    COMPLETE = "complete"


FILE_UPLOADS_DATA_TYPE = "file-uploads"


class EntityModel(BaseModel):
    """Base model: camelCase aliases, population by field name allowed."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
    )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON-compatible shape used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Language(EntityModel):
    id: Optional[str] = None
    code: str
    name: str = ""
    native_name: str = ""


# --- Parent references ------------------------------------------------------

class FormParent(EntityModel):
    """The node hangs directly off a form."""
    kind: Literal["form"] = "form"
    form_id: Optional[str] = None


class GroupParent(EntityModel):
    """The node hangs off a field group."""
    kind: Literal["group"] = "group"
    group_id: Optional[str] = None


ParentRef = Annotated[Union[FormParent, GroupParent], ModelField(discriminator="kind")]


# --- Schema -----------------------------------------------------------------

class Field(EntityModel):
    """A single input definition."""
    id: Optional[str] = None
    name: str = ""
    label: str = ""
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    type: str = FieldType.TEXT.value
    element_properties: Dict[str, Any] = ModelField(default_factory=dict)
    type_params: Dict[str, Any] = ModelField(default_factory=dict)
    required: bool = False
    order: Optional[int] = None
    parent: Optional[ParentRef] = None

    @field_validator("element_properties", "type_params", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def in_group(self) -> bool:
        return isinstance(self.parent, GroupParent)


class FieldGroup(EntityModel):
    """A titled bucket of fields, optionally holding one level of subgroups."""
    id: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    order: Optional[int] = None
    fields: List[Field] = ModelField(default_factory=list)
    child_groups: List["FieldGroup"] = ModelField(default_factory=list)
    parent: Optional[ParentRef] = None

    @field_validator("fields", "child_groups", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_subgroup(self) -> bool:
        return isinstance(self.parent, GroupParent)


class Form(EntityModel):
    """One row of a form lineage: a (slug, language, version) revision."""
    id: Optional[str] = None
    slug: str = ""
    title: str = ""
    subtitle: Optional[str] = None
    description: Optional[str] = None
    fields: List[Field] = ModelField(default_factory=list)
    groups: List[FieldGroup] = ModelField(default_factory=list)
    state: FormState = FormState.DRAFT
    version: int = 0
    language: Optional[Language] = None

    @field_validator("fields", "groups", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_draft(self) -> bool:
        return self.state == FormState.DRAFT.value

    @property
    def is_published(self) -> bool:
        return self.state == FormState.PUBLISHED.value

    def language_code(self, default: str = "en") -> str:
        return self.language.code if self.language else default


# --- Submissions ------------------------------------------------------------

class FileUploadsValue(EntityModel):
    """Value envelope of a file field: every uploaded storage key."""
    data_type: Literal["file-uploads"] = FILE_UPLOADS_DATA_TYPE
    keys: List[str] = ModelField(default_factory=list)


class FieldRef(EntityModel):
    """Back-reference from a response to its field; never the full schema."""
    id: str
    type: Optional[str] = None


class FieldResponse(EntityModel):
    value: Any = None
    field: FieldRef
    loaded_value: Any = None

    @field_validator("value", mode="before")
    @classmethod
    def _file_envelope(cls, value: Any) -> Any:
        if isinstance(value, dict) and value.get("dataType", value.get("data_type")) == FILE_UPLOADS_DATA_TYPE:
            return FileUploadsValue.model_validate(value)
        return value


class FormRef(EntityModel):
    id: Optional[str] = None


class FormSubmission(EntityModel):
    id: Optional[str] = None
    form: FormRef = ModelField(default_factory=FormRef)
    field_responses: List[FieldResponse] = ModelField(default_factory=list)
    status: SubmissionStatus = SubmissionStatus.NOT_COMPLETE
    user_id: Optional[str] = None

    @field_validator("field_responses", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


FieldGroup.model_rebuild()
