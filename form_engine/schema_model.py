"""
Schema model operations for the form engine.
Handles nesting invariants, parent assignment, display ordering and
machine-name derivation for Form -> FieldGroup -> Field trees.
"""

import html
import logging
import re
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set, TypeVar, Union

from .entities import Field, FieldGroup, Form, FormParent, GroupParent
from .exceptions import InvalidParentError, NameDerivationError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_NAME_MAX_LENGTH = 120
MAX_NAME_SUFFIX_ATTEMPTS = 10000
FALLBACK_FIELD_NAME = "field"

# Deepest allowed group level: top-level group (1) plus one subgroup level (2)
MAX_GROUP_DEPTH = 2

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_NAME_CHARS_RE = re.compile(r"[^a-z0-9-]+", re.IGNORECASE)

Parent = Union[Form, FieldGroup]
T = TypeVar("T")


def new_id() -> str:
    """Generate a client-side identifier for a node that has none yet."""
    return uuid.uuid4().hex


def ensure_id(node: Any) -> str:
    """Assign an id to a node lacking one and return it."""
    if not node.id:
        node.id = new_id()
    return node.id


# --- Ordering ----------------------------------------------------------------

def order_sorted(items: Optional[Sequence[T]]) -> List[T]:
    """
    Return a display-ordered copy of a sibling collection.

    Sorting is by ``order`` ascending. ``sorted`` is stable, so ties keep
    their stored (insertion) position, and the stored sequence is never
    reordered.

    Args:
        items: Sibling fields or groups (may be None)

    Returns:
        New list sorted for display
    """
    if not items:
        return []
    return sorted(items, key=lambda item: item.order or 0)


def next_order(siblings: Optional[Sequence[Any]]) -> int:
    """Auto-order for a new node: the number of existing siblings."""
    return len(siblings or [])


# --- Tree walking ------------------------------------------------------------

def iter_groups(form: Form) -> Iterator[FieldGroup]:
    """Walk every group of a form in pre-order (group before its subgroups)."""
    for group in form.groups:
        yield group
        for child in group.child_groups:
            yield child


def iter_fields(form: Form) -> Iterator[Field]:
    """Walk every field of a form, including those nested in groups."""
    for field in form.fields:
        yield field
    for group in iter_groups(form):
        for field in group.fields:
            yield field


def collect_field_names(form: Form, exclude: Optional[Field] = None) -> Set[str]:
    """
    Collect the machine names of all fields in a form.

    Args:
        form: Form to walk
        exclude: Field to leave out (the one currently being renamed),
            matched by identity or id

    Returns:
        Set of existing field names
    """
    def _is_excluded(field: Field) -> bool:
        if exclude is None:
            return False
        return field is exclude or bool(exclude.id and field.id == exclude.id)

    return {f.name for f in iter_fields(form) if f.name and not _is_excluded(f)}


def find_field(form: Form, field_id: str) -> Optional[Field]:
    for field in iter_fields(form):
        if field.id == field_id:
            return field
    return None


def find_group(form: Form, group_id: str) -> Optional[FieldGroup]:
    for group in iter_groups(form):
        if group.id == group_id:
            return group
    return None


def group_depth(group: FieldGroup) -> int:
    """Nesting depth of a group: 1 for top-level groups, 2 for subgroups."""
    return 2 if group.is_subgroup else 1


def can_add_subgroup(group: FieldGroup) -> bool:
    """Only top-level groups may offer an "add subgroup" affordance."""
    return group_depth(group) < MAX_GROUP_DEPTH


def parent_options(form: Form) -> Dict[str, str]:
    """
    Build the flat list of possible parents for the authoring screens.

    The form comes first, followed by its groups in display order, each
    prefixed by one dash per nesting level.
    """
    options: Dict[str, str] = {}
    if form.id:
        options[form.id] = form.title or "Unknown Form"

    def _add(groups: Sequence[FieldGroup], level: int) -> None:
        for group in order_sorted(groups):
            if group.id:
                options[group.id] = f"{'—' * level} {group.title or 'Unknown Group'}"
            _add(group.child_groups, level + 1)

    _add(form.groups, 1)
    return options


# --- Attachment --------------------------------------------------------------

def _parent_ref(parent: Parent):
    if isinstance(parent, Form):
        return FormParent(form_id=parent.id)
    if isinstance(parent, FieldGroup):
        return GroupParent(group_id=ensure_id(parent))
    raise InvalidParentError("node", type(parent).__name__, "parent must be a Form or FieldGroup")


def _remove_node(collection: List[Any], node: Any) -> bool:
    for idx, existing in enumerate(collection):
        if existing is node or (node.id and existing.id == node.id):
            del collection[idx]
            return True
    return False


def detach_field(form: Form, field: Field) -> bool:
    """Remove a field from whichever container of the form holds it."""
    if _remove_node(form.fields, field):
        return True
    for group in iter_groups(form):
        if _remove_node(group.fields, field):
            return True
    return False


def detach_group(form: Form, group: FieldGroup) -> bool:
    """Remove a group (and its subtree) from the form."""
    if _remove_node(form.groups, group):
        return True
    for parent in form.groups:
        if _remove_node(parent.child_groups, group):
            return True
    return False


def attach_field(field: Field, parent: Parent, form: Optional[Form] = None) -> Field:
    """
    Attach a field to a form or a group.

    The field is first detached from its previous container within ``form``
    (when given) so that it always has exactly one parent.

    Raises:
        InvalidParentError: If parent is neither a Form nor a FieldGroup
    """
    parent_ref = _parent_ref(parent)
    if form is not None:
        detach_field(form, field)

    ensure_id(field)
    if not isinstance(field.order, int):
        field.order = next_order(parent.fields)

    field.parent = parent_ref
    parent.fields.append(field)
    logger.debug(f"Attached field {field.id} to {parent_ref.kind} {getattr(parent, 'id', None)}")
    return field


def attach_group(group: FieldGroup, parent: Parent, form: Optional[Form] = None) -> FieldGroup:
    """
    Attach a field group to a form or, as a subgroup, to a top-level group.

    Raises:
        InvalidParentError: If the result would nest deeper than one subgroup
            level, or if a group is attached to itself
    """
    if isinstance(parent, FieldGroup):
        if parent is group or (group.id and parent.id == group.id):
            raise InvalidParentError("field group", "itself", "a group cannot contain itself")
        if parent.is_subgroup:
            raise InvalidParentError(
                "field group", "subgroup",
                "subgroups cannot declare subgroups of their own"
            )
        if group.child_groups:
            raise InvalidParentError(
                "field group with subgroups", "field group",
                "nesting would exceed one subgroup level"
            )

    parent_ref = _parent_ref(parent)
    if form is not None:
        detach_group(form, group)

    ensure_id(group)
    siblings = parent.groups if isinstance(parent, Form) else parent.child_groups
    if not isinstance(group.order, int):
        group.order = next_order(siblings)

    group.parent = parent_ref
    siblings.append(group)
    logger.debug(f"Attached group {group.id} to {parent_ref.kind} {getattr(parent, 'id', None)}")
    return group


def link_parents(form: Form) -> Form:
    """
    Stamp parent references on every node according to its position.

    Used after loading a form from storage, where back-references are not
    serialized consistently.

    Raises:
        InvalidParentError: If a stored subgroup declares subgroups
    """
    for field in form.fields:
        field.parent = FormParent(form_id=form.id)
    for group in form.groups:
        group.parent = FormParent(form_id=form.id)
        for field in group.fields:
            field.parent = GroupParent(group_id=group.id)
        for child in group.child_groups:
            if child.child_groups:
                raise InvalidParentError(
                    "field group", "subgroup",
                    f"stored subgroup {child.id} declares subgroups"
                )
            child.parent = GroupParent(group_id=group.id)
            for field in child.fields:
                field.parent = GroupParent(group_id=child.id)
    return form


def validate_form_structure(form: Form) -> List[str]:
    """
    Check a form tree against the nesting and naming invariants.

    Returns:
        List of violation messages (empty if the tree is valid)
    """
    errors: List[str] = []

    def _check_field(field: Field, expected_kind: str, expected_id: Optional[str]) -> None:
        parent = field.parent
        if parent is None:
            errors.append(f"Field '{field.name or field.id}' has no parent")
        elif parent.kind != expected_kind:
            errors.append(f"Field '{field.name or field.id}' is attached to a {expected_kind} "
                          f"but references a {parent.kind}")
        elif expected_kind == "group" and parent.group_id != expected_id:
            errors.append(f"Field '{field.name or field.id}' references group {parent.group_id} "
                          f"but lives in group {expected_id}")

    for field in form.fields:
        _check_field(field, "form", form.id)

    for group in form.groups:
        if group.parent is not None and group.parent.kind != "form":
            errors.append(f"Group '{group.title or group.id}' is top-level but references a group parent")
        for field in group.fields:
            _check_field(field, "group", group.id)
        for child in group.child_groups:
            if child.parent is None or child.parent.kind != "group":
                errors.append(f"Subgroup '{child.title or child.id}' does not reference its parent group")
            if child.child_groups:
                errors.append(f"Subgroup '{child.title or child.id}' declares subgroups "
                              f"(maximum depth is {MAX_GROUP_DEPTH})")
            for field in child.fields:
                _check_field(field, "group", child.id)

    seen: Set[str] = set()
    for field in iter_fields(form):
        if not field.name:
            continue
        if field.name in seen:
            errors.append(f"Duplicate field name '{field.name}'")
        seen.add(field.name)

    return errors


# --- Name derivation ---------------------------------------------------------

def strip_markup(text: Optional[str]) -> str:
    """Reduce authored markup to its text content."""
    if not text:
        return ""
    return html.unescape(_TAG_RE.sub("", text))


def name_from_label(label: Optional[str], max_length: int = DEFAULT_NAME_MAX_LENGTH) -> str:
    """
    Turn a label into a machine-name base.

    Markup is stripped, whitespace runs become ``-``, anything outside
    ``[a-z0-9-]`` is dropped and the result is lower-cased and truncated.
    """
    text = strip_markup(label).strip()
    name = _WHITESPACE_RE.sub("-", text)
    name = _INVALID_NAME_CHARS_RE.sub("", name)
    return name.lower()[:max_length]


def derive_field_name(label: Optional[str], existing_names: Iterable[str],
                      max_length: int = DEFAULT_NAME_MAX_LENGTH) -> str:
    """
    Derive a unique machine name for a field from its label.

    A label with no usable characters falls back to ``field``. Conflicts get
    a numeric suffix (``-0``, ``-1``, ...) appended to the base
    name until the name is unique. The result depends only on the inputs.

    Args:
        label: Field label (may contain markup)
        existing_names: Names already used in the form
        max_length: Maximum length of the base name

    Returns:
        Unique field name

    Raises:
        NameDerivationError: If no free suffix is found within the attempt limit
    """
    existing = set(existing_names)
    base = name_from_label(label, max_length) or FALLBACK_FIELD_NAME
    if base not in existing:
        return base

    for i in range(MAX_NAME_SUFFIX_ATTEMPTS):
        candidate = f"{base}-{i}"
        if candidate not in existing:
            logger.debug(f"Name '{base}' taken, using '{candidate}'")
            return candidate

    raise NameDerivationError(label or "", base, MAX_NAME_SUFFIX_ATTEMPTS)


def relabel_field(form: Form, field: Field, label: str,
                  max_length: int = DEFAULT_NAME_MAX_LENGTH) -> str:
    """
    Apply a label edit and re-derive the field's name.

    A field whose label did not change keeps its current name.

    Returns:
        The field's (possibly new) name
    """
    if field.name and label == field.label:
        return field.name

    field.label = label
    field.name = derive_field_name(label, collect_field_names(form, exclude=field), max_length)
    return field.name


def clone_structure(source: Form, target: Form) -> Form:
    """
    Copy the fields and groups of ``source`` into ``target``.

    Every copied node gets a fresh id so the copies are saved as new rows.
    Callers use this to seed a fresh draft from a published version; drafts
    are never seeded automatically.
    """
    target.fields = [f.model_copy(deep=True) for f in source.fields]
    target.groups = [g.model_copy(deep=True) for g in source.groups]

    for field in target.fields:
        field.id = new_id()
    for group in iter_groups(target):
        group.id = new_id()
        for field in group.fields:
            field.id = new_id()
    return link_parents(target)
