"""
Persistence collaborators for the form engine.

Defines the repository, submission store and file uploader contracts and
provides in-memory implementations (tests, scratch sessions) and JSON-file
implementations used by the console.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .entities import Form, FormSubmission, Language
from .exceptions import FormEngineError, PersistenceError, UploadError
from .schema_model import iter_fields, iter_groups, link_parents, new_id

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    key: str
    url: str


@dataclass
class UploadFile:
    """In-memory file handed to a FileUploader."""
    name: str
    content: bytes = b""

    def getvalue(self) -> bytes:
        return self.content


# --- Contracts ---------------------------------------------------------------

class FormRepository(ABC):
    """Storage of Form rows."""

    @abstractmethod
    def load_form(self, form_id: str) -> Form:
        """Load one row; raises PersistenceError if it does not exist."""

    @abstractmethod
    def save_form(self, form: Form) -> Form:
        """Insert a row without an id, otherwise update it in place."""

    @abstractmethod
    def delete_form(self, form_id: str) -> None:
        pass

    @abstractmethod
    def load_forms_by_slug(self, slug: str) -> List[Form]:
        pass

    @abstractmethod
    def list_slugs(self) -> List[str]:
        pass


class SubmissionStore(ABC):

    @abstractmethod
    def save_submission(self, submission: FormSubmission) -> FormSubmission:
        pass

    @abstractmethod
    def load_submission(self, submission_id: str) -> FormSubmission:
        pass


class FileUploader(ABC):

    @abstractmethod
    def upload_files(self, upload_target: str, files: Sequence[Any]) -> List[UploadResult]:
        pass


def _assign_ids(form: Form) -> Form:
    """Give every unsaved node of a form an id."""
    if not form.id:
        form.id = new_id()
    for group in iter_groups(form):
        if not group.id:
            group.id = new_id()
    for field in iter_fields(form):
        if not field.id:
            field.id = new_id()
    return link_parents(form)


# --- In-memory implementations ----------------------------------------------

class InMemoryFormRepository(FormRepository):
    """Dictionary-backed repository; rows are copied on the way in and out."""

    def __init__(self, forms: Optional[Sequence[Form]] = None):
        self._forms: Dict[str, Form] = {}
        for form in forms or []:
            self.save_form(form)

    def load_form(self, form_id: str) -> Form:
        form = self._forms.get(form_id)
        if form is None:
            raise PersistenceError("load form", form_id, FileNotFoundError(form_id))
        return form.model_copy(deep=True)

    def save_form(self, form: Form) -> Form:
        stored = _assign_ids(form.model_copy(deep=True))
        self._forms[stored.id] = stored
        form.id = stored.id
        return stored.model_copy(deep=True)

    def delete_form(self, form_id: str) -> None:
        if self._forms.pop(form_id, None) is None:
            raise PersistenceError("delete form", form_id, FileNotFoundError(form_id))

    def load_forms_by_slug(self, slug: str) -> List[Form]:
        return [f.model_copy(deep=True) for f in self._forms.values() if f.slug == slug]

    def list_slugs(self) -> List[str]:
        return sorted({f.slug for f in self._forms.values()})


class InMemorySubmissionStore(SubmissionStore):

    def __init__(self):
        self._submissions: Dict[str, FormSubmission] = {}

    def save_submission(self, submission: FormSubmission) -> FormSubmission:
        stored = submission.model_copy(deep=True)
        if not stored.id:
            stored.id = new_id()
        self._submissions[stored.id] = stored
        return stored.model_copy(deep=True)

    def load_submission(self, submission_id: str) -> FormSubmission:
        submission = self._submissions.get(submission_id)
        if submission is None:
            raise PersistenceError("load submission", submission_id, FileNotFoundError(submission_id))
        return submission.model_copy(deep=True)


# --- JSON file implementations ----------------------------------------------

def _read_json(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


class JsonFileFormRepository(FormRepository):
    """
    Stores one JSON document per Form row under ``<storage_dir>/forms``.

    Documents use the camelCase wire format.
    """

    def __init__(self, storage_dir: Any):
        self.forms_dir = Path(storage_dir) / "forms"

    def _path(self, form_id: str) -> Path:
        return self.forms_dir / f"{form_id}.json"

    def _read(self, path: Path) -> Form:
        try:
            return link_parents(Form.model_validate(_read_json(path)))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError("load form", path.stem, e)

    def load_form(self, form_id: str) -> Form:
        path = self._path(form_id)
        if not path.exists():
            raise PersistenceError("load form", form_id, FileNotFoundError(str(path)))
        return self._read(path)

    def save_form(self, form: Form) -> Form:
        stored = _assign_ids(form.model_copy(deep=True))
        try:
            _write_json(self._path(stored.id), stored.model_dump(mode="json", by_alias=True))
        except OSError as e:
            raise PersistenceError("save form", stored.id, e)
        form.id = stored.id
        logger.info(f"Saved form {stored.id} ('{stored.slug}' v{stored.version}, {stored.state})")
        return stored

    def delete_form(self, form_id: str) -> None:
        path = self._path(form_id)
        try:
            path.unlink()
        except OSError as e:
            raise PersistenceError("delete form", form_id, e)
        logger.info(f"Deleted form {form_id}")

    def _all(self) -> List[Form]:
        if not self.forms_dir.exists():
            return []
        return [self._read(path) for path in sorted(self.forms_dir.glob("*.json"))]

    def load_forms_by_slug(self, slug: str) -> List[Form]:
        return [form for form in self._all() if form.slug == slug]

    def list_slugs(self) -> List[str]:
        return sorted({form.slug for form in self._all()})


class JsonFileSubmissionStore(SubmissionStore):
    """One JSON document per submission under ``<storage_dir>/submissions``."""

    def __init__(self, storage_dir: Any):
        self.submissions_dir = Path(storage_dir) / "submissions"

    def save_submission(self, submission: FormSubmission) -> FormSubmission:
        stored = submission.model_copy(deep=True)
        if not stored.id:
            stored.id = new_id()
        try:
            _write_json(self.submissions_dir / f"{stored.id}.json",
                        stored.model_dump(mode="json", by_alias=True))
        except OSError as e:
            raise PersistenceError("save submission", stored.id, e)
        logger.info(f"Saved submission {stored.id} for form {stored.form.id}")
        return stored

    def load_submission(self, submission_id: str) -> FormSubmission:
        path = self.submissions_dir / f"{submission_id}.json"
        try:
            return FormSubmission.model_validate(_read_json(path))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError("load submission", submission_id, e)

    def find_for_form(self, form_id: str) -> List[FormSubmission]:
        if not self.submissions_dir.exists():
            return []
        found = []
        for path in sorted(self.submissions_dir.glob("*.json")):
            submission = self.load_submission(path.stem)
            if submission.form.id == form_id:
                found.append(submission)
        return found


class LocalFileUploader(FileUploader):
    """
    Writes uploads below ``<storage_dir>/uploads/<target>``.

    Keys are ``<target>/<random>-<filename>``; URLs join the key to the
    configured media URL.
    """

    def __init__(self, storage_dir: Any, media_url: str = "/media/upload"):
        self.uploads_dir = Path(storage_dir) / "uploads"
        self.media_url = media_url.rstrip("/")

    def upload_files(self, upload_target: str, files: Sequence[Any]) -> List[UploadResult]:
        results = []
        for file in files:
            filename = Path(getattr(file, "name", "") or "upload").name
            key = f"{upload_target.strip('/')}/{uuid.uuid4().hex[:8]}-{filename}"
            path = self.uploads_dir / key
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(file.getvalue())
            except (OSError, AttributeError) as e:
                raise UploadError(filename, e)
            logger.info(f"Uploaded {filename} as {key}")
            results.append(UploadResult(key=key, url=f"{self.media_url}/{key}"))
        return results


def load_language_catalogue(config: Dict[str, Any]) -> List[Language]:
    """
    Build the language catalogue from the ``languages`` config section.

    Entries without a code are skipped.
    """
    languages = []
    for entry in config.get('languages') or []:
        if not isinstance(entry, dict) or not entry.get('code'):
            logger.warning(f"Ignoring language entry without code: {entry}")
            continue
        try:
            languages.append(Language.model_validate(entry))
        except ValidationError as e:
            raise FormEngineError(f"Invalid language entry {entry}: {e}")
    return languages
