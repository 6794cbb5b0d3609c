"""
Unit tests for persistence module.
"""

import json

import pytest

from form_engine.entities import Form, FormParent, GroupParent, Language
from form_engine.exceptions import FormEngineError, PersistenceError, UploadError
from form_engine.persistence import (
    InMemoryFormRepository,
    InMemorySubmissionStore,
    JsonFileFormRepository,
    JsonFileSubmissionStore,
    LocalFileUploader,
    UploadFile,
    load_language_catalogue,
)
from form_engine.reconciler import apply_edit, build_submission_payload, EditBuffer
from form_engine.schema_model import find_field, find_group
from test_fixtures import FormFixtures


class TestInMemoryFormRepository:

    def test_save_assigns_ids(self):
        repository = InMemoryFormRepository()
        form = Form(slug="intake", language=Language(code="en"))
        form.fields.append(FormFixtures.intake_form().fields[0].model_copy(update={"id": None}))

        stored = repository.save_form(form)
        assert stored.id
        assert form.id == stored.id
        assert stored.fields[0].id
        assert stored.fields[0].parent == FormParent(form_id=stored.id)

    def test_rows_are_copies(self):
        repository = InMemoryFormRepository()
        stored = repository.save_form(FormFixtures.intake_form())
        stored.title = "changed"
        assert repository.load_form(stored.id).title == "Intake"

    def test_missing_row(self):
        repository = InMemoryFormRepository()
        with pytest.raises(PersistenceError) as exc_info:
            repository.load_form("nope")
        assert isinstance(exc_info.value.original_error, FileNotFoundError)
        with pytest.raises(PersistenceError):
            repository.delete_form("nope")

    def test_slug_queries(self):
        repository = InMemoryFormRepository([Form(slug="b"), Form(slug="a"), Form(slug="a")])
        assert repository.list_slugs() == ["a", "b"]
        assert len(repository.load_forms_by_slug("a")) == 2


class TestInMemorySubmissionStore:

    def test_save_and_load(self):
        store = InMemorySubmissionStore()
        form = FormFixtures.intake_form()
        payload = build_submission_payload(form, apply_edit(EditBuffer(), "f-name", "text", "Ann"))

        saved = store.save_submission(payload)
        assert saved.id
        assert store.load_submission(saved.id).field_responses[0].value == "Ann"

        again = store.save_submission(saved)
        assert again.id == saved.id

    def test_missing_submission(self):
        with pytest.raises(PersistenceError):
            InMemorySubmissionStore().load_submission("nope")


class TestJsonFileFormRepository:

    def test_round_trip(self, tmp_path):
        repository = JsonFileFormRepository(tmp_path)
        repository.save_form(FormFixtures.intake_form())

        loaded = repository.load_form("form-1")
        assert loaded.slug == "intake"
        assert find_field(loaded, "f-vet").parent == GroupParent(group_id="g-vet")
        assert find_group(loaded, "g-vet").parent == GroupParent(group_id="g-pet")
        assert [f.name for f in loaded.fields] == ["full-name", "agree"]

    def test_documents_use_camel_case(self, tmp_path):
        JsonFileFormRepository(tmp_path).save_form(FormFixtures.intake_form())
        with open(tmp_path / "forms" / "form-1.json", encoding="utf-8") as f:
            document = json.load(f)
        assert "childGroups" in document["groups"][0]
        assert "typeParams" in document["fields"][0]

    def test_lineage_queries(self, tmp_path):
        repository = JsonFileFormRepository(tmp_path)
        assert repository.list_slugs() == []
        repository.save_form(Form(slug="intake", language=Language(code="en")))
        repository.save_form(Form(slug="intake", language=Language(code="es")))
        repository.save_form(Form(slug="exit", language=Language(code="en")))

        assert repository.list_slugs() == ["exit", "intake"]
        assert {f.language_code() for f in repository.load_forms_by_slug("intake")} == {"en", "es"}

    def test_delete(self, tmp_path):
        repository = JsonFileFormRepository(tmp_path)
        stored = repository.save_form(Form(slug="intake"))
        repository.delete_form(stored.id)
        with pytest.raises(PersistenceError):
            repository.load_form(stored.id)
        with pytest.raises(PersistenceError):
            repository.delete_form(stored.id)

    def test_corrupt_document(self, tmp_path):
        (tmp_path / "forms").mkdir()
        (tmp_path / "forms" / "bad.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError) as exc_info:
            JsonFileFormRepository(tmp_path).load_form("bad")
        assert exc_info.value.target == "bad"


class TestJsonFileSubmissionStore:

    def test_save_load_and_find(self, tmp_path):
        store = JsonFileSubmissionStore(tmp_path)
        form = FormFixtures.intake_form()
        saved = store.save_submission(FormFixtures.submission_for(form, {"f-name": "Ann"}))

        loaded = store.load_submission(saved.id)
        assert loaded.field_responses[0].value == "Ann"
        assert [s.id for s in store.find_for_form("form-1")] == [saved.id]
        assert store.find_for_form("other") == []

    def test_missing_submission(self, tmp_path):
        with pytest.raises(PersistenceError):
            JsonFileSubmissionStore(tmp_path).load_submission("nope")


class TestLocalFileUploader:

    def test_upload_writes_files(self, tmp_path):
        uploader = LocalFileUploader(tmp_path, media_url="/media/upload/")
        results = uploader.upload_files("docs", [UploadFile("a.pdf", b"%PDF")])

        assert len(results) == 1
        key = results[0].key
        assert key.startswith("docs/") and key.endswith("-a.pdf")
        assert results[0].url == f"/media/upload/{key}"
        assert (tmp_path / "uploads" / key).read_bytes() == b"%PDF"

    def test_absolute_target_stays_in_storage(self, tmp_path):
        results = LocalFileUploader(tmp_path).upload_files("/media/upload", [UploadFile("a.pdf")])
        assert results[0].key.startswith("media/upload/")
        assert (tmp_path / "uploads" / results[0].key).exists()

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(UploadError) as exc_info:
            LocalFileUploader(tmp_path).upload_files("docs", [object()])
        assert exc_info.value.filename == "upload"


class TestLanguageCatalogue:

    def test_entries_without_code_skipped(self):
        languages = load_language_catalogue({'languages': [
            {'code': 'en', 'name': 'English', 'nativeName': 'English'},
            {'name': 'Nameless'},
            'fr',
            {'code': 'de', 'name': 'German', 'nativeName': 'Deutsch'},
        ]})
        assert [lang.code for lang in languages] == ['en', 'de']
        assert languages[1].native_name == 'Deutsch'

    def test_missing_section(self):
        assert load_language_catalogue({}) == []

    def test_invalid_entry(self):
        with pytest.raises(FormEngineError):
            load_language_catalogue({'languages': [{'code': 'en', 'name': ['not', 'a', 'string']}]})
