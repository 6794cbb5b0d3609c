"""
Unit tests for versioning module.
"""

import pytest

from form_engine.entities import Form, FormState, Language
from form_engine.exceptions import (
    DraftAlreadyExistsError,
    FormEngineError,
    NotADraftError,
    PublishNotAllowedError,
    SoleLanguageVariantError,
    VersionNotFoundError,
)
from form_engine.persistence import InMemoryFormRepository
from form_engine.versioning import EMPTY_SLUG_MESSAGE, FormLineage, FormVersionService, VersionAffordance


def _row(version, state=FormState.PUBLISHED.value, code="en", slug="intake", form_id=None):
    return Form(id=form_id or f"{slug}-{code}-{version}-{state}", slug=slug, title=slug.title(),
                state=state, version=version, language=Language(code=code))


def _draft(code="en", slug="intake"):
    return _row(0, FormState.DRAFT.value, code, slug)


class TestFormLineage:
    """Pure transition checks over a lineage snapshot."""

    def test_publish_assigns_next_version(self):
        lineage = FormLineage("intake", [_row(1), _row(2), _draft()])
        published = lineage.publish(_draft())
        assert published.state == "published"
        assert published.version == 3

    def test_publish_twice_rejected(self):
        lineage = FormLineage("intake", [_row(1), _row(2)])
        published = lineage.publish(_draft())
        with pytest.raises(PublishNotAllowedError) as exc_info:
            lineage.publish(published)
        assert exc_info.value.version == 3

    def test_first_publish_is_version_one(self):
        assert FormLineage("intake", [_draft()]).publish(_draft()).version == 1

    def test_versions_are_per_language(self):
        lineage = FormLineage("intake", [_row(1), _row(2), _row(1, code="es")])
        assert lineage.next_version("es") == 2
        assert lineage.next_version("en") == 3

    def test_new_draft_rejected_when_draft_exists(self):
        lineage = FormLineage("intake", [_row(1), _draft()])
        with pytest.raises(DraftAlreadyExistsError):
            lineage.new_draft("en")

    def test_new_draft_is_empty_version_zero(self):
        lineage = FormLineage("intake", [_row(1)])
        draft = lineage.new_draft("en")
        assert draft.version == 0
        assert draft.is_draft
        assert draft.fields == [] and draft.groups == []
        assert draft.title == "Intake"
        assert draft.language_code() == "en"

    def test_select_version(self):
        v1, v2, draft = _row(1), _row(2), _draft()
        lineage = FormLineage("intake", [v1, v2, draft])
        assert lineage.select_version("en") is draft
        assert lineage.select_version("en", 1) is v1
        assert lineage.select_version("en", 0) is draft

        without_draft = FormLineage("intake", [v1, v2])
        assert without_draft.select_version("en") is v2

    def test_select_missing_version(self):
        lineage = FormLineage("intake", [_row(1)])
        with pytest.raises(VersionNotFoundError):
            lineage.select_version("en", 5)
        with pytest.raises(VersionNotFoundError):
            lineage.select_version("fr")

    def test_versions_listing(self):
        lineage = FormLineage("intake", [_row(1), _draft(), _row(2)])
        assert lineage.versions("en") == [0, 2, 1]

    def test_affordance(self):
        draft = _draft()
        assert FormLineage("intake", [_row(1), draft]).affordance(draft) == VersionAffordance.SAVE_DRAFT
        assert FormLineage("intake", [_row(1), draft]).affordance(_row(1)) == VersionAffordance.GO_TO_DRAFT
        assert FormLineage("intake", [_row(1)]).affordance(_row(1)) == VersionAffordance.NEW_VERSION

    def test_save_published_rejected(self):
        with pytest.raises(NotADraftError):
            FormLineage("intake", [_row(1)]).check_save_draft(_row(1))

    def test_delete_draft_rules(self):
        draft = _draft()
        with pytest.raises(SoleLanguageVariantError):
            FormLineage("intake", [draft]).check_delete_draft(draft)
        with pytest.raises(NotADraftError):
            FormLineage("intake", [_row(1), _row(2)]).check_delete_draft(_row(1))
        FormLineage("intake", [draft, _draft(code="es")]).check_delete_draft(draft)


class TestFormVersionService:
    """Transitions applied through a repository."""

    def setup_method(self):
        self.repository = InMemoryFormRepository()
        self.service = FormVersionService(self.repository)

    def test_intake_scenario(self):
        v1 = self.repository.save_form(Form(slug="intake", title="Intake", state="published", version=1,
                                            language=Language(code="en")))
        draft = self.service.new_draft("intake", "en")

        rows = self.repository.load_forms_by_slug("intake")
        assert {(r.state, r.version) for r in rows} == {("published", 1), ("draft", 0)}
        assert draft.id != v1.id

        with pytest.raises(DraftAlreadyExistsError):
            self.service.new_draft("intake", "en")

    def test_save_draft_inserts_then_updates(self):
        form = self.service.save_draft(Form(slug="intake", title="Intake", language=Language(code="en")))
        assert form.id
        form.title = "Intake v2"
        updated = self.service.save_draft(form)
        assert updated.id == form.id
        assert len(self.repository.load_forms_by_slug("intake")) == 1
        assert self.repository.load_form(form.id).title == "Intake v2"

    def test_empty_slug_rejected(self):
        with pytest.raises(FormEngineError) as exc_info:
            self.service.save_draft(Form(slug="  "))
        assert str(exc_info.value) == EMPTY_SLUG_MESSAGE

    def test_second_unsaved_draft_rejected(self):
        self.service.save_draft(Form(slug="intake", language=Language(code="en")))
        with pytest.raises(DraftAlreadyExistsError):
            self.service.save_draft(Form(slug="intake", language=Language(code="en")))

    def test_language_change_into_lineage_with_draft_rejected(self):
        english = self.service.save_draft(Form(slug="intake", language=Language(code="en")))
        self.service.save_draft(Form(slug="intake", language=Language(code="es")))

        english.language = Language(code="es")
        with pytest.raises(DraftAlreadyExistsError):
            self.service.save_draft(english)
        drafts = [r.language_code() for r in self.repository.load_forms_by_slug("intake") if r.is_draft]
        assert sorted(drafts) == ["en", "es"]

    def test_slug_rename_into_lineage_with_draft_rejected(self):
        first = self.service.save_draft(Form(slug="a", language=Language(code="en")))
        self.service.save_draft(Form(slug="b", language=Language(code="en")))

        first.slug = "b"
        with pytest.raises(DraftAlreadyExistsError):
            self.service.save_draft(first)
        assert len(self.repository.load_forms_by_slug("b")) == 1
        assert len(self.repository.load_forms_by_slug("a")) == 1

    def test_slug_rename_into_free_lineage(self):
        draft = self.service.save_draft(Form(slug="a", language=Language(code="en")))
        draft.slug = "c"
        self.service.save_draft(draft)
        assert self.repository.list_slugs() == ["c"]

    def test_publish_then_edit_rejected(self):
        draft = self.service.save_draft(Form(slug="intake", language=Language(code="en")))
        published = self.service.publish(draft)
        assert published.version == 1
        assert published.id == draft.id

        with pytest.raises(PublishNotAllowedError):
            self.service.publish(published)
        # A stale in-memory copy still claiming to be a draft is rechecked against storage
        with pytest.raises(PublishNotAllowedError):
            self.service.publish(draft)
        with pytest.raises(NotADraftError):
            self.service.save_draft(draft)

    def test_publish_increments_per_lineage(self):
        for expected in (1, 2, 3):
            draft = self.service.new_draft("intake", "en")
            assert self.service.publish(draft).version == expected
        assert self.service.list_versions("intake", "en") == [3, 2, 1]

    def test_delete_draft(self):
        self.service.publish(self.service.new_draft("intake", "en"))
        draft = self.service.new_draft("intake", "en")
        self.service.delete_draft(draft)
        assert self.service.list_versions("intake", "en") == [1]

    def test_delete_sole_draft_rejected(self):
        draft = self.service.new_draft("intake", "en")
        with pytest.raises(SoleLanguageVariantError):
            self.service.delete_draft(draft)
        assert self.service.select_version("intake", "en").id == draft.id

    def test_delete_draft_with_other_language_variant(self):
        self.service.new_draft("intake", "es")
        draft = self.service.new_draft("intake", "en")
        self.service.delete_draft(draft)
        assert self.service.lineage("intake").languages() == ["es"]

    def test_list_lineages(self):
        self.service.new_draft("intake", "en")
        self.service.new_draft("intake", "es")
        self.service.new_draft("exit", "en")
        assert self.service.list_lineages() == {"exit": ["en"], "intake": ["en", "es"]}
