"""
Draft/publish versioning for form lineages.

A lineage is every Form row sharing one slug. Per language it holds the
published versions 1..K plus at most one draft, which is always version 0.
FormLineage checks transitions against a snapshot of those rows without any
I/O; FormVersionService applies them through a FormRepository.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .entities import Form, FormState, Language
from .exceptions import (
    DraftAlreadyExistsError,
    FormEngineError,
    NotADraftError,
    PublishNotAllowedError,
    SoleLanguageVariantError,
    VersionNotFoundError,
)

logger = logging.getLogger(__name__)

DRAFT_VERSION = 0
EMPTY_SLUG_MESSAGE = "Form slug must not be empty."


class VersionAffordance:
    """Label of the version action offered next to the version selector."""
    SAVE_DRAFT = "Save Draft"
    GO_TO_DRAFT = "Go to Draft"
    NEW_VERSION = "+ New Version"


def _code(language) -> Optional[str]:
    if isinstance(language, Language):
        return language.code
    return language


class FormLineage:
    """
    Read-only view over all rows of one slug.

    Args:
        slug: Lineage slug
        rows: Every stored Form row with that slug, in any order
    """

    def __init__(self, slug: str, rows: Iterable[Form]):
        self.slug = slug
        self.rows: List[Form] = [row for row in rows if row.slug == slug]

    def rows_for(self, language) -> List[Form]:
        code = _code(language)
        return [row for row in self.rows if row.language_code(default=None) == code]

    def languages(self) -> List[str]:
        codes: List[str] = []
        for row in self.rows:
            code = row.language_code(default=None)
            if code not in codes:
                codes.append(code)
        return codes

    def draft_for(self, language) -> Optional[Form]:
        for row in self.rows_for(language):
            if row.is_draft:
                return row
        return None

    def published_versions(self, language) -> List[int]:
        return sorted(row.version for row in self.rows_for(language) if row.is_published)

    def next_version(self, language) -> int:
        """``max(published) + 1`` for the language, 1 for an unpublished lineage."""
        published = self.published_versions(language)
        return (max(published) if published else 0) + 1

    def versions(self, language) -> List[int]:
        """
        Versions offered by the selector, newest first.

        The draft, if any, is listed first as version 0.
        """
        listed = sorted(self.published_versions(language), reverse=True)
        if self.draft_for(language) is not None:
            listed.insert(0, DRAFT_VERSION)
        return listed

    def select_version(self, language, version: Optional[int] = None) -> Form:
        """
        Resolve the row to load for a language.

        Args:
            language: Language code or Language
            version: Requested version; None resolves to the draft if one
                exists, else the latest published version

        Raises:
            VersionNotFoundError: If no matching row exists
        """
        code = _code(language)
        if version is None:
            draft = self.draft_for(code)
            if draft is not None:
                return draft
            published = [row for row in self.rows_for(code) if row.is_published]
            if not published:
                raise VersionNotFoundError(self.slug, code, None)
            return max(published, key=lambda row: row.version)

        if version == DRAFT_VERSION:
            draft = self.draft_for(code)
            if draft is None:
                raise VersionNotFoundError(self.slug, code, version)
            return draft

        for row in self.rows_for(code):
            if row.is_published and row.version == version:
                return row
        raise VersionNotFoundError(self.slug, code, version)

    def affordance(self, form: Form) -> str:
        if form.is_draft:
            return VersionAffordance.SAVE_DRAFT
        if self.draft_for(form.language_code(default=None)) is not None:
            return VersionAffordance.GO_TO_DRAFT
        return VersionAffordance.NEW_VERSION

    # --- Transition checks -----------------------------------------------

    def check_save_draft(self, form: Form) -> None:
        if not form.is_draft:
            raise NotADraftError("save", form.slug, form.language_code(default=None), form.version)

    def publish(self, form: Form) -> Form:
        """
        Return the published copy of a draft row.

        The copy keeps the row id, so saving it updates the draft in place.

        Raises:
            PublishNotAllowedError: If the row is already published
        """
        code = form.language_code(default=None)
        if not form.is_draft:
            raise PublishNotAllowedError(form.slug, code, form.version)

        published = form.model_copy(deep=True)
        published.state = FormState.PUBLISHED.value
        published.version = self.next_version(code)
        return published

    def new_draft(self, language, title: str = "") -> Form:
        """
        Build an empty version-0 draft row for a language.

        The structure of the latest published version is not copied; see
        ``schema_model.clone_structure``.

        Raises:
            DraftAlreadyExistsError: If the lineage already has a draft for
                the language
        """
        code = _code(language)
        if self.draft_for(code) is not None:
            raise DraftAlreadyExistsError(self.slug, code)

        lang = language if isinstance(language, Language) else None
        if lang is None:
            for row in self.rows_for(code):
                lang = row.language
                break
        if lang is None and code is not None:
            lang = Language(code=code)

        if not title:
            latest = self._latest(code)
            title = latest.title if latest is not None else ""

        return Form(
            slug=self.slug,
            title=title,
            state=FormState.DRAFT.value,
            version=DRAFT_VERSION,
            language=lang,
        )

    def check_delete_draft(self, form: Form) -> None:
        """
        Raises:
            NotADraftError: If the row is published
            DraftAlreadyExistsError: If another draft exists for the slug and language
            SoleLanguageVariantError: If the row is the only one of the slug
        """
        code = form.language_code(default=None)
        if not form.is_draft:
            raise NotADraftError("delete", form.slug, code, form.version)
        others = [row for row in self.rows if row is not form and (not form.id or row.id != form.id)]
        if not others:
            raise SoleLanguageVariantError(form.slug, code)

    def _latest(self, code) -> Optional[Form]:
        published = [row for row in self.rows_for(code) if row.is_published]
        return max(published, key=lambda row: row.version) if published else None


class FormVersionService:
    """
    Applies lineage transitions through a FormRepository.

    Every transition reloads the lineage first, so checks run against the
    stored rows rather than a stale copy held by the caller.
    """

    def __init__(self, repository):
        self.repository = repository

    def lineage(self, slug: str) -> FormLineage:
        return FormLineage(slug, self.repository.load_forms_by_slug(slug))

    def save_draft(self, form: Form) -> Form:
        """
        Insert a draft row, or update it in place when it already has an id.

        Raises:
            FormEngineError: If the slug is empty
            NotADraftError: If the row is published
            DraftAlreadyExistsError: If another draft exists for the slug and language
        """
        if not (form.slug or "").strip():
            raise FormEngineError(EMPTY_SLUG_MESSAGE, {"form_id": form.id},
                                  ["Enter a slug before saving"])

        lineage = self.lineage(form.slug)
        lineage.check_save_draft(form)
        if form.id:
            lineage.check_save_draft(self._stored(form))
        # a renamed or re-languaged row may land in a lineage that already has a draft
        draft = lineage.draft_for(form.language_code(default=None))
        if draft is not None and draft.id != form.id:
            raise DraftAlreadyExistsError(form.slug, form.language_code(default=None))

        form.version = DRAFT_VERSION
        saved = self.repository.save_form(form)
        logger.info(f"Saved draft of form '{saved.slug}' ({saved.language_code(default=None)}) as {saved.id}")
        return saved

    def publish(self, form: Form) -> Form:
        lineage = self.lineage(form.slug)
        stored = self._stored(form)
        if not stored.is_draft:
            raise PublishNotAllowedError(stored.slug, stored.language_code(default=None), stored.version)
        published = lineage.publish(form)
        saved = self.repository.save_form(published)
        logger.info(f"Published form '{saved.slug}' ({saved.language_code(default=None)}) "
                    f"as version {saved.version}")
        return saved

    def new_draft(self, slug: str, language, title: str = "") -> Form:
        draft = self.lineage(slug).new_draft(language, title)
        saved = self.repository.save_form(draft)
        logger.info(f"Created draft of form '{slug}' ({saved.language_code(default=None)}) as {saved.id}")
        return saved

    def delete_draft(self, form: Form) -> None:
        lineage = self.lineage(form.slug)
        lineage.check_delete_draft(self._stored(form))
        self.repository.delete_form(form.id)
        logger.info(f"Deleted draft {form.id} of form '{form.slug}' ({form.language_code(default=None)})")

    def select_version(self, slug: str, language, version: Optional[int] = None) -> Form:
        return self.lineage(slug).select_version(language, version)

    def list_versions(self, slug: str, language) -> List[int]:
        return self.lineage(slug).versions(language)

    def list_lineages(self) -> Dict[str, List[str]]:
        """Map every stored slug to its language codes."""
        lineages: Dict[str, List[str]] = {}
        for slug in self.repository.list_slugs():
            lineages[slug] = self.lineage(slug).languages()
        return lineages

    def _stored(self, form: Form) -> Form:
        """The stored row for ``form``; unsaved forms are checked as given."""
        if not form.id:
            return form
        return self.repository.load_form(form.id)
