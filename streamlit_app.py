"""
Main Streamlit application for the form engine console.
Builds versioned, multi-language forms and fills in submissions against them.
"""

import logging

import streamlit as st

from form_engine.config_loader import FormsSettings, configure_logging, get_config, get_config_value
from form_engine.entities import Field, FieldGroup, FieldType, Form, Language
from form_engine.error_reporting import StreamlitErrorReporter
from form_engine.field_registry import Component
from form_engine.persistence import (
    JsonFileFormRepository,
    JsonFileSubmissionStore,
    LocalFileUploader,
    load_language_catalogue,
)
from form_engine.schema_model import order_sorted
from form_engine.session import FormBuilderSession, FormFillSession
from form_engine.versioning import VersionAffordance

configure_logging(get_config())
logger = logging.getLogger(__name__)

settings = FormsSettings.from_config(get_config())

st.set_page_config(
    page_title=get_config_value('app', 'name', 'Form Engine Console'),
    page_icon="📝",
    layout="wide",
    initial_sidebar_state="expanded"
)


def init_session_state():
    """Initialize session state variables."""
    if 'reporter' not in st.session_state:
        st.session_state.reporter = StreamlitErrorReporter()
    if 'repository' not in st.session_state:
        st.session_state.repository = JsonFileFormRepository(settings.storage_dir)
    if 'submissions' not in st.session_state:
        st.session_state.submissions = JsonFileSubmissionStore(settings.storage_dir)
    if 'uploader' not in st.session_state:
        st.session_state.uploader = LocalFileUploader(settings.storage_dir, settings.media_upload_url)
    if 'builder' not in st.session_state:
        st.session_state.builder = None
    if 'filler' not in st.session_state:
        st.session_state.filler = None


def open_form(form: Form):
    """Replace both sessions with ones for ``form``."""
    st.session_state.builder = FormBuilderSession(
        form, st.session_state.repository, st.session_state.reporter, settings
    )
    open_filler(form)


def open_filler(form: Form):
    if st.session_state.filler is not None:
        st.session_state.filler.close()
    st.session_state.filler = FormFillSession(
        form,
        submission_store=st.session_state.submissions,
        uploader=st.session_state.uploader,
        reporter=st.session_state.reporter,
        settings=settings,
    )


def render_sidebar():
    languages = load_language_catalogue(get_config())
    codes = [lang.code for lang in languages] or [settings.default_language]

    with st.sidebar:
        st.header("Forms")
        slugs = st.session_state.repository.list_slugs()
        if slugs:
            slug = st.selectbox("Form", slugs, key="sidebar_slug")
            language = st.selectbox("Language", codes, key="sidebar_language")
            if st.button("Open", key="sidebar_open"):
                session = FormBuilderSession(Form(slug=slug, language=Language(code=language)),
                                             st.session_state.repository, st.session_state.reporter, settings)
                if session.select_version(None):
                    open_form(session.form)

        st.divider()
        st.subheader("New form")
        new_slug = st.text_input("Slug", key="new_form_slug")
        new_title = st.text_input("Title", key="new_form_title")
        new_language = st.selectbox("Language", codes, key="new_form_language")
        if st.button("Create draft", key="new_form_create"):
            language = next((lang for lang in languages if lang.code == new_language), Language(code=new_language))
            session = FormBuilderSession(Form(slug=new_slug.strip(), title=new_title, language=language),
                                         st.session_state.repository, st.session_state.reporter, settings)
            if session.save_draft():
                open_form(session.form)


def render_version_bar(builder: FormBuilderSession):
    form = builder.form
    st.subheader(f"{form.title or form.slug} ({form.language_code()})")

    versions = builder.list_versions()
    col1, col2, col3 = st.columns([2, 1, 1])
    with col1:
        labels = {v: "Draft" if v == 0 else f"Version {v}" for v in versions}
        if versions:
            selected = st.selectbox("Version", versions, index=versions.index(form.version) if form.version in versions else 0,
                                    format_func=lambda v: labels[v], key="version_select")
            if selected != form.version and builder.select_version(selected):
                open_form(builder.form)
                st.rerun()

    affordance = builder.affordance()
    with col2:
        if affordance == VersionAffordance.SAVE_DRAFT:
            if st.button("Publish", key="publish"):
                if builder.publish():
                    open_form(builder.form)
                    st.rerun()
        elif affordance == VersionAffordance.GO_TO_DRAFT:
            if st.button(affordance, key="go_to_draft") and builder.go_to_draft():
                open_form(builder.form)
                st.rerun()
        elif st.button(affordance, key="new_version") and builder.new_version():
            open_form(builder.form)
            st.rerun()

    with col3:
        if form.is_draft and st.button("Delete Draft", key="delete_draft") and builder.delete_draft():
            open_form(builder.form)
            st.rerun()


def render_builder(builder: FormBuilderSession):
    form = builder.form
    editable = form.is_draft

    def _render_fields(fields, container_key):
        for field in order_sorted(fields):
            col1, col2 = st.columns([4, 1])
            col1.write(f"**{field.label or field.name}** `{field.name}` · {field.type}")
            if editable and col2.button("Edit", key=f"edit_field_{container_key}_{field.id}"):
                builder.edit_field(field)

    _render_fields(form.fields, "form")
    for group in order_sorted(form.groups):
        with st.expander(group.title or "Untitled group", expanded=True):
            _render_fields(group.fields, group.id)
            for child in order_sorted(group.child_groups):
                st.markdown(f"**{child.title or 'Untitled subgroup'}**")
                _render_fields(child.fields, child.id)
            if editable and st.button("Edit group", key=f"edit_group_{group.id}"):
                builder.edit_group(group)

    if not editable:
        st.info("Published versions are read-only. Create a new version to make changes.")
        return

    if builder.metadata_open:
        render_metadata_editor(builder)
    elif st.button("Edit details", key="edit_metadata"):
        builder.open_metadata()
        st.rerun()

    col1, col2 = st.columns(2)
    if col1.button("Add field", key="add_field"):
        builder.start_new_field()
    if col2.button("Add group", key="add_group"):
        builder.start_new_group()

    if builder.edit_field_open and builder.active_field is not None:
        render_field_editor(builder, builder.active_field)
    if builder.edit_field_group_open and builder.active_field_group is not None:
        render_group_editor(builder, builder.active_field_group)


def render_metadata_editor(builder: FormBuilderSession):
    form = builder.form
    st.markdown("#### Form details")
    slug = st.text_input("Slug", value=form.slug, key="meta_slug")
    title = st.text_input("Title", value=form.title, key="meta_title")
    subtitle = st.text_input("Subtitle", value=form.subtitle or "", key="meta_subtitle")
    description = st.text_area("Description", value=form.description or "", key="meta_description")

    col1, col2 = st.columns(2)
    if col1.button("Save details", key="save_metadata"):
        if builder.update_metadata(slug=slug.strip(), title=title, subtitle=subtitle or None,
                                   description=description or None):
            st.rerun()
    if col2.button("Cancel", key="cancel_metadata"):
        builder.close_metadata()
        st.rerun()


def _parent_picker(builder: FormBuilderSession, node, key: str):
    options = builder.parent_options()
    if not options:
        return
    current = node.parent.group_id if node.parent is not None and node.parent.kind == "group" else builder.form.id
    ids = list(options)
    parent_id = st.selectbox("Parent", ids, index=ids.index(current) if current in ids else 0,
                             format_func=lambda i: options[i], key=key)
    if parent_id != current:
        builder.set_parent(node, parent_id)


def render_field_editor(builder: FormBuilderSession, field: Field):
    st.markdown("#### Field")
    _parent_picker(builder, field, "field_parent")
    label = st.text_input("Label", value=field.label, key="field_label")
    if label != field.label:
        builder.set_label(label)
    st.caption(f"Name: `{field.name}`")
    types = [t.value for t in FieldType]
    field.type = st.selectbox("Type", types, index=types.index(field.type) if field.type in types else 0,
                              key="field_type")
    field.placeholder = st.text_input("Placeholder", value=field.placeholder or "", key="field_placeholder") or None
    field.help_text = st.text_input("Help text", value=field.help_text or "", key="field_help") or None
    field.required = st.checkbox("Required", value=field.required, key="field_required")

    col1, col2, col3 = st.columns(3)
    if col1.button("Save field", key="save_field") and builder.save_field():
        st.rerun()
    if field.id and col2.button("Delete field", key="delete_field") and builder.delete_field(field):
        st.rerun()
    if col3.button("Cancel", key="cancel_field"):
        builder.close_field()
        st.rerun()


def render_group_editor(builder: FormBuilderSession, group: FieldGroup):
    st.markdown("#### Field group")
    _parent_picker(builder, group, "group_parent")
    group.title = st.text_input("Title", value=group.title or "", key="group_title")
    group.subtitle = st.text_input("Subtitle", value=group.subtitle or "", key="group_subtitle") or None
    group.description = st.text_area("Description", value=group.description or "", key="group_description") or None

    col1, col2, col3 = st.columns(3)
    if col1.button("Save group", key="save_group") and builder.save_group():
        st.rerun()
    if group.id and col2.button("Delete group", key="delete_group") and builder.delete_group(group):
        st.rerun()
    if col3.button("Cancel", key="cancel_group"):
        builder.close_group()
        st.rerun()


def _on_widget_change(filler: FormFillSession, field_id: str, key: str):
    filler.handle_change(field_id, st.session_state[key])


def render_input(filler: FormFillSession, field: Field):
    resolved = filler.resolve(field)
    key = f"input_{field.id}"
    label = field.label or field.name
    kwargs = dict(key=key, on_change=_on_widget_change, args=(filler, field.id, key), help=field.help_text)

    if resolved.component == Component.CHECKBOX:
        st.checkbox(label, value=resolved.coerced_value, **kwargs)
    elif resolved.component == Component.TEXTAREA:
        st.text_area(label, value=resolved.coerced_value, **kwargs)
    elif resolved.component in (Component.SELECT, Component.RADIO_GROUP):
        options = [""] + list(resolved.options)
        index = options.index(resolved.coerced_value) if resolved.coerced_value in options else 0
        format_func = lambda value: resolved.options.get(value, "")
        if resolved.component == Component.SELECT:
            st.selectbox(label, options, index=index, format_func=format_func, **kwargs)
        else:
            st.radio(label, options, index=index, format_func=format_func,
                     horizontal=resolved.attributes.get("orientation") == "horizontal", **kwargs)
    elif resolved.component == Component.FILE_UPLOAD:
        tracker = filler.tracker_for(field)
        for entry in tracker.files:
            st.caption(f"📎 {entry.filename or entry.key}")
        files = st.file_uploader(label, accept_multiple_files=True, key=key)
        if files and st.button("Upload", key=f"upload_{field.id}"):
            filler.upload(field, files)
        if tracker.validity_message:
            st.warning(tracker.validity_message)
    elif resolved.component in (Component.JSON_EDITOR, Component.HTML_EDITOR):
        st.text_area(label, value=resolved.coerced_value, **kwargs)
    elif resolved.component == Component.NONE:
        st.markdown(label)
    else:
        st.text_input(label, value=str(resolved.coerced_value), placeholder=field.placeholder or "", **kwargs)


def render_filler(filler: FormFillSession):
    form = filler.form
    if form.description:
        st.markdown(form.description)

    for field in order_sorted(form.fields):
        render_input(filler, field)
    for group in order_sorted(form.groups):
        st.markdown(f"### {group.title or ''}")
        for field in order_sorted(group.fields):
            render_input(filler, field)
        for child in order_sorted(group.child_groups):
            st.markdown(f"#### {child.title or ''}")
            for field in order_sorted(child.fields):
                render_input(filler, field)

    if filler.has_unsaved_changes:
        st.caption(f"Unsaved changes in {len(filler.changed_fields())} field(s)")

    for action in filler.sorted_actions():
        label = action.auto_execute_progress_text if action.auto_execute and filler.loading else action.value
        if st.button(label, key=f"action_{action.id}", disabled=not filler.uploads_complete()):
            if filler.run_action(action) is not None:
                st.success(f"✅ {action.value} done")


def render_page():
    render_sidebar()

    builder = st.session_state.builder
    if builder is None:
        st.title(get_config_value('app', 'name', 'Form Engine Console'))
        st.info("Open a form or create a new draft from the sidebar.")
        return

    filler = st.session_state.filler
    if filler is None or filler.form is not builder.form:
        open_filler(builder.form)

    render_version_bar(builder)
    build_tab, fill_tab = st.tabs(["Build", "Fill in"])
    with build_tab:
        render_builder(builder)
    with fill_tab:
        render_filler(st.session_state.filler)


def main():
    """Main application entry point."""
    init_session_state()
    render_page()
    # alerts from this run and from the auto-execute thread
    st.session_state.reporter.render()


if __name__ == "__main__":
    main()
