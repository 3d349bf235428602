from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import form_builder.form_builder_view as form_builder_view
import form_builder.session_manager as session_manager
import form_builder.ui_feedback as ui_feedback
from form_builder.form_builder_view import FormBuilderView
from form_builder.session_manager import SessionManager


class _DummyContext:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _SessionState:
    def __init__(self, initial=None):
        super().__setattr__("_data", dict(initial or {}))

    def get(self, key, default=None):
        return self._data.get(key, default)

    def __getitem__(self, key):
        return self._data[key]

    def __setitem__(self, key, value):
        self._data[key] = value

    def __delitem__(self, key):
        del self._data[key]

    def __contains__(self, key):
        return key in self._data

    def __getattr__(self, name):
        if name in self._data:
            return self._data[name]
        raise AttributeError(name)

    def __setattr__(self, name, value):
        if name == "_data":
            super().__setattr__(name, value)
        else:
            self._data[name] = value


def _mock_st(session_state=None):
    if session_state is None:
        session_state = {}

    def _columns(spec, **_kwargs):
        if isinstance(spec, int):
            count = spec
        else:
            count = len(spec)
        return tuple(_DummyContext() for _ in range(count))

    return SimpleNamespace(
        session_state=_SessionState(session_state),
        subheader=MagicMock(),
        caption=MagicMock(),
        divider=MagicMock(),
        columns=MagicMock(side_effect=_columns),
        button=MagicMock(return_value=False),
        download_button=MagicMock(),
        checkbox=MagicMock(return_value=False),
        selectbox=MagicMock(return_value=''),
        text_input=MagicMock(return_value=''),
        text_area=MagicMock(return_value=''),
        file_uploader=MagicMock(return_value=None),
        form=MagicMock(return_value=_DummyContext()),
        form_submit_button=MagicMock(return_value=False),
        expander=MagicMock(return_value=_DummyContext()),
        code=MagicMock(),
        toast=MagicMock(),
        info=MagicMock(),
        warning=MagicMock(),
        success=MagicMock(),
        error=MagicMock(),
        markdown=MagicMock(),
        rerun=MagicMock(),
    )


def _setup(monkeypatch, session_state=None):
    st = _mock_st(session_state)
    monkeypatch.setattr(form_builder_view, "st", st)
    monkeypatch.setattr(session_manager, "st", st)
    monkeypatch.setattr(ui_feedback, "st", st)
    SessionManager.initialize()
    return st, SessionManager.get_store(), SessionManager.get_controller()


def test_initialize_creates_builder_state_once(monkeypatch):
    st, store, controller = _setup(monkeypatch)

    SessionManager.initialize()

    assert SessionManager.get_store() is store
    assert controller.store is store
    assert SessionManager.get_rule_editor().store is store
    assert st.session_state.session_id.startswith("session_")
    assert SessionManager.get_schema_file() == 'schemas/form_schema.yaml'


def test_reset_session_starts_fresh(monkeypatch):
    _, store, _ = _setup(monkeypatch)
    store.add_field('text')

    SessionManager.reset_session()
    SessionManager.initialize()

    assert SessionManager.get_store() is not store
    assert SessionManager.get_store().history == ()


def test_add_from_palette_goes_through_drop_rules(monkeypatch):
    st, store, controller = _setup(monkeypatch)

    assert FormBuilderView._add_from_palette(controller, 'section', '') == 'section'
    assert FormBuilderView._add_from_palette(controller, 'text', 'section') == 'section.text'

    assert store.get_field('section.text') is not None
    st.toast.assert_called_with("Added field 'section.text'", icon='✅')


def test_add_into_leaf_field_is_discarded(monkeypatch):
    _, store, controller = _setup(monkeypatch)
    FormBuilderView._add_from_palette(controller, 'text', '')

    assert FormBuilderView._add_from_palette(controller, 'number', 'text') is None
    assert len(store.history) == 1


def test_move_field_up_and_down(monkeypatch):
    _, store, controller = _setup(monkeypatch)
    store.add_field('text')
    store.add_field('number')

    assert FormBuilderView._move_field(store, controller, 'text', 1)
    assert [path for path, _ in store.get_ordered_fields()] == ['number', 'text']

    assert not FormBuilderView._move_field(store, controller, 'number', -1)
    assert len(store.history) == 3


def test_select_field_uses_click_gesture(monkeypatch):
    _, store, controller = _setup(monkeypatch)
    store.add_field('text')
    store.add_field('number')

    assert FormBuilderView._select_field(controller, 'text')
    assert store.selected_path == 'text'


def test_delete_missing_field_records_error(monkeypatch):
    st, _, _ = _setup(monkeypatch)

    assert FormBuilderView._delete_field(SessionManager.get_store(), 'ghost') == 0

    error_info = SessionManager.pop_last_error()
    assert error_info['title'] == '🔍 Field Not Found'
    assert SessionManager.pop_last_error() is None
    st.toast.assert_called_once()


def test_handle_import_with_warnings(monkeypatch):
    st, store, _ = _setup(monkeypatch)
    content = (
        "type: object\n"
        "properties:\n"
        "  reason:\n"
        "    type: string\n"
        "    x-reactions:\n"
        "      dependencies: [status]\n"
        "      _conditionalVisibility:\n"
        "        parentField: status\n"
        "        condition: hasValue\n"
    ).encode('utf-8')

    assert FormBuilderView._handle_import(store, 'form.yaml', content)

    assert store.get_field('reason').rule.enabled is False
    assert SessionManager.get_import_warnings() == [
        "reason: rule references missing field 'status' (rule disabled)"
    ]
    st.toast.assert_called_with("Imported schema: form.yaml (1 warning(s))", icon='⚠️')


def test_handle_import_rejects_duplicate_keys(monkeypatch):
    _, store, _ = _setup(monkeypatch)
    content = b'{"type": "object", "properties": {"a": {}, "a": {}}}'

    assert not FormBuilderView._handle_import(store, 'form.json', content)

    error_info = SessionManager.pop_last_error()
    assert error_info['violations'] == ["Duplicate key 'a'"]
    assert store.history == ()


def test_handle_import_rejects_bad_files(monkeypatch):
    st, store, _ = _setup(monkeypatch)

    assert not FormBuilderView._handle_import(store, 'form.yaml', b'\xff\xfe\x00')
    with patch.object(form_builder_view, "MAX_IMPORT_SIZE_MB", 0):
        assert not FormBuilderView._handle_import(store, 'form.yaml', b'type: object\n')

    assert st.toast.call_count == 2
    assert store.history == ()


def test_save_writes_file_and_marks_saved(monkeypatch, tmp_path):
    _, store, _ = _setup(monkeypatch)
    store.add_field('text')
    path = tmp_path / 'form.yaml'

    assert FormBuilderView._save(store, str(path))

    assert path.exists()
    assert not store.has_unsaved_changes


def test_failed_save_keeps_unsaved_changes(monkeypatch, tmp_path):
    st, store, _ = _setup(monkeypatch)
    store.add_field('text')

    with patch.object(form_builder_view, "save_schema_file", return_value=(False, "Permission denied")):
        assert not FormBuilderView._save(store, str(tmp_path / 'form.yaml'))

    assert store.has_unsaved_changes
    st.toast.assert_called_once_with("Save failed: Permission denied", icon='❌')


def test_parse_options():
    assert FormBuilderView._parse_options("Approved=approved\n\nRejected\n") == [
        {'label': 'Approved', 'value': 'approved'},
        {'label': 'Rejected', 'value': 'Rejected'},
    ]


def test_render_empty_builder(monkeypatch):
    st, _, _ = _setup(monkeypatch)

    FormBuilderView.render()

    info_messages = [c[0][0] for c in st.info.call_args_list]
    assert "Add fields from the palette to start building the form." in info_messages
    assert "Select a field to edit its properties." in info_messages
    st.code.assert_called_once()


def test_render_shows_selected_field_and_pending_error(monkeypatch):
    st, store, _ = _setup(monkeypatch)
    store.add_field('text')
    SessionManager.set_last_error({
        'title': '🔍 Field Not Found', 'message': 'gone', 'severity': 'warning',
        'recovery_suggestions': [], 'violations': [],
    })

    FormBuilderView.render()

    st.caption.assert_any_call("Path: text")
    st.caption.assert_any_call("Fields: text")
    st.warning.assert_any_call("**🔍 Field Not Found**\n\ngone")
    assert SessionManager.pop_last_error() is None
