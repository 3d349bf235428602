"""
Form builder page for the Streamlit app.
Palette, canvas, properties panel, conditional visibility editor and toolbar
on top of one session-scoped schema store. Palette buttons and the move
buttons on the canvas drive the drag controller with keyboard-style gestures,
so every edit goes through the same drop rules as a pointer drag.
"""

import streamlit as st
from pathlib import Path
from typing import Dict, Any, Callable, List, Optional, Tuple
import logging

from form_builder.drag_controller import DragController, DragSource, DropResult, DropTarget
from form_builder.exceptions import FormBuilderError, format_error_for_display
from form_builder.models import (
    ConditionalVisibilityRule,
    FieldType,
    ReactionIssue,
    SchemaProperty,
    VisibilityAction,
    VisibilityCondition,
)
from form_builder.rule_compiler import resolve_field_states
from form_builder.rule_editor import RuleEditor
from form_builder.schema_io import dump_schema, format_for_path, load_schema_text, save_schema_file
from form_builder.schema_store import SchemaStore
from form_builder.schema_tree import join_path, leaf_key, ordered_keys, parent_path, resolve, split_path
from form_builder.session_manager import SessionManager
from form_builder.ui_feedback import Notify, UserFeedback

logger = logging.getLogger(__name__)

FIELD_TYPES = [field_type.value for field_type in FieldType]
CONDITION_LABELS = {
    VisibilityCondition.HAS_VALUE.value: 'Has a value',
    VisibilityCondition.IS_EMPTY.value: 'Is empty',
    VisibilityCondition.EQUALS.value: 'Equals',
    VisibilityCondition.NOT_EQUALS.value: 'Does not equal',
}
ACTION_LABELS = {
    VisibilityAction.SHOW.value: 'Show this field',
    VisibilityAction.HIDE.value: 'Hide this field',
    VisibilityAction.DISABLE.value: 'Disable this field',
}
ISSUE_MESSAGES = {
    ReactionIssue.INCOMPLETE_RULE.value: "Rule is incomplete: choose a value to compare with. It has no effect until then.",
    ReactionIssue.DANGLING_REFERENCE.value: "Rule was disabled because the field it depends on no longer exists.",
    ReactionIssue.SELF_REFERENCE.value: "Rule depends on its own field and was disabled.",
}
MAX_IMPORT_SIZE_MB = 5


class FormBuilderView:
    """Form builder page."""

    @staticmethod
    def render(config: Optional[Dict[str, Any]] = None) -> None:
        """Render the whole builder page."""
        SessionManager.initialize(config)
        store = SessionManager.get_store()
        controller = SessionManager.get_controller()
        rule_editor = SessionManager.get_rule_editor()

        FormBuilderView._render_toolbar(store)

        error_info = SessionManager.pop_last_error()
        if error_info:
            UserFeedback.show_error_details(error_info)

        warnings = SessionManager.get_import_warnings()
        if warnings:
            UserFeedback.show_validation_results([], warnings)

        col_palette, col_canvas, col_properties = st.columns([1, 2, 2])
        with col_palette:
            FormBuilderView._render_palette(store, controller)
        with col_canvas:
            FormBuilderView._render_canvas(store, controller)
        with col_properties:
            FormBuilderView._render_properties(store, rule_editor)

        if SessionManager.get_config().get('ui', {}).get('show_json_preview', True):
            with st.expander("🧾 Schema JSON"):
                st.code(dump_schema(store.schema, 'json'), language='json')

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    @staticmethod
    def _run(operation: str, action: Callable[[], Any]) -> Tuple[bool, Any]:
        """
        Run a store action, turning form builder errors into a displayed error.

        Returns:
            Tuple of (success, action result)
        """
        try:
            return True, action()
        except FormBuilderError as e:
            logger.warning(f"{operation} rejected: {e}")
            error_info = format_error_for_display(e)
            SessionManager.set_last_error(error_info)
            Notify.error(f"{operation} failed: {e.message}")
            return False, None

    @staticmethod
    def _drop(controller: DragController, source: DragSource, target: Optional[DropTarget]) -> DropResult:
        """Play a keyboard-style gesture: lift, one step onto ``target``, release."""
        if not controller.on_gesture_start(source):
            return DropResult("none")
        controller.on_gesture_move(over=target)
        return controller.on_gesture_end(target)

    @staticmethod
    def _add_from_palette(controller: DragController, blueprint_key: str, container_path: str) -> Optional[str]:
        target = DropTarget.container(container_path) if container_path else DropTarget.canvas()
        ok, result = FormBuilderView._run(
            "Add field", lambda: FormBuilderView._drop(controller, DragSource.palette(blueprint_key), target)
        )
        if ok and result.action == "added":
            Notify.success(f"Added field '{result.path}'")
            return result.path
        return None

    @staticmethod
    def _move_field(store: SchemaStore, controller: DragController, path: str, offset: int) -> bool:
        """Move a field up (-1) or down (+1) among its siblings."""
        parent = parent_path(path)
        container = resolve(store.schema, parent)
        if container is None:
            return False
        keys = ordered_keys(container)
        index = keys.index(leaf_key(path)) + offset
        if index < 0 or index >= len(keys):
            return False

        target = DropTarget.field(join_path(parent, keys[index]))
        ok, result = FormBuilderView._run(
            "Move field", lambda: FormBuilderView._drop(controller, DragSource.field(path), target)
        )
        return ok and result.action == "reordered"

    @staticmethod
    def _select_field(controller: DragController, path: str) -> bool:
        """Click on a field: a gesture that never passes the drag threshold selects it."""
        def _click():
            controller.on_gesture_start(DragSource.field(path))
            return controller.on_gesture_end()

        ok, result = FormBuilderView._run("Select field", _click)
        return ok and result.action == "selected"

    @staticmethod
    def _delete_field(store: SchemaStore, path: str) -> int:
        ok, removed = FormBuilderView._run("Delete field", lambda: store.delete_field(path))
        if not ok:
            return 0
        Notify.success(f"Deleted '{path}' ({removed} field{'s' if removed != 1 else ''})")
        return removed

    @staticmethod
    def _save(store: SchemaStore, path: str) -> bool:
        def _write(data: Dict[str, Any]) -> None:
            success, error_msg = save_schema_file(path, data)
            if not success:
                raise OSError(error_msg)

        try:
            store.save(_write)
        except OSError as e:
            Notify.error(f"Save failed: {e}")
            return False
        Notify.success(f"Saved schema to {path}")
        return True

    @staticmethod
    def _handle_import(store: SchemaStore, filename: str, content: bytes, strict: bool = False) -> bool:
        """Import an uploaded YAML or JSON schema."""
        size_mb = len(content) / (1024 * 1024)
        if size_mb > MAX_IMPORT_SIZE_MB:
            Notify.error(f"File too large: {size_mb:.1f}MB (max: {MAX_IMPORT_SIZE_MB}MB)")
            return False

        try:
            text = content.decode('utf-8')
        except UnicodeDecodeError:
            Notify.error("File encoding error: Unable to read file as UTF-8")
            return False

        def _import():
            data = load_schema_text(text, format_for_path(filename), source=filename)
            return store.import_schema(data, strict=strict, source=filename)

        ok, warnings = FormBuilderView._run("Import schema", _import)
        if not ok:
            return False

        SessionManager.set_import_warnings(warnings)
        if warnings:
            Notify.warn(f"Imported schema: {filename} ({len(warnings)} warning(s))")
        else:
            Notify.success(f"Imported schema: {filename}")
        return True

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @staticmethod
    def _render_toolbar(store: SchemaStore) -> None:
        col1, col2, col3, col4, col5 = st.columns([1, 1, 1, 1, 2])

        with col1:
            if st.button("↶ Undo", key="undo", disabled=not store.can_undo(), width='stretch'):
                store.undo()
                st.rerun()
        with col2:
            if st.button("↷ Redo", key="redo", disabled=not store.can_redo(), width='stretch'):
                store.redo()
                st.rerun()
        with col3:
            if st.button("💾 Save", type="primary", key="save_schema", width='stretch'):
                if FormBuilderView._save(store, SessionManager.get_schema_file()):
                    st.rerun()
        with col4:
            schema_file = SessionManager.get_schema_file()
            fmt = format_for_path(schema_file)
            st.download_button(
                "📤 Export",
                data=dump_schema(store.schema, fmt),
                file_name=Path(schema_file).name,
                mime='application/json' if fmt == 'json' else 'application/x-yaml',
                key="export_schema",
                width='stretch',
            )
        with col5:
            if store.has_unsaved_changes:
                summary = store.unsaved_change_summary()
                st.warning(f"⚠️ Unsaved • {summary['summary']['total']} change(s)")
                touched = [field or '(form)' for field in summary['fields']]
                if touched:
                    st.caption(f"Fields: {', '.join(touched)}")
                with st.expander("Changes since last save"):
                    for line in summary['changes']:
                        st.markdown(f"- {line}")
            else:
                st.info("✅ All changes saved")

        with st.expander("📥 Import schema"):
            strict = st.checkbox("Reject rules that reference missing fields", key="strict_import",
                                 value=bool(SessionManager.get_config().get('builder', {}).get('strict_import')))
            uploaded = st.file_uploader("Schema file", type=['yaml', 'yml', 'json'], key="import_file")
            if uploaded is not None and st.button("Import", key="import_schema"):
                if FormBuilderView._handle_import(store, uploaded.name, uploaded.getvalue(), strict):
                    st.rerun()

    @staticmethod
    def _container_choices(store: SchemaStore) -> List[str]:
        return [''] + [path for path, field in store.get_ordered_fields() if field.is_container and
                       (field.type == FieldType.OBJECT.value or field.items is not None)]

    @staticmethod
    def _render_palette(store: SchemaStore, controller: DragController) -> None:
        st.subheader("🧩 Fields")
        target = st.selectbox(
            "Add to",
            FormBuilderView._container_choices(store),
            format_func=lambda path: "Form (top level)" if not path else path,
            key="palette_target",
        )

        for category, blueprints in store.catalog.by_category().items():
            if not blueprints:
                continue
            st.caption(category.title())
            for blueprint in blueprints:
                if st.button(f"➕ {blueprint.name}", key=f"palette_{blueprint.key}",
                             help=blueprint.description, width='stretch'):
                    if FormBuilderView._add_from_palette(controller, blueprint.key, target):
                        st.rerun()

    @staticmethod
    def _render_canvas(store: SchemaStore, controller: DragController) -> None:
        st.subheader("📋 Form")
        fields = list(store.get_ordered_fields())
        if not fields:
            st.info("Add fields from the palette to start building the form.")
            return

        for path, field in fields:
            depth = len(split_path(path)) - 1
            selected = path == store.selected_path
            label = f"{'　' * depth}{'▶ ' if selected else ''}{field.title or leaf_key(path)} ({field.type})"
            if field.rule is not None:
                label += " 👁" if field.rule.enabled else " 🚫"

            col1, col2, col3, col4 = st.columns([6, 1, 1, 1])
            with col1:
                if st.button(label, key=f"select_{path}", width='stretch'):
                    if FormBuilderView._select_field(controller, path):
                        st.rerun()
            with col2:
                if st.button("🔼", key=f"move_up_{path}", help="Move field up"):
                    if FormBuilderView._move_field(store, controller, path, -1):
                        st.rerun()
            with col3:
                if st.button("🔽", key=f"move_down_{path}", help="Move field down"):
                    if FormBuilderView._move_field(store, controller, path, 1):
                        st.rerun()
            with col4:
                if st.button("🗑️", key=f"delete_{path}", help="Delete field and its children"):
                    if FormBuilderView._delete_field(store, path):
                        st.rerun()

        FormBuilderView._render_rule_tester(store)

    @staticmethod
    def _render_properties(store: SchemaStore, rule_editor: RuleEditor) -> None:
        st.subheader("⚙️ Properties")
        path = store.selected_path
        field = store.get_selected_field()
        if path is None or field is None:
            st.info("Select a field to edit its properties.")
            return

        st.caption(f"Path: {path}")
        with st.form(key=f"properties_{path}"):
            title = st.text_input("Title", value=field.title or "")
            description = st.text_area("Description", value=field.description or "")
            field_type = st.selectbox(
                "Type", FIELD_TYPES,
                index=FIELD_TYPES.index(field.type) if field.type in FIELD_TYPES else 0,
                disabled=field.is_container,
            )
            options_text = None
            if field.enum is not None:
                options_text = st.text_area(
                    "Options (one per line, label=value)",
                    value="\n".join(f"{option.label}={option.value}" for option in field.enum),
                )
            submitted = st.form_submit_button("Apply")

        if submitted:
            patch: Dict[str, Any] = {
                'title': title or None,
                'description': description or None,
                'type': field_type,
            }
            if options_text is not None:
                patch['enum'] = FormBuilderView._parse_options(options_text)
            ok, _ = FormBuilderView._run("Update field", lambda: store.update_field(path, patch))
            if ok:
                st.rerun()

        FormBuilderView._render_rule_editor(rule_editor, path)

    @staticmethod
    def _parse_options(text: str) -> List[Dict[str, Any]]:
        options = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            label, _, value = line.partition('=')
            options.append({'label': label.strip(), 'value': value.strip() if value else label.strip()})
        return options

    @staticmethod
    def _render_rule_editor(rule_editor: RuleEditor, path: str) -> None:
        st.divider()
        st.markdown("**👁 Conditional visibility**")

        rule = rule_editor.current_rule(path)
        field = rule_editor.store.get_field(path)
        enabled_toggle = st.checkbox("Use a rule for this field", value=rule is not None, key=f"rule_on_{path}")

        if enabled_toggle and rule is None:
            default = rule_editor.default_rule(path)
            if default is None:
                st.info("Add another field first: rules depend on another field's value.")
                return
            ok, _ = FormBuilderView._run("Add rule", lambda: rule_editor.apply_rule(path, default))
            if ok:
                st.rerun()
            return
        if not enabled_toggle:
            if rule is not None:
                ok, _ = FormBuilderView._run("Remove rule", lambda: rule_editor.apply_rule(path, None))
                if ok:
                    st.rerun()
            return

        for issue in (field.reactions.issues or []) if field.reactions else []:
            st.warning(ISSUE_MESSAGES.get(issue, issue))

        parents = rule_editor.available_parents(path)
        parent_values = [option.value for option in parents]
        if rule.parent_field not in parent_values:
            parent_values.insert(0, rule.parent_field)
        labels = {option.value: f"{option.label} ({option.value})" for option in parents}

        with st.form(key=f"rule_{path}"):
            parent_field = st.selectbox(
                "When field", parent_values, index=parent_values.index(rule.parent_field),
                format_func=lambda value: labels.get(value, f"{value} (missing)"),
            )
            conditions = list(CONDITION_LABELS)
            condition = st.selectbox("Condition", conditions, index=conditions.index(rule.condition),
                                     format_func=CONDITION_LABELS.get)

            target_value = rule.target_value
            parent_option = next((option for option in parents if option.value == parent_field), None)
            if parent_option is not None and parent_option.has_options:
                values = [option.value for option in parent_option.options]
                target_value = st.selectbox(
                    "Value (for equals / does not equal)", values,
                    index=values.index(target_value) if target_value in values else 0,
                )
            else:
                target_value = st.text_input("Value (for equals / does not equal)",
                                             value="" if target_value is None else str(target_value))

            actions = list(ACTION_LABELS)
            action = st.selectbox("Then", actions, index=actions.index(rule.action), format_func=ACTION_LABELS.get)
            enabled = st.checkbox("Enabled", value=rule.enabled)
            submitted = st.form_submit_button("Apply rule")

        if submitted:
            new_rule = ConditionalVisibilityRule(
                parent_field=parent_field,
                condition=condition,
                target_value=target_value,
                action=action,
                enabled=enabled,
            )
            ok, _ = FormBuilderView._run("Apply rule", lambda: rule_editor.apply_rule(path, new_rule))
            if ok:
                st.rerun()

        preview = rule_editor.preview(path)
        if preview:
            st.info(f"💬 {preview}")

    @staticmethod
    def _render_rule_tester(store: SchemaStore) -> None:
        """Try rules against sample values of the fields they depend on."""
        schema: SchemaProperty = store.schema
        dependencies = []
        for _, field in store.get_ordered_fields():
            if field.reactions is not None:
                for dependency in field.reactions.dependencies:
                    if dependency not in dependencies and resolve(schema, dependency) is not None:
                        dependencies.append(dependency)
        if not dependencies:
            return

        with st.expander("🧪 Test rules"):
            values: Dict[str, Any] = {}
            for dependency in dependencies:
                node = resolve(schema, dependency)
                if node.enum:
                    choices = [None] + node.enum_values()
                    values[dependency] = st.selectbox(dependency, choices, key=f"test_{dependency}")
                elif node.type == FieldType.BOOLEAN.value:
                    values[dependency] = st.checkbox(dependency, key=f"test_{dependency}")
                else:
                    values[dependency] = st.text_input(dependency, key=f"test_{dependency}")

            for path, state in resolve_field_states(schema, values).items():
                status = "visible" if state.visible else "hidden"
                if state.disabled:
                    status += ", disabled"
                st.markdown(f"- `{path}`: {status}")
