"""
Schema store for the form schema builder.
Single writer of the schema tree: field CRUD, reordering, selection, and a
bounded linear undo/redo history over immutable snapshots.
"""

import logging
from typing import Callable, Dict, Any, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from form_builder import schema_io
from form_builder.blueprints import BlueprintCatalog, get_default_catalog
from form_builder.diff_utils import (
    calculate_schema_diff,
    changed_fields,
    format_changes,
    get_change_summary,
    has_changes,
)
from form_builder.exceptions import (
    DanglingReferenceError,
    FormBuilderError,
    InvalidPatchError,
    InvalidTargetError,
    NotFoundError,
    OrderMismatchError,
    SelfReferenceError,
    log_error_with_context,
)
from form_builder.models import FieldBlueprint, HistoryEntry, ReactionIssue, SchemaProperty, empty_schema
from form_builder.rule_compiler import disable_reaction
from form_builder.schema_tree import (
    OrderedFields,
    count_nodes,
    generate_unique_key,
    get_children,
    insert_node,
    is_within,
    join_path,
    normalize_path,
    ordered_children,
    remove_node,
    reorder_children,
    replace_node,
    resolve,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_SIZE = 50

# Attributes that change the tree shape; they have dedicated operations
STRUCTURAL_KEYS = {'properties', 'items', 'x-index', 'order'}
PATCH_ALIASES = {'reactions': 'x-reactions'}

EVENT_SCHEMA = 'schema'
EVENT_SELECTION = 'selection'
EVENT_HISTORY = 'history'
EVENT_SAVED = 'saved'

Listener = Callable[[str, 'SchemaStore'], None]
_UNCHANGED = object()


class SchemaStore:
    """
    Owns one schema document, its selection and its edit history.

    Every mutating call validates first and either raises with the store
    unchanged or applies the change and records exactly one history entry
    before returning.
    """

    def __init__(self, catalog: Optional[BlueprintCatalog] = None,
                 max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
                 schema: Optional[SchemaProperty] = None):
        if max_history_size < 1:
            raise ValueError("max_history_size must be at least 1")

        self.catalog = catalog or get_default_catalog()
        self.max_history_size = max_history_size

        self._schema = schema if schema is not None else empty_schema()
        self._saved_schema = self._schema
        self._history: List[HistoryEntry] = []
        self._cursor = 0
        self._selected_path: Optional[str] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def schema(self) -> SchemaProperty:
        return self._schema

    @property
    def selected_path(self) -> Optional[str]:
        return self._selected_path

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def cursor(self) -> int:
        """Number of history entries currently applied."""
        return self._cursor

    def get_field(self, path: str) -> Optional[SchemaProperty]:
        path = normalize_path(path)
        return resolve(self._schema, path) if path else None

    def get_selected_field(self) -> Optional[SchemaProperty]:
        if self._selected_path is None:
            return None
        return self.get_field(self._selected_path)

    def get_ordered_fields(self, path: Optional[str] = None, recursive: bool = True) -> OrderedFields:
        """
        Ordered ``(path, field)`` view of the schema or of one container.

        The view is taken over the current snapshot; later mutations do not
        affect it.

        Raises:
            NotFoundError: If ``path`` does not resolve
        """
        base_path = normalize_path(path)
        node = resolve(self._schema, base_path)
        if node is None:
            raise NotFoundError(base_path)
        return OrderedFields(node, base_path, recursive)

    # ------------------------------------------------------------------
    # Field operations
    # ------------------------------------------------------------------

    def add_field(self, blueprint: Union[FieldBlueprint, str],
                  target_parent_path: Optional[str] = None,
                  index: Optional[int] = None) -> str:
        """
        Create a field from a blueprint inside a container.

        Args:
            blueprint: Blueprint or blueprint key from the store's catalog
            target_parent_path: Object or array field receiving the new field (root when omitted)
            index: Position among the ordered siblings (end when omitted)

        Returns:
            Path of the new field, which also becomes the selection

        Raises:
            UnknownBlueprintError: If a blueprint key is not in the catalog
            InvalidTargetError: If the target is not an object/array field
        """
        if isinstance(blueprint, str):
            try:
                blueprint = self.catalog.require(blueprint)
            except FormBuilderError as e:
                log_error_with_context(e, "add field")
                raise

        parent = normalize_path(target_parent_path)
        container = resolve(self._schema, parent)
        if container is None:
            raise self._reject(InvalidTargetError(parent, "target does not exist"), "add field")
        if not container.is_container:
            raise self._reject(
                InvalidTargetError(parent, f"'{container.type}' fields cannot hold other fields"), "add field"
            )

        key = generate_unique_key(blueprint.key.replace('-', '_'), list(get_children(container)))
        schema = insert_node(self._schema, parent, key, blueprint.build_field(), index)
        path = join_path(parent, key)

        self._commit(f"Add field '{path}'", schema, selection=path)
        return path

    def update_field(self, path: str, patch: Dict[str, Any]) -> None:
        """
        Merge ``patch`` into the field at ``path``.

        Top-level attributes are replaced wholesale: a patch value for
        ``x-reactions`` or any ``x-*`` metadata key replaces the stored value
        entirely instead of being merged into it. A ``None`` value removes the
        attribute. Structural attributes (children and order) are rejected.

        Raises:
            NotFoundError: If the path does not resolve
            InvalidPatchError: If the patch is structural or produces an invalid field
            SelfReferenceError: If the patch stores a rule that depends on the field itself
            DanglingReferenceError: If the patch stores an enabled rule on a missing field
        """
        path = normalize_path(path)
        if not path:
            raise self._reject(InvalidPatchError('', "the root schema cannot be patched"), "update field")
        node = self._require(path, "update field")

        structural = sorted(key for key in patch if key in STRUCTURAL_KEYS)
        if structural:
            raise self._reject(
                InvalidPatchError(path, "structural attributes are changed with add, delete or reorder", structural),
                "update field",
            )

        updated = self._merge_patch(path, node, patch)
        self._check_rule(path, updated)

        self._commit(f"Update field '{path}'", replace_node(self._schema, path, updated))

    def delete_field(self, path: str) -> int:
        """
        Delete a field and its descendants.

        Rules elsewhere that depend on a deleted field are disabled and flagged
        in the same history entry.

        Returns:
            Number of removed nodes

        Raises:
            NotFoundError: If the path does not resolve
        """
        path = normalize_path(path)
        if not path:
            raise self._reject(NotFoundError('', "The root schema cannot be deleted"), "delete field")
        node = self._require(path, "delete field")

        removed = count_nodes(node)
        schema = remove_node(self._schema, path)

        disabled = []
        for field_path, field in list(OrderedFields(schema)):
            rule = field.rule
            if rule is None or not rule.enabled or not rule.parent_field:
                continue
            if is_within(normalize_path(rule.parent_field), path):
                flagged = disable_reaction(field.reactions, ReactionIssue.DANGLING_REFERENCE.value)
                schema = replace_node(schema, field_path, field.model_copy(update={'reactions': flagged}))
                disabled.append(field_path)

        if disabled:
            logger.info(f"Disabled {len(disabled)} rule(s) that depended on '{path}': {disabled}")

        selection = _UNCHANGED
        if self._selected_path is not None and is_within(self._selected_path, path):
            selection = None

        self._commit(f"Delete field '{path}'", schema, selection=selection)
        return removed

    def reorder_fields(self, parent_path: Optional[str], ordered_keys: Sequence[str]) -> None:
        """
        Rewrite sibling order to follow ``ordered_keys``.

        Raises:
            NotFoundError: If the parent does not resolve
            InvalidTargetError: If the parent cannot hold fields
            OrderMismatchError: If ``ordered_keys`` is not a permutation of the current keys
        """
        parent = normalize_path(parent_path)
        container = resolve(self._schema, parent)
        if container is None:
            raise self._reject(NotFoundError(parent), "reorder fields")
        if not container.is_container:
            raise self._reject(InvalidTargetError(parent, "field has no children to reorder"), "reorder fields")

        requested = list(ordered_keys)
        current = [key for key, _ in ordered_children(container)]

        duplicates = sorted({key for key in requested if requested.count(key) > 1})
        missing = [key for key in current if key not in requested]
        unexpected = [key for key in dict.fromkeys(requested) if key not in current]
        if duplicates or missing or unexpected:
            raise self._reject(OrderMismatchError(parent, missing, unexpected, duplicates), "reorder fields")

        self._commit(f"Reorder fields in '{parent or '<root>'}'", reorder_children(self._schema, parent, requested))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_field(self, path: Optional[str]) -> None:
        """
        Select a field, or clear the selection with None.

        Raises:
            NotFoundError: If the path does not resolve
        """
        if path is None:
            self.clear_selection()
            return

        path = normalize_path(path)
        if not path:
            raise NotFoundError('', "The root schema cannot be selected")
        self._require(path, "select field")
        self._set_selection(path)

    def clear_selection(self) -> None:
        self._set_selection(None)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._history)

    def undo(self) -> bool:
        """Step back one history entry. Returns False at the start of history."""
        if not self.can_undo():
            return False
        self._cursor -= 1
        entry = self._history[self._cursor]
        logger.info(f"Undo: {entry.action}")
        self._move_to(entry.before)
        return True

    def redo(self) -> bool:
        """Re-apply the next history entry. Returns False at the head of history."""
        if not self.can_redo():
            return False
        entry = self._history[self._cursor]
        self._cursor += 1
        logger.info(f"Redo: {entry.action}")
        self._move_to(entry.after)
        return True

    # ------------------------------------------------------------------
    # Whole-document operations
    # ------------------------------------------------------------------

    def set_schema(self, schema: SchemaProperty, action: str = "Replace schema") -> None:
        """Replace the whole document as one undoable step."""
        selection = _UNCHANGED
        if self._selected_path is not None and resolve(schema, self._selected_path) is None:
            selection = None
        self._commit(action, schema, selection=selection)

    def reset(self, schema: Optional[SchemaProperty] = None) -> None:
        """Start over with a fresh document and an empty history."""
        self._schema = schema if schema is not None else empty_schema()
        self._saved_schema = self._schema
        self._history = []
        self._cursor = 0
        self._selected_path = None
        logger.info("Schema store reset")
        self._notify(EVENT_SCHEMA, EVENT_HISTORY, EVENT_SELECTION, EVENT_SAVED)

    def import_schema(self, data: Dict[str, Any], strict: bool = False,
                      source: Optional[str] = None) -> List[str]:
        """
        Validate and load an exported document as one undoable step.

        Importing into a store with no history also marks the document saved.

        Returns:
            Import warnings (for example rules disabled because of missing fields)

        Raises:
            SchemaImportError: Listing every violation found
        """
        try:
            schema, warnings = schema_io.import_schema(data, strict=strict, source=source)
        except FormBuilderError as e:
            log_error_with_context(e, "import schema")
            raise

        initial_load = not self._history
        self.set_schema(schema, f"Import schema{f' from {source}' if source else ''}")
        if initial_load:
            self.mark_saved()

        for warning in warnings:
            logger.warning(f"Import warning: {warning}")
        return warnings

    def export_schema(self) -> Dict[str, Any]:
        return schema_io.export_schema(self._schema)

    # ------------------------------------------------------------------
    # Saving and change tracking
    # ------------------------------------------------------------------

    @property
    def has_unsaved_changes(self) -> bool:
        if self._schema is self._saved_schema:
            return False
        return self._schema != self._saved_schema

    def mark_saved(self) -> None:
        self._saved_schema = self._schema
        self._notify(EVENT_SAVED)

    def save(self, callback: Callable[[Dict[str, Any]], Any]) -> Any:
        """
        Hand the exported document to ``callback`` and mark it saved.

        Exceptions raised by the callback propagate and leave the document unsaved.

        Returns:
            Whatever the callback returned
        """
        result = callback(self.export_schema())
        self.mark_saved()
        logger.info("Schema saved")
        return result

    def unsaved_change_summary(self) -> Dict[str, Any]:
        """Describe what changed since the last save."""
        diff = calculate_schema_diff(self._saved_schema, self._schema)
        return {
            'has_changes': has_changes(diff),
            'summary': get_change_summary(diff),
            'changes': format_changes(diff),
            'fields': changed_fields(diff),
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register ``listener(event, store)``; returns a function that unsubscribes it.

        Events: ``schema``, ``selection``, ``history``, ``saved``.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _notify(self, *events: str) -> None:
        for listener in list(self._listeners):
            for event in events:
                try:
                    listener(event, self)
                except Exception:
                    logger.exception(f"Schema store listener failed on '{event}' event")

    def _reject(self, error: FormBuilderError, operation: str) -> FormBuilderError:
        log_error_with_context(error, operation)
        return error

    def _require(self, path: str, operation: str) -> SchemaProperty:
        node = resolve(self._schema, path)
        if node is None:
            raise self._reject(NotFoundError(path), operation)
        return node

    def _set_selection(self, path: Optional[str]) -> None:
        if path == self._selected_path:
            return
        self._selected_path = path
        logger.debug(f"Selection changed: {path}")
        self._notify(EVENT_SELECTION)

    def _commit(self, action: str, schema: SchemaProperty, selection: Any = _UNCHANGED) -> None:
        # A new mutation discards the redo tail
        del self._history[self._cursor:]
        self._history.append(HistoryEntry(action=action, before=self._schema, after=schema))
        if len(self._history) > self.max_history_size:
            del self._history[:len(self._history) - self.max_history_size]
        self._cursor = len(self._history)
        self._schema = schema
        logger.info(action)

        events = [EVENT_SCHEMA, EVENT_HISTORY]
        if selection is not _UNCHANGED and selection != self._selected_path:
            self._selected_path = selection
            events.append(EVENT_SELECTION)
        self._notify(*events)

    def _move_to(self, schema: SchemaProperty) -> None:
        self._schema = schema
        events = [EVENT_SCHEMA, EVENT_HISTORY]
        if self._selected_path is not None and resolve(schema, self._selected_path) is None:
            self._selected_path = None
            events.append(EVENT_SELECTION)
        self._notify(*events)

    def _merge_patch(self, path: str, node: SchemaProperty, patch: Dict[str, Any]) -> SchemaProperty:
        data = node.model_dump(by_alias=True, exclude={'properties', 'items'})
        for key, value in patch.items():
            key = PATCH_ALIASES.get(key, key)
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value

        try:
            updated = SchemaProperty.model_validate(data)
        except ValidationError as e:
            raise self._reject(
                InvalidPatchError(path, f"patch produces an invalid field ({e.error_count()} error(s))", sorted(patch)),
                "update field",
            ) from e

        if updated.type == node.type:
            return updated.model_copy(update={'properties': node.properties, 'items': node.items})
        if get_children(node):
            raise self._reject(
                InvalidPatchError(path, "cannot change the type of a field that has children", ['type']),
                "update field",
            )
        return updated

    def _check_rule(self, path: str, node: SchemaProperty) -> None:
        rule = node.rule
        if rule is None or not rule.enabled:
            return
        parent = normalize_path(rule.parent_field)
        if parent == path:
            raise self._reject(SelfReferenceError(path), "update field")
        if not parent or resolve(self._schema, parent) is None:
            raise self._reject(DanglingReferenceError(path, rule.parent_field), "update field")
