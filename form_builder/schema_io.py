"""
Schema persistence boundary for the form schema builder.
Exports the schema tree to a plain dictionary, encodes it as YAML or JSON,
and imports documents back with structural validation that reports every
violation at once.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Tuple, Union

import yaml
from pydantic import ValidationError

from form_builder.exceptions import SchemaImportError
from form_builder.models import (
    CONTAINER_TYPES,
    ConditionalVisibilityRule,
    FieldType,
    ReactionIssue,
    SchemaProperty,
)
from form_builder.rule_compiler import disable_reaction
from form_builder.schema_tree import (
    OrderedFields,
    get_children,
    is_valid_key,
    join_path,
    normalize_path,
    ordered_children,
    renumber,
    replace_node,
    resolve,
    with_children,
)

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('yaml', 'json')
SUPPORTED_FIELD_TYPES = {field_type.value for field_type in FieldType}


# =============================================================================
# Export
# =============================================================================

def export_schema(schema: SchemaProperty) -> Dict[str, Any]:
    """Serialize the schema tree to a plain dictionary."""
    return schema.model_dump(mode='json', by_alias=True)


def dump_schema(schema: Union[SchemaProperty, Dict[str, Any]], fmt: str = 'yaml') -> str:
    """
    Encode a schema as YAML or JSON text.

    Args:
        schema: Schema tree or an already exported dictionary
        fmt: 'yaml' or 'json'

    Returns:
        Encoded text
    """
    data = export_schema(schema) if isinstance(schema, SchemaProperty) else schema
    if fmt == 'json':
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == 'yaml':
        return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True, indent=2)
    raise ValueError(f"Unsupported schema format: {fmt}")


def format_for_path(path: Union[str, Path]) -> str:
    return 'json' if Path(path).suffix.lower() == '.json' else 'yaml'


# =============================================================================
# Text decoding with duplicate-key detection
# =============================================================================

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that records duplicate mapping keys instead of keeping the last one."""

    def __init__(self, stream):
        super().__init__(stream)
        self.duplicate_keys: List[str] = []


def _construct_unique_mapping(loader: _UniqueKeyLoader, node, deep: bool = False):
    seen = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        try:
            if key in seen:
                loader.duplicate_keys.append(
                    f"Duplicate key '{key}' at line {key_node.start_mark.line + 1}"
                )
            seen.add(key)
        except TypeError:
            continue
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping)


def load_schema_text(text: str, fmt: str = 'yaml', source: Optional[str] = None) -> Dict[str, Any]:
    """
    Decode schema text, reporting duplicate keys rather than silently collapsing them.

    Raises:
        SchemaImportError: On syntax errors or duplicate keys
    """
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported schema format: {fmt}")

    if fmt == 'json':
        duplicates: List[str] = []

        def _pairs_hook(pairs):
            seen = set()
            for key, _ in pairs:
                if key in seen:
                    duplicates.append(f"Duplicate key '{key}'")
                seen.add(key)
            return dict(pairs)

        try:
            data = json.loads(text, object_pairs_hook=_pairs_hook)
        except json.JSONDecodeError as e:
            raise SchemaImportError([f"Invalid JSON: {e}"], source) from e
    else:
        loader = _UniqueKeyLoader(text)
        try:
            data = loader.get_single_data()
            duplicates = loader.duplicate_keys
        except yaml.YAMLError as e:
            raise SchemaImportError([f"Invalid YAML: {e}"], source) from e
        finally:
            loader.dispose()

    if duplicates:
        raise SchemaImportError(duplicates, source)
    if not isinstance(data, dict):
        raise SchemaImportError(["Schema document must be a mapping"], source)
    return data


# =============================================================================
# Validation and import
# =============================================================================

def _node_children(node: Dict[str, Any]) -> Any:
    if node.get('type') == FieldType.ARRAY.value:
        items = node.get('items')
        return items.get('properties') if isinstance(items, dict) else None
    return node.get('properties')


def _validate_node(path: str, node: Any, errors: List[str], rules: List[Tuple[str, Dict[str, Any]]],
                   paths: Set[str]) -> None:
    label = path or '<root>'
    if not isinstance(node, dict):
        errors.append(f"{label}: field definition must be a mapping")
        return

    field_type = node.get('type', FieldType.STRING.value)
    if field_type not in SUPPORTED_FIELD_TYPES:
        errors.append(f"{label}: unsupported field type '{field_type}'")

    if 'x-index' in node and (not isinstance(node['x-index'], int) or isinstance(node['x-index'], bool)):
        errors.append(f"{label}: x-index must be an integer")

    if 'enum' in node and not isinstance(node['enum'], list):
        errors.append(f"{label}: enum must be a list of options")

    if 'properties' in node and field_type != FieldType.OBJECT.value:
        errors.append(f"{label}: only object fields may define 'properties'")
    if 'items' in node:
        if field_type != FieldType.ARRAY.value:
            errors.append(f"{label}: only array fields may define 'items'")
        elif not isinstance(node['items'], dict):
            errors.append(f"{label}: 'items' must be a mapping")

    reactions = node.get('x-reactions')
    if reactions is not None:
        if not isinstance(reactions, dict):
            errors.append(f"{label}: x-reactions must be a mapping")
        elif '_conditionalVisibility' in reactions:
            rule = reactions['_conditionalVisibility']
            if isinstance(rule, dict):
                rules.append((path, rule))
            else:
                errors.append(f"{label}: conditional visibility rule must be a mapping")

    if field_type not in CONTAINER_TYPES:
        return

    children = _node_children(node)
    if children is None:
        return
    if not isinstance(children, dict):
        errors.append(f"{label}: child fields must be a mapping")
        return

    for key, child in children.items():
        if not is_valid_key(key):
            errors.append(
                f"{label}: invalid field key '{key}' (use letters, digits and underscores, not starting with a digit)"
            )
            continue
        child_path = join_path(path, key)
        paths.add(child_path)
        _validate_node(child_path, child, errors, rules, paths)


def validate_schema_data(data: Any, strict: bool = False) -> Tuple[List[str], List[str]]:
    """
    Validate the structure of an exported schema document.

    Args:
        data: Decoded schema document
        strict: Report dangling rule references as errors instead of warnings

    Returns:
        Tuple of (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(data, dict):
        return ["Schema document must be a mapping"], warnings
    if data.get('type', FieldType.OBJECT.value) != FieldType.OBJECT.value:
        errors.append(f"<root>: root schema must be of type 'object', got '{data.get('type')}'")

    rules: List[Tuple[str, Dict[str, Any]]] = []
    paths: Set[str] = set()
    _validate_node('', data, errors, rules, paths)

    for field_path, raw_rule in rules:
        try:
            rule = ConditionalVisibilityRule.model_validate(raw_rule)
        except ValidationError as e:
            for err in e.errors():
                location = '.'.join(str(part) for part in err['loc'])
                errors.append(f"{field_path}: invalid rule {location}: {err['msg']}")
            continue

        parent = normalize_path(rule.parent_field)
        if parent == field_path:
            errors.append(f"{field_path}: rule cannot depend on its own field")
        elif rule.enabled and parent not in paths:
            message = f"{field_path}: rule references missing field '{rule.parent_field}'"
            if strict:
                errors.append(message)
            else:
                warnings.append(message + " (rule disabled)")

    if not errors:
        try:
            SchemaProperty.model_validate(data)
        except ValidationError as e:
            for err in e.errors():
                location = '.'.join(str(part) for part in err['loc'])
                errors.append(f"{location or '<root>'}: {err['msg']}")

    return errors, warnings


def normalize_orders(node: SchemaProperty) -> SchemaProperty:
    """Renumber every sibling group 0..n-1, keeping the existing relative order."""
    if not node.is_container:
        return node
    entries = [(key, normalize_orders(child)) for key, child in ordered_children(node)]
    if not entries and not get_children(node):
        return node
    return with_children(node, renumber(entries))


def disable_dangling_rules(schema: SchemaProperty) -> SchemaProperty:
    """Disable and flag every enabled rule whose parent field does not resolve."""
    for path, field in list(OrderedFields(schema)):
        rule = field.rule
        if rule is None or not rule.enabled:
            continue
        if resolve(schema, normalize_path(rule.parent_field)) is None or not rule.parent_field:
            logger.warning(f"Disabling rule on '{path}': parent field '{rule.parent_field}' not found")
            flagged = disable_reaction(field.reactions, ReactionIssue.DANGLING_REFERENCE.value)
            schema = replace_node(schema, path, field.model_copy(update={'reactions': flagged}))
    return schema


def import_schema(data: Any, strict: bool = False,
                  source: Optional[str] = None) -> Tuple[SchemaProperty, List[str]]:
    """
    Validate and build a schema tree from an exported document.

    Args:
        data: Decoded schema document
        strict: Treat dangling rule references as violations
        source: Optional description of where the document came from

    Returns:
        Tuple of (schema, warnings)

    Raises:
        SchemaImportError: Listing every structural violation found
    """
    errors, warnings = validate_schema_data(data, strict=strict)
    if errors:
        logger.warning(f"Schema import rejected with {len(errors)} violation(s)")
        raise SchemaImportError(errors, source)

    schema = SchemaProperty.model_validate(data)
    schema = normalize_orders(schema)
    schema = disable_dangling_rules(schema)

    logger.info(f"Imported schema with {len(OrderedFields(schema).paths())} field(s)")
    return schema, warnings


# =============================================================================
# Files
# =============================================================================

def save_schema_file(path: Union[str, Path], schema: Union[SchemaProperty, Dict[str, Any]],
                     fmt: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """
    Save a schema to a YAML or JSON file.

    The file is written to a temporary sibling first and moved into place.

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    schema_path = Path(path)
    fmt = fmt or format_for_path(schema_path)

    try:
        schema_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = schema_path.with_suffix(f"{schema_path.suffix}.tmp")
        with open(temp_path, 'w', encoding='utf-8') as f:
            f.write(dump_schema(schema, fmt))
        os.replace(temp_path, schema_path)
        logger.info(f"Saved schema to {schema_path}")
        return True, None
    except PermissionError:
        error_msg = f"Permission denied: Cannot write to {schema_path}"
    except OSError as e:
        error_msg = f"Cannot write schema file {schema_path}: {e}"

    logger.error(f"Save failed for {schema_path}: {error_msg}")
    return False, error_msg


def load_schema_file(path: Union[str, Path], strict: bool = False) -> Tuple[SchemaProperty, List[str]]:
    """
    Load and import a schema file.

    Raises:
        SchemaImportError: If the file cannot be read or fails validation
    """
    schema_path = Path(path)
    try:
        with open(schema_path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (IOError, OSError) as e:
        raise SchemaImportError([f"Cannot read {schema_path}: {e}"], str(schema_path)) from e

    data = load_schema_text(text, format_for_path(schema_path), source=str(schema_path))
    return import_schema(data, strict=strict, source=str(schema_path))
