"""
Diff utilities for the form schema builder.
Compares two schema snapshots with DeepDiff and turns the result into change
counts and readable lines keyed by field path, for unsaved-change summaries
and history labels.
"""

import logging
import re
from typing import Dict, Any, List, Optional, Union

from deepdiff import DeepDiff

from form_builder.models import SchemaProperty
from form_builder.schema_io import export_schema
from form_builder.schema_tree import join_path

logger = logging.getLogger(__name__)

SchemaLike = Union[SchemaProperty, Dict[str, Any]]

CHANGE_TYPES = [
    'values_changed',
    'dictionary_item_added',
    'dictionary_item_removed',
    'iterable_item_added',
    'iterable_item_removed',
    'type_changes',
]

_PATH_TOKEN_PATTERN = re.compile(r"\['([^']*)'\]|\[(\d+)\]")


def _as_dict(schema: Optional[SchemaLike]) -> Dict[str, Any]:
    if schema is None:
        return {}
    if isinstance(schema, SchemaProperty):
        return export_schema(schema)
    return schema


def calculate_schema_diff(before: Optional[SchemaLike], after: Optional[SchemaLike]) -> Dict[str, Any]:
    """
    Calculate differences between two schema snapshots.

    Both sides are compared in their exported form, so renderer metadata and
    compiled reactions are included.

    Args:
        before: Earlier schema (model or exported dict)
        after: Later schema (model or exported dict)

    Returns:
        DeepDiff result as a dictionary keyed by change type
    """
    try:
        diff = DeepDiff(_as_dict(before), _as_dict(after), verbose_level=2)
        return diff.to_dict() if hasattr(diff, 'to_dict') else dict(diff)
    except Exception as e:
        logger.error(f"Error calculating schema diff: {e}", exc_info=True)
        return {}


def has_changes(diff: Dict[str, Any]) -> bool:
    """
    Check if there are any changes in the diff.

    Args:
        diff: Diff dictionary from calculate_schema_diff

    Returns:
        True if there are changes, False otherwise
    """
    if not diff:
        return False
    return any(change_type in diff and diff[change_type] for change_type in CHANGE_TYPES)


def get_change_summary(diff: Dict[str, Any]) -> Dict[str, int]:
    """
    Get a summary of changes by type.

    Args:
        diff: Diff dictionary from calculate_schema_diff

    Returns:
        Dictionary with change counts by type
    """
    summary = {
        'modified': len(diff.get('values_changed', {})),
        'added': len(diff.get('dictionary_item_added', {})) + len(diff.get('iterable_item_added', {})),
        'removed': len(diff.get('dictionary_item_removed', {})) + len(diff.get('iterable_item_removed', {})),
        'type_changed': len(diff.get('type_changes', {})),
    }
    summary['total'] = sum(summary.values())
    return summary


def split_diff_path(path: str) -> Dict[str, str]:
    """
    Split a DeepDiff path into the field path and the attribute inside that field.

    ``root['properties']['address']['properties']['city']['title']`` gives
    ``{'field': 'address.city', 'attribute': 'title'}``. Array children are
    reached through ``items.properties``.
    """
    tokens = [key if key else index for key, index in _PATH_TOKEN_PATTERN.findall(str(path))]

    field_keys: List[str] = []
    position = 0
    while position < len(tokens):
        token = tokens[position]
        if token == 'properties' and position + 1 < len(tokens):
            field_keys.append(tokens[position + 1])
            position += 2
        elif (token == 'items' and position + 2 < len(tokens)
              and tokens[position + 1] == 'properties'):
            field_keys.append(tokens[position + 2])
            position += 3
        else:
            break

    return {
        'field': join_path(*field_keys),
        'attribute': '.'.join(tokens[position:]),
    }


def _describe(path: str) -> str:
    parts = split_diff_path(path)
    field = parts['field'] or '<root>'
    return f"{field} ({parts['attribute']})" if parts['attribute'] else field


def format_changes(diff: Dict[str, Any]) -> List[str]:
    """
    Describe each change as one readable line.

    Args:
        diff: Diff dictionary from calculate_schema_diff

    Returns:
        List of lines such as ``Modified name (title): 'Name' -> 'Full name'``
    """
    lines: List[str] = []

    for path, change in diff.get('values_changed', {}).items():
        lines.append(f"Modified {_describe(path)}: {change.get('old_value')!r} -> {change.get('new_value')!r}")
    for path, change in diff.get('type_changes', {}).items():
        lines.append(f"Changed type of {_describe(path)}: {change.get('old_value')!r} -> {change.get('new_value')!r}")
    for path in diff.get('dictionary_item_added', {}):
        lines.append(f"Added {_describe(path)}")
    for path in diff.get('dictionary_item_removed', {}):
        lines.append(f"Removed {_describe(path)}")
    for path in diff.get('iterable_item_added', {}):
        lines.append(f"Added item to {_describe(path)}")
    for path in diff.get('iterable_item_removed', {}):
        lines.append(f"Removed item from {_describe(path)}")

    return lines


def changed_fields(diff: Dict[str, Any]) -> List[str]:
    """Field paths touched by a diff, in first-seen order. The root is reported as ''."""
    fields: List[str] = []
    for change_type in CHANGE_TYPES:
        for path in diff.get(change_type, {}):
            field = split_diff_path(path)['field']
            if field not in fields:
                fields.append(field)
    return fields
