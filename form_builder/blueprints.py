"""
Field blueprint catalog for the form schema builder.
Provides the palette of field types a user can drop onto the canvas, either
from the built-in definitions or from a YAML catalog file.
"""

import logging
from pathlib import Path
from typing import Dict, Any, Iterable, Iterator, List, Optional, Union

import yaml
from pydantic import ValidationError

from form_builder.exceptions import UnknownBlueprintError
from form_builder.models import FieldBlueprint

logger = logging.getLogger(__name__)

FIELD_CATEGORIES = [
    {'key': 'layout', 'label': 'Layout & Structure', 'description': 'Sections and repeating groups'},
    {'key': 'form', 'label': 'Basic Form Fields', 'description': 'Standard input fields'},
    {'key': 'data', 'label': 'Business Entities', 'description': 'Entity reference selectors'},
    {'key': 'dictionary', 'label': 'Dictionary & References', 'description': 'Data dictionary fields'},
]

DEFAULT_BLUEPRINTS: List[Dict[str, Any]] = [
    {
        'key': 'section',
        'name': 'Section',
        'category': 'layout',
        'description': 'Collapsible group of related fields',
        'defaultSchema': {
            'type': 'object',
            'title': 'Section',
            'x-component': 'FormSection',
            'x-decorator': 'FormItem',
            'x-component-props': {'collapsible': True, 'defaultCollapsed': False},
            'properties': {},
        },
    },
    {
        'key': 'repeating-section',
        'name': 'Repeating Section',
        'category': 'layout',
        'description': 'Add multiple entries (e.g., witnesses, PPE items)',
        'defaultSchema': {
            'type': 'array',
            'title': 'Repeating Section',
            'x-component': 'ArrayField',
            'x-decorator': 'FormItem',
            'x-component-props': {'minItems': 0, 'maxItems': 10, 'addButtonText': 'Add Entry'},
            'items': {'type': 'object', 'properties': {}},
        },
    },
    {
        'key': 'label',
        'name': 'Label',
        'category': 'form',
        'description': 'Static text display',
        'defaultSchema': {
            'type': 'void',
            'x-component': 'FormText',
            'x-component-props': {'content': 'Static label text'},
        },
    },
    {
        'key': 'text',
        'name': 'Text Input',
        'category': 'form',
        'description': 'Single-line text input',
        'defaultSchema': {
            'type': 'string',
            'title': 'Text Field',
            'x-component': 'Input',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'textarea',
        'name': 'Text Area',
        'category': 'form',
        'description': 'Multi-line text input',
        'defaultSchema': {
            'type': 'string',
            'title': 'Text Area',
            'x-component': 'TextArea',
            'x-decorator': 'FormItem',
            'x-component-props': {'rows': 4},
        },
    },
    {
        'key': 'number',
        'name': 'Number',
        'category': 'form',
        'description': 'Numeric input field',
        'defaultSchema': {
            'type': 'number',
            'title': 'Number',
            'x-component': 'NumberPicker',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'select',
        'name': 'Select',
        'category': 'form',
        'description': 'Dropdown selection',
        'defaultSchema': {
            'type': 'string',
            'title': 'Select',
            'x-component': 'Select',
            'x-decorator': 'FormItem',
            'enum': [
                {'label': 'Option 1', 'value': 'option1'},
                {'label': 'Option 2', 'value': 'option2'},
                {'label': 'Option 3', 'value': 'option3'},
            ],
        },
    },
    {
        'key': 'radio',
        'name': 'Radio Group',
        'category': 'form',
        'description': 'Radio button selection',
        'defaultSchema': {
            'type': 'string',
            'title': 'Radio Group',
            'x-component': 'RadioGroup',
            'x-decorator': 'FormItem',
            'enum': [
                {'label': 'Option A', 'value': 'a'},
                {'label': 'Option B', 'value': 'b'},
                {'label': 'Option C', 'value': 'c'},
            ],
        },
    },
    {
        'key': 'checkbox',
        'name': 'Checkbox',
        'category': 'form',
        'description': 'Boolean checkbox toggle',
        'defaultSchema': {
            'type': 'boolean',
            'title': 'Checkbox',
            'x-component': 'Checkbox',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'date',
        'name': 'Date Picker',
        'category': 'form',
        'description': 'Date selection',
        'defaultSchema': {
            'type': 'string',
            'title': 'Date',
            'x-component': 'DatePicker',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'upload',
        'name': 'File Upload',
        'category': 'form',
        'description': 'File attachment upload',
        'defaultSchema': {
            'type': 'array',
            'title': 'File Upload',
            'x-component': 'Upload',
            'x-decorator': 'FormItem',
            'x-component-props': {'maxCount': 5, 'maxSize': 10 * 1024 * 1024},
        },
    },
    {
        'key': 'location-select',
        'name': 'Location',
        'category': 'data',
        'description': 'Hierarchical location tree selection',
        'defaultSchema': {
            'type': 'string',
            'title': 'Location',
            'x-component': 'LocationSelect',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'user-select',
        'name': 'User',
        'category': 'data',
        'description': 'Single user selection with search',
        'defaultSchema': {
            'type': 'string',
            'title': 'User',
            'x-component': 'UserSelect',
            'x-decorator': 'FormItem',
        },
    },
    {
        'key': 'dictionary-select',
        'name': 'Dictionary',
        'category': 'dictionary',
        'description': 'Configurable dictionary dropdown',
        'defaultSchema': {
            'type': 'string',
            'title': 'Dictionary',
            'x-component': 'DictionarySelect',
            'x-decorator': 'FormItem',
            'x-component-props': {'dictionaryCode': ''},
        },
    },
]


class BlueprintCatalog:
    """Read-only, ordered registry of field blueprints keyed by blueprint key."""

    def __init__(self, blueprints: Iterable[Union[FieldBlueprint, Dict[str, Any]]]):
        self._blueprints: Dict[str, FieldBlueprint] = {}
        for entry in blueprints:
            blueprint = entry if isinstance(entry, FieldBlueprint) else FieldBlueprint.model_validate(entry)
            if blueprint.key in self._blueprints:
                raise ValueError(f"Duplicate blueprint key: '{blueprint.key}'")
            self._blueprints[blueprint.key] = blueprint

    def __iter__(self) -> Iterator[FieldBlueprint]:
        return iter(list(self._blueprints.values()))

    def __len__(self) -> int:
        return len(self._blueprints)

    def __contains__(self, key: str) -> bool:
        return key in self._blueprints

    def keys(self) -> List[str]:
        return list(self._blueprints)

    def get(self, key: str) -> Optional[FieldBlueprint]:
        return self._blueprints.get(key)

    def require(self, key: str) -> FieldBlueprint:
        """Get a blueprint or raise UnknownBlueprintError."""
        blueprint = self._blueprints.get(key)
        if blueprint is None:
            raise UnknownBlueprintError(key)
        return blueprint

    def by_category(self) -> Dict[str, List[FieldBlueprint]]:
        """Group blueprints by category, keeping catalog order inside each group."""
        grouped: Dict[str, List[FieldBlueprint]] = {category['key']: [] for category in FIELD_CATEGORIES}
        for blueprint in self._blueprints.values():
            grouped.setdefault(blueprint.category, []).append(blueprint)
        return grouped


def get_default_catalog() -> BlueprintCatalog:
    """Return a catalog built from the built-in blueprints."""
    return BlueprintCatalog(DEFAULT_BLUEPRINTS)


def load_blueprint_catalog(catalog_path: Optional[Union[str, Path]]) -> BlueprintCatalog:
    """
    Load a blueprint catalog from a YAML file.

    The file holds either a list of blueprints or a mapping with a
    ``blueprints`` list. Any problem with the file is logged and the built-in
    catalog is returned instead.

    Args:
        catalog_path: Path to the YAML catalog, or None for the built-in catalog

    Returns:
        BlueprintCatalog instance
    """
    if not catalog_path:
        return get_default_catalog()

    path = Path(catalog_path)
    if not path.exists():
        logger.warning(f"Blueprint catalog not found: {path}, using built-in blueprints")
        return get_default_catalog()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        if isinstance(data, dict):
            data = data.get('blueprints')

        if not isinstance(data, list) or not data:
            logger.error(f"Blueprint catalog {path} must contain a non-empty list of blueprints")
            return get_default_catalog()

        catalog = BlueprintCatalog(data)
        logger.info(f"Loaded {len(catalog)} blueprints from {path}")
        return catalog

    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in blueprint catalog {path}: {e}")
    except (ValidationError, ValueError) as e:
        logger.error(f"Invalid blueprint definition in {path}: {e}")
    except (IOError, OSError) as e:
        logger.error(f"Failed to read blueprint catalog {path}: {e}")

    logger.info("Using built-in blueprints")
    return get_default_catalog()
