"""
Unit tests for the field blueprint catalog.
"""

import pytest
from pydantic import ValidationError

from form_builder.blueprints import (
    FIELD_CATEGORIES,
    BlueprintCatalog,
    get_default_catalog,
    load_blueprint_catalog,
)
from form_builder.exceptions import UnknownBlueprintError
from form_builder.models import FieldBlueprint


class TestBlueprintCatalog:
    """Test cases for the built-in catalog."""

    def test_default_catalog_contents(self):
        catalog = get_default_catalog()

        assert len(catalog) == 14
        assert 'text' in catalog
        assert catalog.keys()[:2] == ['section', 'repeating-section']
        assert all(isinstance(blueprint, FieldBlueprint) for blueprint in catalog)

    def test_require_unknown_key(self):
        with pytest.raises(UnknownBlueprintError):
            get_default_catalog().require('hologram')
        assert get_default_catalog().get('hologram') is None

    def test_by_category_covers_every_category(self):
        grouped = get_default_catalog().by_category()

        assert list(grouped)[:len(FIELD_CATEGORIES)] == [category['key'] for category in FIELD_CATEGORIES]
        assert [blueprint.key for blueprint in grouped['layout']] == ['section', 'repeating-section']
        assert [blueprint.key for blueprint in grouped['dictionary']] == ['dictionary-select']

    def test_duplicate_keys_rejected(self):
        with pytest.raises(ValueError):
            BlueprintCatalog([{'key': 'a', 'name': 'A'}, {'key': 'a', 'name': 'Again'}])

    def test_invalid_default_schema_rejected(self):
        with pytest.raises(ValidationError):
            FieldBlueprint(key='bad', name='Bad', defaultSchema={'type': 'widget'})

    def test_build_field_drops_position_and_copies_defaults(self):
        blueprint = FieldBlueprint(key='x', name='X', defaultSchema={
            'type': 'string', 'x-index': 4, 'x-component-props': {'rows': 2},
        })

        field = blueprint.build_field()

        assert field.order is None
        field.model_extra['x-component-props']['rows'] = 9
        assert blueprint.default_schema['x-component-props'] == {'rows': 2}

    def test_containers_build_with_empty_children(self):
        catalog = get_default_catalog()

        assert catalog.require('section').build_field().properties == {}
        assert catalog.require('repeating-section').build_field().items.properties == {}


class TestLoadBlueprintCatalog:
    """Test cases for loading catalogs from YAML."""

    def test_none_gives_default(self):
        assert load_blueprint_catalog(None).keys() == get_default_catalog().keys()

    def test_missing_file_gives_default(self, tmp_path):
        assert len(load_blueprint_catalog(tmp_path / 'missing.yaml')) == 14

    def test_list_file(self, tmp_path):
        path = tmp_path / 'catalog.yaml'
        path.write_text(
            "- key: rating\n"
            "  name: Rating\n"
            "  defaultSchema:\n"
            "    type: integer\n"
            "    title: Rating\n",
            encoding='utf-8',
        )

        catalog = load_blueprint_catalog(path)

        assert catalog.keys() == ['rating']
        assert catalog.require('rating').build_field().type == 'integer'

    def test_mapping_file(self, tmp_path):
        path = tmp_path / 'catalog.yaml'
        path.write_text("blueprints:\n  - key: note\n    name: Note\n    category: layout\n", encoding='utf-8')

        assert load_blueprint_catalog(path).by_category()['layout'][0].key == 'note'

    @pytest.mark.parametrize("content", [
        "blueprints: []\n",
        "- key: a\n  name: A\n- key: a\n  name: B\n",
        "- key: bad\n  name: Bad\n  defaultSchema:\n    type: widget\n",
        "- [unclosed\n",
    ])
    def test_broken_files_fall_back_to_default(self, tmp_path, content):
        path = tmp_path / 'catalog.yaml'
        path.write_text(content, encoding='utf-8')

        assert len(load_blueprint_catalog(path)) == 14
