"""
Unit tests for schema tree utilities.
"""

import pytest

from form_builder.exceptions import NotFoundError
from form_builder.models import SchemaProperty
from form_builder.schema_tree import (
    OrderedFields,
    count_nodes,
    generate_unique_key,
    get_children,
    insert_node,
    is_valid_key,
    is_within,
    join_path,
    leaf_key,
    normalize_path,
    ordered_keys,
    parent_path,
    remove_node,
    reorder_children,
    replace_node,
    resolve,
    split_path,
    subtree_paths,
)


def _tree() -> SchemaProperty:
    return SchemaProperty.model_validate({
        'type': 'object',
        'properties': {
            'name': {'type': 'string', 'title': 'Name', 'x-index': 1},
            'address': {
                'type': 'object',
                'x-index': 0,
                'properties': {
                    'street': {'type': 'string', 'x-index': 0},
                    'city': {'type': 'string', 'x-index': 1},
                },
            },
            'witnesses': {
                'type': 'array',
                'x-index': 2,
                'items': {
                    'type': 'object',
                    'properties': {
                        'witness_name': {'type': 'string', 'x-index': 0},
                    },
                },
            },
        },
    })


class TestPaths:
    """Test cases for field path helpers."""

    def test_split_and_join(self):
        assert split_path("address.street") == ["address", "street"]
        assert split_path("") == []
        assert split_path(None) == []
        assert join_path("address", "street") == "address.street"
        assert join_path("", "name") == "name"

    def test_normalize_parent_and_leaf(self):
        assert normalize_path(".address..street.") == "address.street"
        assert parent_path("address.street") == "address"
        assert parent_path("name") == ""
        assert leaf_key("address.street") == "street"
        assert leaf_key("") == ""

    def test_is_within(self):
        assert is_within("address.street", "address")
        assert is_within("address", "address")
        assert not is_within("addressbook", "address")
        assert not is_within("name", "address")

    @pytest.mark.parametrize("key,valid", [
        ("name", True), ("_private", True), ("field_1", True),
        ("1field", False), ("has-dash", False), ("has.dot", False), ("", False),
    ])
    def test_is_valid_key(self, key, valid):
        assert is_valid_key(key) is valid


class TestResolveAndTraverse:
    """Test cases for resolution and ordered traversal."""

    def test_resolve_nested_and_array_children(self):
        tree = _tree()

        assert resolve(tree, "") is tree
        assert resolve(tree, "address.city").type == "string"
        assert resolve(tree, "witnesses.witness_name") is not None
        assert resolve(tree, "address.zip") is None
        assert resolve(tree, "name.anything") is None

    def test_ordered_keys_follow_order_values(self):
        assert ordered_keys(_tree()) == ["address", "name", "witnesses"]

    def test_unordered_children_go_last_in_map_order(self):
        node = SchemaProperty.model_validate({
            'type': 'object',
            'properties': {'b': {}, 'a': {'x-index': 0}, 'c': {}},
        })
        assert ordered_keys(node) == ["a", "b", "c"]

    def test_ordered_fields_is_preorder_and_restartable(self):
        fields = OrderedFields(_tree())
        expected = ["address", "address.street", "address.city", "name",
                    "witnesses", "witnesses.witness_name"]

        assert fields.paths() == expected
        assert [path for path, _ in fields] == expected

    def test_ordered_fields_non_recursive_with_base_path(self):
        tree = _tree()
        fields = OrderedFields(resolve(tree, "address"), "address", recursive=False)

        assert fields.paths() == ["address.street", "address.city"]

    def test_count_nodes_and_subtree_paths(self):
        tree = _tree()

        assert count_nodes(resolve(tree, "address")) == 3
        assert count_nodes(tree) == 7
        assert subtree_paths(resolve(tree, "address"), "address") == ["address", "address.street", "address.city"]


class TestUniqueKeys:
    """Test cases for key generation."""

    def test_free_base_is_used(self):
        assert generate_unique_key("text", []) == "text"

    def test_collisions_get_incrementing_suffix(self):
        assert generate_unique_key("text", ["text"]) == "text_1"
        assert generate_unique_key("text", ["text", "text_1", "text_2"]) == "text_3"

    def test_base_is_sanitized(self):
        assert generate_unique_key("location-select", []) == "location_select"
        assert generate_unique_key("1st", []) == "field_1st"


class TestPathCopyUpdates:
    """Test cases for structural-sharing updates."""

    def test_replace_node_copies_only_the_path(self):
        tree = _tree()
        new_city = resolve(tree, "address.city").model_copy(update={'title': 'City'})

        updated = replace_node(tree, "address.city", new_city)

        assert resolve(updated, "address.city").title == "City"
        assert resolve(tree, "address.city").title is None
        # Untouched subtrees are shared
        assert resolve(updated, "witnesses") is resolve(tree, "witnesses")
        assert resolve(updated, "address.street") is resolve(tree, "address.street")

    def test_replace_missing_node_raises(self):
        with pytest.raises(NotFoundError):
            replace_node(_tree(), "address.zip", SchemaProperty())

    def test_insert_node_at_index_renumbers(self):
        tree = _tree()

        updated = insert_node(tree, "", "email", SchemaProperty(type="string"), index=1)

        assert ordered_keys(updated) == ["address", "email", "name", "witnesses"]
        assert [child.order for _, child in sorted(get_children(updated).items(), key=lambda kv: kv[1].order)] \
            == [0, 1, 2, 3]
        assert ordered_keys(tree) == ["address", "name", "witnesses"]

    def test_insert_node_index_is_clamped(self):
        updated = insert_node(_tree(), "address", "zip", SchemaProperty(), index=99)
        assert ordered_keys(resolve(updated, "address")) == ["street", "city", "zip"]
        assert resolve(updated, "address.zip").order == 2

    def test_insert_into_array_items(self):
        updated = insert_node(_tree(), "witnesses", "phone", SchemaProperty())
        assert ordered_keys(resolve(updated, "witnesses")) == ["witness_name", "phone"]

    def test_remove_node_renumbers_siblings(self):
        updated = remove_node(_tree(), "address")

        assert ordered_keys(updated) == ["name", "witnesses"]
        assert resolve(updated, "name").order == 0
        assert resolve(updated, "witnesses").order == 1

    def test_remove_root_or_missing_raises(self):
        with pytest.raises(NotFoundError):
            remove_node(_tree(), "")
        with pytest.raises(NotFoundError):
            remove_node(_tree(), "nope")

    def test_reorder_children(self):
        updated = reorder_children(_tree(), "address", ["city", "street"])

        assert ordered_keys(resolve(updated, "address")) == ["city", "street"]
        assert resolve(updated, "address.city").order == 0
