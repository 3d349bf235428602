"""
Tree utilities for the form schema.
Path parsing, node resolution, ordered traversal and path-copying updates.

Nodes are never mutated in place: every update copies the nodes on the path
from the root to the change and shares every other subtree with the previous
tree. Earlier trees therefore stay valid as history snapshots.
"""

import re
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from form_builder.exceptions import NotFoundError
from form_builder.models import FieldType, SchemaProperty

PATH_SEPARATOR = "."
KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PathLike = Union[str, Sequence[str], None]
Children = Dict[str, SchemaProperty]


def split_path(path: PathLike) -> List[str]:
    """Split a dotted field path into keys. Empty or None addresses the root."""
    if path is None:
        return []
    if isinstance(path, str):
        return [part for part in path.split(PATH_SEPARATOR) if part] if path else []
    return list(path)


def join_path(*parts: str) -> str:
    return PATH_SEPARATOR.join(part for part in parts if part)


def normalize_path(path: PathLike) -> str:
    return join_path(*split_path(path))


def parent_path(path: PathLike) -> str:
    return join_path(*split_path(path)[:-1])


def leaf_key(path: PathLike) -> str:
    keys = split_path(path)
    return keys[-1] if keys else ""


def is_valid_key(key: str) -> bool:
    return isinstance(key, str) and bool(KEY_PATTERN.match(key))


def is_within(path: PathLike, ancestor: PathLike) -> bool:
    """True when ``path`` equals ``ancestor`` or lies below it."""
    path_keys = split_path(path)
    ancestor_keys = split_path(ancestor)
    return path_keys[:len(ancestor_keys)] == ancestor_keys


def get_children(node: SchemaProperty) -> Children:
    """Return the child map owned by a container node (empty for leaves)."""
    if node.type == FieldType.OBJECT.value:
        return node.properties or {}
    if node.type == FieldType.ARRAY.value and node.items is not None:
        return node.items.properties or {}
    return {}


def with_children(node: SchemaProperty, children: Children) -> SchemaProperty:
    """Return a copy of ``node`` owning ``children``."""
    if node.type == FieldType.ARRAY.value:
        items = node.items or SchemaProperty(type=FieldType.OBJECT.value)
        return node.model_copy(update={"items": items.model_copy(update={"properties": children})})
    return node.model_copy(update={"properties": children})


def resolve(root: SchemaProperty, path: PathLike) -> Optional[SchemaProperty]:
    """Resolve a field path to its node, or None when it does not exist."""
    node = root
    for key in split_path(path):
        children = get_children(node)
        if key not in children:
            return None
        node = children[key]
    return node


def ordered_children(node: SchemaProperty) -> List[Tuple[str, SchemaProperty]]:
    """Children sorted by ascending order; unordered children keep map order at the end."""
    indexed = list(enumerate(get_children(node).items()))
    indexed.sort(key=lambda item: (item[1][1].order is None, item[1][1].order or 0, item[0]))
    return [entry for _, entry in indexed]


def ordered_keys(node: SchemaProperty) -> List[str]:
    return [key for key, _ in ordered_children(node)]


def iter_ordered_fields(node: SchemaProperty, base_path: str = "",
                        recursive: bool = True) -> Iterator[Tuple[str, SchemaProperty]]:
    """Yield ``(path, field)`` pairs in ascending order, depth first."""
    for key, child in ordered_children(node):
        child_path = join_path(base_path, key)
        yield child_path, child
        if recursive and child.is_container:
            yield from iter_ordered_fields(child, child_path, recursive)


class OrderedFields:
    """
    Restartable view over the ordered fields of a subtree.

    Each iteration walks the tree captured at construction time, so a view
    taken before a store mutation keeps describing that earlier tree.
    """

    def __init__(self, node: SchemaProperty, base_path: str = "", recursive: bool = True):
        self._node = node
        self._base_path = base_path
        self._recursive = recursive

    def __iter__(self) -> Iterator[Tuple[str, SchemaProperty]]:
        return iter_ordered_fields(self._node, self._base_path, self._recursive)

    def paths(self) -> List[str]:
        return [path for path, _ in self]


def count_nodes(node: SchemaProperty) -> int:
    """Number of nodes in a subtree, the node itself included."""
    return 1 + sum(count_nodes(child) for child in get_children(node).values())


def subtree_paths(node: SchemaProperty, path: str) -> List[str]:
    """Paths of a node and all of its descendants."""
    return [path] + [child_path for child_path, _ in iter_ordered_fields(node, path)]


def generate_unique_key(base: str, existing: Sequence[str]) -> str:
    """
    Generate a key that does not collide with ``existing``.

    ``base`` is used as-is when free, otherwise ``base_1``, ``base_2`` ...
    """
    candidate = re.sub(r"[^A-Za-z0-9_]", "_", base) or "field"
    if not KEY_PATTERN.match(candidate):
        candidate = f"field_{candidate}"
    taken = set(existing)
    if candidate not in taken:
        return candidate
    counter = 1
    while f"{candidate}_{counter}" in taken:
        counter += 1
    return f"{candidate}_{counter}"


def renumber(entries: Sequence[Tuple[str, SchemaProperty]]) -> Children:
    """Build a child map from ordered entries with order values 0..n-1."""
    children: Children = {}
    for index, (key, child) in enumerate(entries):
        children[key] = child if child.order == index else child.model_copy(update={"order": index})
    return children


def replace_node(root: SchemaProperty, path: PathLike, new_node: SchemaProperty) -> SchemaProperty:
    """Return a new tree where the node at ``path`` is ``new_node``."""
    keys = split_path(path)
    if not keys:
        return new_node
    return _replace(root, keys, new_node, join_path(*keys))


def _replace(node: SchemaProperty, keys: List[str], new_node: SchemaProperty,
             full_path: str) -> SchemaProperty:
    children = get_children(node)
    head = keys[0]
    if head not in children:
        raise NotFoundError(full_path)
    replacement = new_node if len(keys) == 1 else _replace(children[head], keys[1:], new_node, full_path)
    new_children = dict(children)
    new_children[head] = replacement
    return with_children(node, new_children)


def update_children(root: SchemaProperty, container_path: PathLike,
                    fn: Callable[[Children], Children]) -> SchemaProperty:
    """Return a new tree where the container's child map is replaced by ``fn(children)``."""
    container = resolve(root, container_path)
    if container is None:
        raise NotFoundError(normalize_path(container_path))
    return replace_node(root, container_path, with_children(container, fn(get_children(container))))


def insert_node(root: SchemaProperty, container_path: PathLike, key: str,
                node: SchemaProperty, index: Optional[int] = None) -> SchemaProperty:
    """Insert ``node`` under ``key`` at ``index`` among its ordered siblings and renumber them."""
    def _insert(children: Children) -> Children:
        container_node = with_children(SchemaProperty(type=FieldType.OBJECT.value), children)
        entries = ordered_children(container_node)
        position = len(entries) if index is None else max(0, min(index, len(entries)))
        entries.insert(position, (key, node))
        return renumber(entries)

    return update_children(root, container_path, _insert)


def remove_node(root: SchemaProperty, path: PathLike) -> SchemaProperty:
    """Remove the node at ``path`` (with its subtree) and renumber its siblings."""
    keys = split_path(path)
    if not keys:
        raise NotFoundError("", "The root schema cannot be removed")
    key = keys[-1]

    def _remove(children: Children) -> Children:
        if key not in children:
            raise NotFoundError(join_path(*keys))
        container_node = with_children(SchemaProperty(type=FieldType.OBJECT.value), children)
        return renumber([(k, v) for k, v in ordered_children(container_node) if k != key])

    return update_children(root, keys[:-1], _remove)


def reorder_children(root: SchemaProperty, container_path: PathLike,
                     ordered: Sequence[str]) -> SchemaProperty:
    """Rewrite sibling order values to follow ``ordered`` (must be a full permutation)."""
    def _reorder(children: Children) -> Children:
        return renumber([(key, children[key]) for key in ordered])

    return update_children(root, container_path, _reorder)
