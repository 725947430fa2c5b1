"""Include Builder — turns join paths into the nested inclusion tree handed to the store.

Invariants:
    - Tree shape: {relation: {nested_relation: {...}}}; an empty dict is a leaf
    - Overlapping prefixes merge ("posts" + "posts.comments" -> one "posts" node)
    - A requested list (even empty) is honoured exactly; only None falls back to the default tree
"""

from policy_crud.core.errors import ForbiddenError


def include_tree_from_joins(paths: list[str]) -> dict:
    tree: dict = {}
    for path in paths:
        node = tree
        for segment in path.split("."):
            node = node.setdefault(segment, {})
    return tree


def resolve_includes(
    requested: list[str] | None, allowed: frozenset[str], default_tree: dict,
) -> dict:
    """Inclusion tree for a request. Fails on the first path outside the allowlist."""
    if requested is None:
        return default_tree

    for path in requested:
        if path not in allowed:
            raise ForbiddenError(path)
    return include_tree_from_joins(list(dict.fromkeys(requested)))
