"""Join Allowlist — prefix-closed set of relation paths a client may traverse.

Invariants:
    - Closure: if "a.b.c" is allowed then "a.b" and "a" are allowed
    - The set is built once per service and never mutated (frozenset)
    - Default joins must be members of the closure — checked at construction, never per request

Design Decisions:
    - Closure computed eagerly: every per-request check is a single set lookup
    - Absent default joins fall back to the full closure, sorted for a stable include tree
"""

from policy_crud.core.entity_schema import EntitySchema, SchemaRegistry
from policy_crud.core.errors import ConfigurationError


def build_allowed_joins(allowed_joins: list[str]) -> frozenset[str]:
    """Insert every path and all of its strict prefixes."""
    closed: set[str] = set()
    for path in allowed_joins:
        segments = path.split(".")
        for i in range(1, len(segments) + 1):
            closed.add(".".join(segments[:i]))
    return frozenset(closed)


def sanitize_default_joins(
    default_joins: list[str] | None, allowed: frozenset[str],
) -> list[str]:
    """Deduplicated default joins. Raises ConfigurationError on any non-member."""
    if default_joins is None:
        return sorted(allowed)

    for join in default_joins:
        if join not in allowed:
            raise ConfigurationError(
                f"defaultJoins contains '{join}' which is not present in allowedJoins",
            )
    return list(dict.fromkeys(default_joins))


def check_joins_resolve(
    allowed: frozenset[str], root: EntitySchema, registry: SchemaRegistry,
) -> None:
    """Every allowed path must follow declared relations from root."""
    for path in sorted(allowed):
        registry.resolve_path(root, path)
