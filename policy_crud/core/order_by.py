"""Order By Validator — checks sort descriptors with the same path closure as filters.

Invariants:
    - Input is a list of single-key objects: {field: "asc"|"desc"} or {relation: {...}}
    - Relation keys extend the join path and must be in the allowlist (fail-closed)
    - Only to-one relations can be traversed: ordering by a collection is ambiguous
    - Output order matches input order (first term is the primary sort key)
"""

from dataclasses import dataclass
from typing import Any, Literal

from policy_crud.core.entity_schema import EntitySchema, SchemaRegistry
from policy_crud.core.errors import CrudValidationError, ForbiddenError

Direction = Literal["asc", "desc"]
DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class OrderTerm:
    """Sort by `field` on the entity reached through `relations` (to-one hops)."""
    relations: tuple[str, ...]
    field: str
    direction: Direction


def validate_order_by(
    order_by: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str],
) -> list[OrderTerm]:
    if not isinstance(order_by, list):
        raise CrudValidationError("orderBy must be a list")
    return [_validate_entry(entry, entity, registry, allowed, ()) for entry in order_by]


def _validate_entry(
    entry: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str],
    relations: tuple[str, ...],
) -> OrderTerm:
    where = ".".join(relations) or None
    if not isinstance(entry, dict) or len(entry) != 1:
        raise CrudValidationError("orderBy entries must be objects with exactly one key", path=where)

    (key, value), = entry.items()
    if key in entity.fields:
        if value not in DIRECTIONS:
            path = ".".join(relations + (key,))
            raise CrudValidationError(
                f"orderBy direction for '{path}' must be 'asc' or 'desc'", path=path,
            )
        return OrderTerm(relations, key, value)

    path = ".".join(relations + (key,))
    if path not in allowed:
        raise ForbiddenError(path)
    spec = entity.relation(key)
    if spec is None:
        raise CrudValidationError(f"Unknown orderBy field '{path}'", path=path)
    if spec.to_many:
        raise CrudValidationError(f"Cannot order by to-many relation '{path}'", path=path)
    return _validate_entry(
        value, registry.target_of(entity, key), registry, allowed, relations + (key,),
    )
