"""Where Validator — checks an untrusted filter tree against schema and join allowlist.

Invariants:
    - Combinator keys (AND/OR/NOT) recurse at the SAME join path
    - Relation keys extend the join path; the extended path must be in the allowlist
    - Any key that is not a combinator, a declared field or a declared relation is treated
      as a relation attempt and checked against the allowlist (fail-closed)
    - Operator operands are never inspected (in/notIn lists pass verbatim)
    - allowed=None means trusted input (server-authored predicates): no allowlist check,
      structural checks still apply
    - The input dict is never mutated

Design Decisions:
    - Parse and validate in one pass: the output is the tagged tree the store compiles,
      so nothing unvalidated can reach SQL (ADR: parse, don't validate)
    - Pure functions, no IO: testable without mocks (ADR: functional core)
"""

from typing import Any

from policy_crud.core.entity_schema import EntitySchema, SchemaRegistry
from policy_crud.core.errors import ConfigurationError, CrudValidationError, ForbiddenError
from policy_crud.core.where_tree import (
    Combinator,
    CombinatorKind,
    Leaf,
    MODE_MODIFIER,
    Operator,
    Qualifier,
    Relation,
    TO_MANY_QUALIFIERS,
    TO_ONE_QUALIFIERS,
    WhereNode,
    and_nodes,
)

_COMBINATORS = {k.value: k for k in CombinatorKind}
_OPERATORS = {o.value: o for o in Operator}
_QUALIFIERS = {q.value: q for q in Qualifier}


def validate_where(
    where: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str] | None,
    current_path: str = "",
) -> WhereNode:
    """Validate a where object and return it as a tagged tree."""
    if not isinstance(where, dict):
        raise CrudValidationError("Filter must be an object", path=current_path or None)

    return and_nodes(*(
        _validate_key(key, value, entity, registry, allowed, current_path)
        for key, value in where.items()
    ))


def _validate_key(
    key: str,
    value: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str] | None,
    current_path: str,
) -> WhereNode:
    if key in _COMBINATORS:
        return _validate_combinator(
            _COMBINATORS[key], value, entity, registry, allowed, current_path,
        )
    if key in entity.fields:
        return _validate_leaf(key, value, current_path)

    path = f"{current_path}.{key}" if current_path else key
    if allowed is not None and path not in allowed:
        raise ForbiddenError(path)
    if key not in entity.relations:
        if allowed is None:
            raise ConfigurationError(f"Trusted filter references unknown field '{path}'")
        raise CrudValidationError(f"Unknown filter field '{path}'", path=path)
    return _validate_relation(key, value, entity, registry, allowed, path)


def _validate_combinator(
    kind: CombinatorKind,
    value: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str] | None,
    current_path: str,
) -> WhereNode:
    children = value if isinstance(value, list) else [value]
    return Combinator(kind, tuple(
        validate_where(child, entity, registry, allowed, current_path)
        for child in children
    ))


def _validate_relation(
    name: str,
    value: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str] | None,
    path: str,
) -> WhereNode:
    spec = entity.relations[name]
    target = registry.target_of(entity, name)
    permitted = TO_MANY_QUALIFIERS if spec.to_many else TO_ONE_QUALIFIERS

    if value is None and not spec.to_many:
        return Relation(name, Qualifier.IS, None)
    if not isinstance(value, dict):
        raise CrudValidationError(f"Relation filter '{path}' must be an object", path=path)

    qualified = [k for k in value if k in _QUALIFIERS]
    if not qualified:
        if spec.to_many:
            raise CrudValidationError(
                f"To-many relation filter '{path}' requires one of "
                f"{sorted(q.value for q in permitted)}",
                path=path,
            )
        # to-one shorthand: {author: {...}} means {author: {is: {...}}}
        return Relation(name, Qualifier.IS, validate_where(value, target, registry, allowed, path))
    if len(qualified) != len(value):
        raise CrudValidationError(
            f"Relation filter '{path}' mixes qualifiers with field filters", path=path,
        )

    nodes = []
    for key in qualified:
        qualifier = _QUALIFIERS[key]
        if qualifier not in permitted:
            raise CrudValidationError(
                f"Qualifier '{key}' is not valid for relation '{path}'", path=path,
            )
        body = value[key]
        if body is None:
            if spec.to_many:
                raise CrudValidationError(
                    f"Qualifier '{key}' on '{path}' requires a filter object", path=path,
                )
            nodes.append(Relation(name, qualifier, None))
        else:
            nodes.append(Relation(
                name, qualifier, validate_where(body, target, registry, allowed, path),
            ))
    return and_nodes(*nodes)


def _validate_leaf(field_name: str, value: Any, current_path: str) -> WhereNode:
    if not isinstance(value, dict):
        return Leaf(field_name, Operator.EQUALS, value)

    path = f"{current_path}.{field_name}" if current_path else field_name
    mode = value.get(MODE_MODIFIER, "default")
    if mode not in ("default", "insensitive"):
        raise CrudValidationError(f"Unsupported mode '{mode}' on '{path}'", path=path)

    leaves = []
    for key, operand in value.items():
        if key == MODE_MODIFIER:
            continue
        operator = _OPERATORS.get(key)
        if operator is None:
            raise CrudValidationError(f"Unsupported operator '{key}' on '{path}'", path=path)
        leaves.append(Leaf(field_name, operator, operand, insensitive=mode == "insensitive"))

    if not leaves:
        raise CrudValidationError(f"Filter on '{path}' has no operator", path=path)
    return and_nodes(*leaves)
