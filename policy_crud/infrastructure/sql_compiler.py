"""SQL Compiler — turns validated WhereNode trees and OrderTerms into SQLAlchemy constructs.

Invariants:
    - Input is always a validated tree; compilation never sees raw client dicts
    - Relation filters compile to correlated EXISTS (any()/has()), never to joins, so a
      to-many filter cannot multiply root rows
    - Empty AND / NOT compile to TRUE, empty OR to FALSE
    - NOT over a list holds when every child is false (NOT a AND NOT b)
    - contains/startsWith/endsWith escape LIKE wildcards in the operand
    - mode "insensitive" lowers both sides for every operator, list operands element-wise

Design Decisions:
    - Dispatch on node type (isinstance) mirrors the tagged variant one-to-one
    - Ordering through to-one relations uses aliased LEFT OUTER JOINs, one alias per path,
      so rows with a null relation are kept (sorted as NULL)
"""

from typing import Any

from sqlalchemy import Select, and_, false, func, not_, or_, true
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from policy_crud.core.order_by import OrderTerm
from policy_crud.core.where_tree import (
    Combinator,
    CombinatorKind,
    Leaf,
    Operator,
    Qualifier,
    Relation,
    WhereNode,
)


def compile_where(node: WhereNode, model: type) -> ColumnElement[bool]:
    if isinstance(node, Combinator):
        return _compile_combinator(node, model)
    if isinstance(node, Relation):
        return _compile_relation(node, model)
    if isinstance(node, Leaf):
        return _compile_leaf(node, model)
    raise TypeError(f"Unknown where node {node!r}")


def _compile_combinator(node: Combinator, model: type) -> ColumnElement[bool]:
    clauses = [compile_where(child, model) for child in node.children]
    if node.kind == CombinatorKind.AND:
        return and_(*clauses) if clauses else true()
    if node.kind == CombinatorKind.OR:
        return or_(*clauses) if clauses else false()
    return and_(*(not_(c) for c in clauses)) if clauses else true()


def _compile_relation(node: Relation, model: type) -> ColumnElement[bool]:
    attr = getattr(model, node.name)
    target = attr.property.mapper.class_
    body = compile_where(node.body, target) if node.body is not None else None

    if node.qualifier == Qualifier.SOME:
        return attr.any(body)
    if node.qualifier == Qualifier.NONE:
        return ~attr.any(body)
    if node.qualifier == Qualifier.EVERY:
        return ~attr.any(not_(body))
    if node.qualifier == Qualifier.IS:
        return ~attr.has() if body is None else attr.has(body)
    return attr.has() if body is None else ~attr.has(body)


def _compile_leaf(node: Leaf, model: type) -> ColumnElement[bool]:
    column = getattr(model, node.field)
    value = node.value
    op = node.operator

    if op in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
        return _compile_like(column, op, value, node.insensitive)
    if node.insensitive:
        column = func.lower(column)
        value = _lowered(value)

    if op == Operator.EQUALS:
        return column.is_(None) if value is None else column == value
    if op == Operator.NOT:
        return column.is_not(None) if value is None else column != value
    if op == Operator.IN:
        return column.in_(_as_list(value))
    if op == Operator.NOT_IN:
        return column.not_in(_as_list(value))
    if op == Operator.LT:
        return column < value
    if op == Operator.LTE:
        return column <= value
    if op == Operator.GT:
        return column > value
    return column >= value


def _compile_like(column: Any, op: Operator, value: Any, insensitive: bool) -> ColumnElement[bool]:
    if op == Operator.CONTAINS:
        matcher = column.icontains if insensitive else column.contains
    elif op == Operator.STARTS_WITH:
        matcher = column.istartswith if insensitive else column.startswith
    else:
        matcher = column.iendswith if insensitive else column.endswith
    return matcher(value, autoescape=True)


def _lowered(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return [v.lower() if isinstance(v, str) else v for v in value]
    return value


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else [value]


def apply_order_by(stmt: Select, model: type, terms: list[OrderTerm]) -> Select:
    aliases: dict[tuple[str, ...], Any] = {}
    for term in terms:
        current = model
        for i in range(len(term.relations)):
            hop = term.relations[: i + 1]
            if hop not in aliases:
                attr = getattr(current, term.relations[i])
                alias = aliased(attr.property.mapper.class_)
                stmt = stmt.outerjoin(attr.of_type(alias))
                aliases[hop] = alias
            current = aliases[hop]
        column = getattr(current, term.field)
        stmt = stmt.order_by(column.desc() if term.direction == "desc" else column.asc())
    return stmt
