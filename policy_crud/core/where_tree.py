"""Where Tree — tagged recursive variant for validated filter trees.

Invariants:
    - A node is exactly one of Leaf, Relation, Combinator
    - Trees are immutable (frozen dataclasses, tuples for children)
    - Only where_validator builds trees from untrusted input; the store only compiles them

Design Decisions:
    - Tagged variant over raw dicts: validation and SQL compilation dispatch on node type,
      never on string sniffing (ADR: exhaustive matching, no stringly-typed branches)
    - Leaf holds a single operator: {"gte": 1, "lte": 5} becomes AND(Leaf, Leaf)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class CombinatorKind(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class Qualifier(str, Enum):
    """Relation qualifiers. SOME/EVERY/NONE for to-many, IS/IS_NOT for to-one."""
    SOME = "some"
    EVERY = "every"
    NONE = "none"
    IS = "is"
    IS_NOT = "isNot"


TO_MANY_QUALIFIERS = frozenset({Qualifier.SOME, Qualifier.EVERY, Qualifier.NONE})
TO_ONE_QUALIFIERS = frozenset({Qualifier.IS, Qualifier.IS_NOT})


class Operator(str, Enum):
    EQUALS = "equals"
    NOT = "not"
    IN = "in"
    NOT_IN = "notIn"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"


LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
MODE_MODIFIER = "mode"


@dataclass(frozen=True)
class Leaf:
    field: str
    operator: Operator
    value: Any
    insensitive: bool = False


@dataclass(frozen=True)
class Relation:
    name: str
    qualifier: Qualifier
    body: "WhereNode | None"


@dataclass(frozen=True)
class Combinator:
    kind: CombinatorKind
    children: tuple["WhereNode", ...]


WhereNode = Union[Leaf, Relation, Combinator]

MATCH_ALL = Combinator(CombinatorKind.AND, ())


def and_nodes(*nodes: WhereNode) -> WhereNode:
    """AND several nodes, dropping empty ANDs and collapsing a single survivor."""
    kept = tuple(n for n in nodes if n != MATCH_ALL)
    if len(kept) == 1:
        return kept[0]
    return Combinator(CombinatorKind.AND, kept)
