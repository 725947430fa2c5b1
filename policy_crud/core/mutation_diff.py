"""Mutation Differ — translates a nested payload plus existing state into relation writes.

Invariants:
    - Omitted relation keys produce no write (the relation is left untouched)
    - An entry carrying the relation's id field is ALWAYS a connect; its siblings are discarded
    - An entry without an id is a create of the target's declared scalar fields only
    - Only one level is diffed: relation fields inside connect/create entries are dropped
    - A supplied to-many list REPLACES the association set (never merges)
    - null on a to-many relation, or a relation key outside the allowlist, fails before
      any store call
    - The root id is stripped from scalars: the store keys writes by the fetched record's id

Design Decisions:
    - Plan objects over store-specific payloads: the differ stays pure and the store
      decides how connect/create/disconnect map onto its client (ADR: functional core)
    - Connect siblings discarded, not rejected: clients can send back a record as read
      without editing other rows through this entity's endpoint (ADR: one-level containment)
    - Replace-set plans carry only the target membership (connect + create): the store
      reads current members inside its own transaction and disconnects the rest. The
      existing record here is the redacted read, so it only tells create from update
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from policy_crud.core.entity_schema import EntitySchema, RelationSpec, SchemaRegistry
from policy_crud.core.errors import CrudValidationError, ForbiddenError

logger = logging.getLogger(__name__)


class ToOneAction(str, Enum):
    CONNECT = "connect"
    CREATE = "create"
    DISCONNECT = "disconnect"


@dataclass(frozen=True)
class ToOneWrite:
    relation: str
    action: ToOneAction
    connect_id: Any = None
    data: dict | None = None
    delete_on_disconnect: bool = False


@dataclass(frozen=True)
class ToManyWrite:
    """Replace-set: the relation ends up holding exactly connect + create."""
    relation: str
    connect: tuple[Any, ...]
    create: tuple[dict, ...]
    delete_on_disconnect: bool = False


RelationWrite = Union[ToOneWrite, ToManyWrite]


@dataclass(frozen=True)
class MutationPlan:
    scalars: dict
    relations: tuple[RelationWrite, ...]

    def write_for(self, relation: str) -> RelationWrite | None:
        return next((w for w in self.relations if w.relation == relation), None)


def diff_mutation(
    payload: Any,
    entity: EntitySchema,
    registry: SchemaRegistry,
    allowed: frozenset[str],
    id_field: str = "id",
    existing: dict | None = None,
) -> MutationPlan:
    """Build the write plan for one entity. existing=None means create."""
    if not isinstance(payload, dict):
        raise CrudValidationError("Payload must be an object")

    scalars: dict = {}
    writes: list[RelationWrite] = []
    for key, value in payload.items():
        if key == id_field:
            continue
        if key in entity.relations:
            if key not in allowed:
                raise ForbiddenError(key, kind="Mutation")
            write = _diff_relation(
                key, entity.relations[key], value,
                registry.target_of(entity, key), existing,
            )
            if write is not None:
                writes.append(write)
        elif key in entity.fields:
            scalars[key] = value
        elif isinstance(value, (dict, list)):
            raise ForbiddenError(key, kind="Mutation")
        else:
            logger.debug(f"Dropping undeclared field '{key}' from {entity.name} payload")

    return MutationPlan(scalars=scalars, relations=tuple(writes))


def _diff_relation(
    name: str,
    spec: RelationSpec,
    value: Any,
    target: EntitySchema,
    existing: dict | None,
) -> RelationWrite | None:
    if spec.to_many:
        return _diff_to_many(name, spec, value, target, existing)
    return _diff_to_one(name, spec, value, target, existing)


def _diff_to_one(
    name: str,
    spec: RelationSpec,
    value: Any,
    target: EntitySchema,
    existing: dict | None,
) -> ToOneWrite | None:
    if value is None:
        if existing is None:
            return None
        return ToOneWrite(
            name, ToOneAction.DISCONNECT,
            delete_on_disconnect=spec.on_disconnect == "delete",
        )
    if not isinstance(value, dict):
        raise CrudValidationError(f"To-one relation '{name}' expects an object or null", path=name)

    if value.get(spec.id_field) is not None:
        _log_discarded_siblings(name, value, spec.id_field)
        return ToOneWrite(name, ToOneAction.CONNECT, connect_id=value[spec.id_field])
    return ToOneWrite(name, ToOneAction.CREATE, data=_create_data(value, target, spec))


def _diff_to_many(
    name: str,
    spec: RelationSpec,
    value: Any,
    target: EntitySchema,
    existing: dict | None,
) -> ToManyWrite | None:
    if not isinstance(value, list):
        raise CrudValidationError(f"To-many relation '{name}' expects a list", path=name)
    if existing is None and not value:
        return None

    connect: list = []
    create: list[dict] = []
    for entry in value:
        if not isinstance(entry, dict):
            raise CrudValidationError(f"Entries of '{name}' must be objects", path=name)
        entry_id = entry.get(spec.id_field)
        if entry_id is not None:
            _log_discarded_siblings(name, entry, spec.id_field)
            if entry_id not in connect:
                connect.append(entry_id)
        else:
            create.append(_create_data(entry, target, spec))

    return ToManyWrite(
        name,
        connect=tuple(connect),
        create=tuple(create),
        delete_on_disconnect=spec.on_disconnect == "delete",
    )


def _create_data(entry: dict, target: EntitySchema, spec: RelationSpec) -> dict:
    return {
        k: v for k, v in entry.items()
        if k in target.fields and k != spec.id_field
    }


def _log_discarded_siblings(name: str, entry: dict, id_field: str) -> None:
    siblings = sorted(k for k in entry if k != id_field)
    if siblings:
        logger.debug(
            f"Connect entry on '{name}' discards sibling fields {siblings}",
            extra={"path": name},
        )
