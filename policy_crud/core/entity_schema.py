"""Entity Schema — explicit per-entity descriptor of fields and relations.

Invariants:
    - fields lists the scalar attributes, id included: filterable, sortable, and writable
      except for the id, which the mutation differ always strips
    - Every RelationSpec.target names an entity registered in the same SchemaRegistry
    - on_disconnect is an explicit per-relation choice: "unlink" keeps the row, "delete" removes it
    - Schemas are immutable after construction (frozen dataclasses, frozenset, MappingProxyType)

Design Decisions:
    - Explicit descriptor over ORM introspection: validation never depends on the store
      client, and the allowlist can be checked against it at construction (ADR: fail before serving)
    - Registry keyed by entity name: relations reference targets by name, so schemas can be
      declared in any order and cycles (Post.author <-> User.posts) need no forward refs
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Mapping

from policy_crud.core.errors import ConfigurationError

DisconnectPolicy = Literal["unlink", "delete"]


@dataclass(frozen=True)
class RelationSpec:
    """One relation of an entity: cardinality, target entity, key and cascade choice."""
    target: str
    to_many: bool
    id_field: str = "id"
    on_disconnect: DisconnectPolicy = "unlink"


@dataclass(frozen=True)
class EntitySchema:
    """Writable scalar fields and declared relations of one entity."""
    name: str
    fields: frozenset[str] = frozenset()
    relations: Mapping[str, RelationSpec] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", frozenset(self.fields))
        object.__setattr__(self, "relations", MappingProxyType(dict(self.relations)))
        overlap = self.fields & set(self.relations)
        if overlap:
            raise ConfigurationError(
                f"Entity '{self.name}' declares {sorted(overlap)} as both field and relation",
            )

    def relation(self, name: str) -> RelationSpec | None:
        return self.relations.get(name)


class SchemaRegistry:
    """Lookup of entity schemas by name, with join-path resolution."""

    def __init__(self, entities: list[EntitySchema]):
        self._entities = {e.name: e for e in entities}
        for entity in entities:
            for rel_name, rel in entity.relations.items():
                if rel.target not in self._entities:
                    raise ConfigurationError(
                        f"Relation '{entity.name}.{rel_name}' targets unknown "
                        f"entity '{rel.target}'",
                    )

    def get(self, name: str) -> EntitySchema:
        entity = self._entities.get(name)
        if entity is None:
            raise ConfigurationError(f"Unknown entity '{name}'")
        return entity

    def target_of(self, entity: EntitySchema, relation: str) -> EntitySchema:
        return self.get(entity.relations[relation].target)

    def resolve_path(self, root: EntitySchema, path: str) -> EntitySchema:
        """Walk a dotted join path from root. Raises if a segment is not a relation."""
        current = root
        for segment in path.split("."):
            if segment not in current.relations:
                raise ConfigurationError(
                    f"Join path '{path}' does not resolve: '{current.name}' has "
                    f"no relation '{segment}'",
                )
            current = self.target_of(current, segment)
        return current
