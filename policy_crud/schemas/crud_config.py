"""Crud Service Config — per-entity configuration validated at service construction.

Invariants:
    - Page sizes are >= 1
    - default_order_by None means [{id_field: "asc"}], resolved by resolved_order_by()
    - forbidden_paths accepts dotted strings and compiled regular expressions

Design Decisions:
    - Pydantic for config too: a typo'd key fails loudly at startup (extra="forbid")
    - Cross-checks that need the entity schema (allowlist resolution, default joins) run in
      CrudService.__init__, not here
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaginationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_page_size: int = Field(25, ge=1)
    max_page_size: int = Field(100, ge=1)
    default_order_by: list[dict[str, Any]] | None = None


class CrudServiceConfig(BaseModel):
    """Configuration for one entity's CrudService."""
    model_config = ConfigDict(extra="forbid")

    entity: str
    id_field: str = "id"
    allowed_joins: list[str] = Field(default_factory=list)
    default_joins: list[str] | None = None
    forbidden_paths: list[str | re.Pattern] = Field(default_factory=list)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)

    def resolved_order_by(self) -> list[dict[str, Any]]:
        if self.pagination.default_order_by is not None:
            return self.pagination.default_order_by
        return [{self.id_field: "asc"}]
