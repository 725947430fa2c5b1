"""Crud Query Schema — Pydantic model for the untrusted query descriptor.

Invariants:
    - Every key is optional; unknown keys are ignored
    - where must be an object, joins a list of strings, select {only?, except?}
    - page, pageSize and orderBy are accepted loosely: the paginator falls back to
      defaults instead of rejecting (a bad page number never fails a request)

Design Decisions:
    - Wire names are camelCase (orderBy, pageSize, except) via aliases; Python side is snake_case
    - where stays a raw dict here: its recursive validation needs the entity schema and
      allowlist, which only the service has
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SelectSpec(BaseModel):
    """Client field selection. only wins over except when both are given."""
    model_config = ConfigDict(populate_by_name=True)

    only: list[str] | None = None
    except_: list[str] | None = Field(None, alias="except")


class CrudQuery(BaseModel):
    """Parsed query descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    where: dict[str, Any] | None = None
    joins: list[str] | None = None
    select: SelectSpec | None = None
    order_by: Any = Field(None, alias="orderBy")
    page: Any = None
    page_size: Any = Field(None, alias="pageSize")
