"""Boundary Protocols — contract between the CRUD core and the persistence client.

Invariants:
    - Core NEVER imports from infrastructure — dependency arrows point inward only
    - The store receives only validated structures: WhereNode trees, OrderTerm lists,
      include trees and MutationPlans (never raw client dicts)
    - Every method takes the AsyncSession first: the caller owns transaction scope
    - Records cross the boundary as plain dicts; included relations as nested dicts/lists

Design Decisions:
    - Protocol over ABC: structural subtyping, no inheritance hierarchy
    - Async in Protocol: boundary methods do IO, the pure functions that feed them do not
"""

from typing import TYPE_CHECKING, Any, Protocol

from policy_crud.core.mutation_diff import MutationPlan
from policy_crud.core.order_by import OrderTerm
from policy_crud.core.where_tree import WhereNode

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class CrudStore(Protocol):
    """Contract for one entity's persistence — implemented by infrastructure."""

    def coerce_id(self, record_id: Any) -> Any:
        """Convert a path id to the key type. Raises NotFoundError if impossible."""
        ...

    async def create(self, session: "AsyncSession", plan: MutationPlan) -> Any: ...

    async def find_first(
        self, session: "AsyncSession", where: WhereNode, include: dict,
    ) -> dict | None: ...

    async def find_many(
        self,
        session: "AsyncSession",
        where: WhereNode,
        include: dict,
        order_by: list[OrderTerm],
        skip: int,
        take: int,
    ) -> list[dict]: ...

    async def count(self, session: "AsyncSession", where: WhereNode) -> int: ...

    async def update(
        self, session: "AsyncSession", record_id: Any, plan: MutationPlan,
    ) -> None: ...

    async def delete(self, session: "AsyncSession", record_id: Any) -> None: ...
