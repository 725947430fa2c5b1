"""SQLAlchemy Store — executes validated queries and mutation plans for one mapped model.

Invariants:
    - Implements core/store_protocol.CrudStore; stateless apart from the model it serves
    - Every read uses populate_existing: a session reused across update + re-read never
      returns stale collections from its identity map
    - Only relations in the include tree are loaded (selectinload) and serialized
    - Replace-set writes leave the collection holding exactly connect + create; removed
      members are unlinked, or deleted when the plan says delete_on_disconnect
    - Every SQLAlchemyError is logged and re-raised as an opaque InternalError
    - Never commits: the caller owns the transaction

Design Decisions:
    - Relations written by an update are selectinloaded before assignment: async sessions
      cannot lazy-load, and replace-set needs the current members
    - Connect targets are loaded in one IN query per relation; a missing id is NotFoundError.
      Ids are deduplicated after coercion, so 5 and "5" connect one row
    - Booleans and non-integral floats never address an integer key: they are NotFoundError
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from policy_crud.core.errors import ErrorContext, InternalError, NotFoundError
from policy_crud.core.mutation_diff import (
    MutationPlan,
    ToManyWrite,
    ToOneAction,
    ToOneWrite,
)
from policy_crud.core.order_by import OrderTerm
from policy_crud.core.where_tree import WhereNode
from policy_crud.infrastructure.sql_compiler import apply_order_by, compile_where

logger = logging.getLogger(__name__)


class SqlAlchemyStore:
    """CrudStore backed by a SQLAlchemy declarative model."""

    def __init__(self, model: type):
        self.model = model
        self._mapper = inspect(model)
        self.id_field = self._mapper.primary_key[0].key

    # ─── Reads ───────────────────────────────────────────────────

    def coerce_id(self, record_id: Any) -> Any:
        return _coerce_key(self.model, record_id)

    async def find_first(
        self, session: AsyncSession, where: WhereNode, include: dict,
    ) -> dict | None:
        stmt = (
            select(self.model)
            .where(compile_where(where, self.model))
            .options(*_include_options(self.model, include))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        async with self._store_errors("find_first"):
            result = await session.execute(stmt)
            obj = result.scalars().first()
        return to_dict(obj, include) if obj is not None else None

    async def find_many(
        self,
        session: AsyncSession,
        where: WhereNode,
        include: dict,
        order_by: list[OrderTerm],
        skip: int,
        take: int,
    ) -> list[dict]:
        stmt = select(self.model).where(compile_where(where, self.model))
        stmt = apply_order_by(stmt, self.model, order_by)
        stmt = (
            stmt.options(*_include_options(self.model, include))
            .offset(skip)
            .limit(take)
            .execution_options(populate_existing=True)
        )
        async with self._store_errors("find_many"):
            result = await session.execute(stmt)
            objs = result.scalars().all()
        return [to_dict(obj, include) for obj in objs]

    async def count(self, session: AsyncSession, where: WhereNode) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(compile_where(where, self.model))
        )
        async with self._store_errors("count"):
            result = await session.execute(stmt)
            return int(result.scalar_one())

    # ─── Writes ──────────────────────────────────────────────────

    async def create(self, session: AsyncSession, plan: MutationPlan) -> Any:
        obj = self.model(**plan.scalars)
        async with self._store_errors("create"):
            await self._apply_relations(session, obj, plan, persistent=False)
            session.add(obj)
            await session.flush()
        return getattr(obj, self.id_field)

    async def update(
        self, session: AsyncSession, record_id: Any, plan: MutationPlan,
    ) -> None:
        async with self._store_errors("update"):
            obj = await self._load_for_write(session, record_id, plan)
            for key, value in plan.scalars.items():
                setattr(obj, key, value)
            await self._apply_relations(session, obj, plan, persistent=True)
            await session.flush()

    async def delete(self, session: AsyncSession, record_id: Any) -> None:
        async with self._store_errors("delete"):
            obj = await session.get(self.model, record_id)
            if obj is None:
                raise NotFoundError(self.model.__name__, record_id)
            await session.delete(obj)
            await session.flush()

    async def _load_for_write(
        self, session: AsyncSession, record_id: Any, plan: MutationPlan,
    ) -> Any:
        stmt = (
            select(self.model)
            .where(getattr(self.model, self.id_field) == record_id)
            .options(*(
                selectinload(getattr(self.model, w.relation)) for w in plan.relations
            ))
            .execution_options(populate_existing=True)
        )
        obj = (await session.execute(stmt)).scalars().first()
        if obj is None:
            raise NotFoundError(self.model.__name__, record_id)
        return obj

    async def _apply_relations(
        self, session: AsyncSession, obj: Any, plan: MutationPlan, persistent: bool,
    ) -> None:
        for write in plan.relations:
            target = getattr(self.model, write.relation).property.mapper.class_
            if isinstance(write, ToOneWrite):
                await _apply_to_one(session, obj, write, target, persistent)
            else:
                await _apply_to_many(session, obj, write, target, persistent)

    @asynccontextmanager
    async def _store_errors(self, operation: str) -> AsyncGenerator[None, None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(
                f"Store {operation} failed on {self.model.__name__}: {e}",
                extra={"entity": self.model.__name__, "operation": operation},
            )
            raise InternalError(
                operation,
                ErrorContext(entity=self.model.__name__, operation=operation),
            )


async def _apply_to_one(
    session: AsyncSession, obj: Any, write: ToOneWrite, target: type, persistent: bool,
) -> None:
    if write.action == ToOneAction.CONNECT:
        (related,) = await _load_targets(session, target, [write.connect_id], write.relation)
        setattr(obj, write.relation, related)
    elif write.action == ToOneAction.CREATE:
        setattr(obj, write.relation, target(**write.data))
    else:
        previous = getattr(obj, write.relation) if persistent else None
        setattr(obj, write.relation, None)
        if write.delete_on_disconnect and previous is not None:
            await session.delete(previous)


async def _apply_to_many(
    session: AsyncSession, obj: Any, write: ToManyWrite, target: type, persistent: bool,
) -> None:
    members = await _load_targets(session, target, list(write.connect), write.relation)
    members.extend(target(**data) for data in write.create)

    previous = list(getattr(obj, write.relation)) if persistent else []
    setattr(obj, write.relation, members)
    if write.delete_on_disconnect:
        for removed in previous:
            if removed not in members:
                await session.delete(removed)


async def _load_targets(
    session: AsyncSession, target: type, ids: list, relation: str,
) -> list:
    if not ids:
        return []
    key_column = inspect(target).primary_key[0]
    keys = list(dict.fromkeys(_coerce_key(target, i, relation) for i in ids))
    result = await session.execute(select(target).where(key_column.in_(keys)))
    by_key = {getattr(o, key_column.key): o for o in result.scalars().all()}
    missing = [k for k in keys if k not in by_key]
    if missing:
        raise NotFoundError(relation, missing[0], ErrorContext(path=relation))
    return [by_key[k] for k in keys]


def _coerce_key(model: type, value: Any, resource: str | None = None) -> Any:
    column = inspect(model).primary_key[0]
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is int and (
        isinstance(value, bool) or (isinstance(value, float) and not value.is_integer())
    ):
        raise NotFoundError(resource or model.__name__, value)
    if isinstance(value, python_type):
        return value
    try:
        return python_type(value)
    except (TypeError, ValueError):
        raise NotFoundError(resource or model.__name__, value)


def _include_options(model: type, tree: dict, parent: Any = None) -> list:
    options = []
    for name, subtree in tree.items():
        attr = getattr(model, name)
        loader = parent.selectinload(attr) if parent is not None else selectinload(attr)
        nested = _include_options(attr.property.mapper.class_, subtree, loader)
        options.extend(nested or [loader])
    return options


def to_dict(obj: Any, include: dict) -> dict:
    """Serialize column attributes plus the relations named in the include tree."""
    mapper = inspect(obj).mapper
    record = {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    for name, subtree in include.items():
        value = getattr(obj, name)
        if value is None:
            record[name] = None
        elif mapper.relationships[name].uselist:
            record[name] = [to_dict(item, subtree) for item in value]
        else:
            record[name] = to_dict(value, subtree)
    return record


