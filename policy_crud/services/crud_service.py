"""Crud Service — orchestrates parse, validate, store, redact for one entity.

Invariants:
    - Allowlist, default include tree and pagination settings are built once in __init__
      and never mutated; one instance can serve concurrent requests
    - Every validation step completes before the first mutating store call
    - update/remove check visibility through the same read path as find_one: a record the
      caller cannot see is NotFound, never Forbidden (no existence leakage)
    - Writes are keyed by the fetched record's own id, never by the client-supplied one
    - create/update respond through find_one, so fresh records obey read redaction
    - Policy-scoped queries: AND[0] is validated as trusted, AND[1] against the allowlist

Design Decisions:
    - opts.transaction is used as-is and never committed here: the caller owns atomicity.
      Without it each operation opens one session and commits after its write, so the
      visibility check and the write are not atomic as a unit (documented caveat)
    - Store is injected (CrudStore protocol): the service never imports SQLAlchemy models
"""

import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from policy_crud.core.entity_schema import SchemaRegistry
from policy_crud.core.errors import (
    ConfigurationError,
    CrudError,
    CrudValidationError,
    ErrorContext,
    NotFoundError,
)
from policy_crud.core.include_builder import include_tree_from_joins, resolve_includes
from policy_crud.core.join_allowlist import (
    build_allowed_joins,
    check_joins_resolve,
    sanitize_default_joins,
)
from policy_crud.core.mutation_diff import MutationPlan, diff_mutation
from policy_crud.core.order_by import validate_order_by
from policy_crud.core.paginator import PaginationSettings, compute_pagination, page_count
from policy_crud.core.policy import parse_descriptor, split_policy_where
from policy_crud.core.redaction import prune_record
from policy_crud.core.store_protocol import CrudStore
from policy_crud.core.where_tree import Leaf, Operator, WhereNode, and_nodes
from policy_crud.core.where_validator import validate_where
from policy_crud.infrastructure.database import DatabaseSessionManager, get_db_manager
from policy_crud.schemas.crud_config import CrudServiceConfig
from policy_crud.schemas.crud_query import CrudQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrudMethodOpts:
    """Per-call options. crud_query is the raw descriptor (JSON string or dict)."""
    crud_query: str | dict | None = None
    exclude_forbidden_paths: bool = True
    transaction: AsyncSession | None = None
    policy_scoped: bool = False


DEFAULT_OPTS = CrudMethodOpts()


class CrudService:
    """Policy-constrained CRUD over one entity."""

    def __init__(
        self,
        config: CrudServiceConfig,
        registry: SchemaRegistry,
        store: CrudStore,
        db_manager: DatabaseSessionManager | None = None,
    ):
        self.config = config
        self.entity = registry.get(config.entity)
        self.registry = registry
        self.store = store
        self.id_field = config.id_field
        self._db_manager = db_manager

        self.allowed_joins = build_allowed_joins(config.allowed_joins)
        check_joins_resolve(self.allowed_joins, self.entity, registry)
        self.default_joins = sanitize_default_joins(config.default_joins, self.allowed_joins)
        self.default_include = include_tree_from_joins(self.default_joins)
        self.forbidden_paths = list(config.forbidden_paths)

        self.pagination = PaginationSettings(
            default_page_size=config.pagination.default_page_size,
            max_page_size=config.pagination.max_page_size,
            default_order_by=config.resolved_order_by(),
        )
        try:
            validate_order_by(
                self.pagination.default_order_by, self.entity, registry, self.allowed_joins,
            )
        except CrudError as e:
            raise ConfigurationError(f"Invalid default orderBy for {self.entity.name}: {e.message}")

    # ─── Operations ──────────────────────────────────────────────

    async def create(self, create_dto: Any, opts: CrudMethodOpts = DEFAULT_OPTS) -> dict:
        plan = diff_mutation(
            create_dto, self.entity, self.registry, self.allowed_joins, self.id_field,
        )
        async with self._session(opts) as session:
            new_id = await self.store.create(session, plan)
            await self._commit(session, opts)
            self._log_plan("create", new_id, plan)
            return (await self._find_visible(session, new_id, opts))[1]

    async def find_many(self, opts: CrudMethodOpts = DEFAULT_OPTS) -> dict:
        query = self._parse_crud_query(opts)
        where = self._validate_where(query, opts)
        pagination = compute_pagination(
            query.page, query.page_size, query.order_by, self.pagination,
        )
        order_terms = validate_order_by(
            pagination.order_by, self.entity, self.registry, self.allowed_joins,
        )
        include = resolve_includes(query.joins, self.allowed_joins, self.default_include)

        async with self._session(opts) as session:
            total = await self.store.count(session, where)
            rows = await self.store.find_many(
                session, where, include, order_terms, pagination.skip, pagination.take,
            )

        for row in rows:
            self._redact(row, query, opts)
        logger.info(
            f"find_many {self.entity.name}: {len(rows)} of {total} records",
            extra={"entity": self.entity.name, "operation": "find_many"},
        )
        return {
            "data": rows,
            "totalRecords": total,
            "pageCount": page_count(total, pagination.page_size),
            "page": pagination.page,
            "pageSize": pagination.page_size,
            "orderBy": pagination.order_by,
        }

    async def find_one(self, record_id: Any, opts: CrudMethodOpts = DEFAULT_OPTS) -> dict:
        async with self._session(opts) as session:
            return (await self._find_visible(session, record_id, opts))[1]

    async def update(
        self, record_id: Any, update_dto: Any, opts: CrudMethodOpts = DEFAULT_OPTS,
    ) -> dict:
        async with self._session(opts) as session:
            existing, _ = await self._find_visible(session, record_id, opts)
            plan = diff_mutation(
                update_dto, self.entity, self.registry, self.allowed_joins,
                self.id_field, existing=existing,
            )
            own_id = existing[self.id_field]
            await self.store.update(session, own_id, plan)
            await self._commit(session, opts)
            self._log_plan("update", own_id, plan)
            return (await self._find_visible(session, own_id, opts))[1]

    async def remove(self, record_id: Any, opts: CrudMethodOpts = DEFAULT_OPTS) -> None:
        async with self._session(opts) as session:
            existing, _ = await self._find_visible(session, record_id, opts)
            own_id = existing[self.id_field]
            await self.store.delete(session, own_id)
            await self._commit(session, opts)
        logger.info(
            f"remove {self.entity.name} {own_id}",
            extra={"entity": self.entity.name, "operation": "remove", "record_id": str(own_id)},
        )
        return None

    # ─── Read path ───────────────────────────────────────────────

    async def _find_visible(
        self, session: AsyncSession, record_id: Any, opts: CrudMethodOpts,
    ) -> tuple[dict, dict]:
        """Fetch one record through the caller's filter. Returns (raw, redacted)."""
        query = self._parse_crud_query(opts)
        where = self._validate_where(query, opts)
        include = resolve_includes(query.joins, self.allowed_joins, self.default_include)
        key = self.store.coerce_id(record_id)

        match = await self.store.find_first(
            session, and_nodes(where, Leaf(self.id_field, Operator.EQUALS, key)), include,
        )
        if match is None:
            raise NotFoundError(
                self.entity.name, record_id,
                ErrorContext(entity=self.entity.name, operation="find_one"),
            )
        raw = copy.deepcopy(match)
        return raw, self._redact(match, query, opts)

    def _parse_crud_query(self, opts: CrudMethodOpts) -> CrudQuery:
        if opts.crud_query is None or opts.crud_query == "":
            return CrudQuery(
                where={},
                joins=self.default_joins,
                order_by=self.pagination.default_order_by,
                page=1,
                page_size=self.pagination.default_page_size,
            )
        try:
            return CrudQuery.model_validate(parse_descriptor(opts.crud_query))
        except ValidationError as e:
            raise CrudValidationError(f"Malformed query descriptor: {e.error_count()} error(s)")

    def _validate_where(self, query: CrudQuery, opts: CrudMethodOpts) -> WhereNode:
        where = query.where or {}
        if not opts.policy_scoped:
            return validate_where(where, self.entity, self.registry, self.allowed_joins)

        trusted, client = split_policy_where(where)
        return and_nodes(
            validate_where(trusted, self.entity, self.registry, None),
            validate_where(client, self.entity, self.registry, self.allowed_joins),
        )

    def _redact(self, record: dict, query: CrudQuery, opts: CrudMethodOpts) -> dict:
        select = query.select
        return prune_record(
            record,
            self.forbidden_paths if opts.exclude_forbidden_paths else [],
            select_only=select.only if select else None,
            select_except=select.except_ if select else None,
            id_field=self.id_field,
        )

    # ─── Sessions ────────────────────────────────────────────────

    @asynccontextmanager
    async def _session(self, opts: CrudMethodOpts) -> AsyncGenerator[AsyncSession, None]:
        if opts.transaction is not None:
            yield opts.transaction
            return
        manager = self._db_manager or get_db_manager()
        async with manager.session() as session:
            yield session

    async def _commit(self, session: AsyncSession, opts: CrudMethodOpts) -> None:
        if opts.transaction is None:
            await session.commit()

    def _log_plan(self, operation: str, record_id: Any, plan: MutationPlan) -> None:
        logger.info(
            f"{operation} {self.entity.name} {record_id}: "
            f"{len(plan.scalars)} field(s), "
            f"relations {[w.relation for w in plan.relations]}",
            extra={
                "entity": self.entity.name,
                "operation": operation,
                "record_id": str(record_id),
            },
        )
