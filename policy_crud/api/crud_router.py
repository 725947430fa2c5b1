"""Crud Router — mounts one CrudService as five REST endpoints.

Invariants:
    - The query descriptor arrives as a single JSON-encoded query parameter (crudQuery)
    - The request-scoped session from get_db is passed as the transaction; the router
      commits after a successful write, and the session manager rolls back on any error
    - When a policy is configured it runs on every request, before the service sees the
      descriptor, and the call is marked policy-scoped
    - Routes carry no business logic: parse the request, delegate, return

Design Decisions:
    - Factory over module-level router: one router per entity, prefix/tags from the caller
    - DELETE answers 200 with {} (existing clients expect a JSON body)
    - policy may be sync or async: callers often need a DB or token lookup to build it
"""

import inspect
import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from policy_crud.config import get_settings
from policy_crud.core.policy import inject_policy
from policy_crud.infrastructure.database import get_db
from policy_crud.services.crud_service import CrudMethodOpts, CrudService

logger = logging.getLogger(__name__)

PolicyProvider = Callable[[Request], dict | Awaitable[dict]]


def build_crud_router(
    service: CrudService,
    prefix: str,
    tags: list[str] | None = None,
    policy: PolicyProvider | None = None,
    query_param: str | None = None,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=tags or [service.entity.name])
    param = query_param or get_settings().crud_query_param

    async def opts_for(request: Request, db: AsyncSession) -> CrudMethodOpts:
        raw = request.query_params.get(param)
        if policy is None:
            return CrudMethodOpts(crud_query=raw, transaction=db)

        predicate = policy(request)
        if inspect.isawaitable(predicate):
            predicate = await predicate
        return CrudMethodOpts(
            crud_query=inject_policy(raw, predicate),
            transaction=db,
            policy_scoped=True,
        )

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_record(
        request: Request,
        payload: dict[str, Any] = Body(...),
        db: AsyncSession = Depends(get_db),
    ):
        record = await service.create(payload, await opts_for(request, db))
        await db.commit()
        return record

    @router.get("")
    async def list_records(request: Request, db: AsyncSession = Depends(get_db)):
        return await service.find_many(await opts_for(request, db))

    @router.get("/{record_id}")
    async def get_record(
        record_id: str, request: Request, db: AsyncSession = Depends(get_db),
    ):
        return await service.find_one(record_id, await opts_for(request, db))

    @router.patch("/{record_id}")
    async def update_record(
        record_id: str,
        request: Request,
        payload: dict[str, Any] = Body(...),
        db: AsyncSession = Depends(get_db),
    ):
        record = await service.update(record_id, payload, await opts_for(request, db))
        await db.commit()
        return record

    @router.delete("/{record_id}")
    async def delete_record(
        record_id: str, request: Request, db: AsyncSession = Depends(get_db),
    ):
        await service.remove(record_id, await opts_for(request, db))
        await db.commit()
        return {}

    return router
