"""Policy CRUD API — FastAPI application factory.

Invariants:
    - Routers registered explicitly by the caller (no auto-discovery)
    - Global error handlers map CrudError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database initialized on startup via lifespan context manager, disposed on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Factory instead of a module-level app: entity routers are application-specific,
      so the embedding project builds its services and hands the routers in
    - An already-initialized db_manager is kept (tests and embedders may init their own)
"""

import logging
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from policy_crud.api import health
from policy_crud.api.error_handlers import register_error_handlers
from policy_crud.config import Settings, get_settings
from policy_crud.infrastructure import database
from policy_crud.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


def create_app(
    routers: Iterable[APIRouter] = (), settings: Settings | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle."""
        setup_logging(settings.log_level, settings.log_format)
        if database.db_manager is None:
            database.init_db(
                settings.database_url,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
            )
        logger.info("Policy CRUD API started")
        yield
        logger.info("Policy CRUD API shutting down")
        await database.get_db_manager().dispose()

    app = FastAPI(title="Policy CRUD API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    for router in routers:
        app.include_router(router)

    register_error_handlers(app)
    return app
