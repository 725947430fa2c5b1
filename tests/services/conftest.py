"""Service test fixtures — CrudServices over the test database and an HTTP client.

Invariants:
    - db_manager is patched to the test engine: services opening their own sessions and
      the get_db dependency both land on the same database

Design Decisions:
    - db_manager patched instead of overriding get_db: the router and the services share
      one code path, so the session manager's rollback/error mapping is exercised too
    - Services built from real configs: the fixtures double as configuration examples
"""

import re

import pytest
from httpx import ASGITransport, AsyncClient

import policy_crud.infrastructure.database as db_module
from policy_crud.api.crud_router import build_crud_router
from policy_crud.core.policy import must_match_value
from policy_crud.infrastructure.database import DatabaseSessionManager
from policy_crud.infrastructure.sqlalchemy_store import SqlAlchemyStore
from policy_crud.main import create_app
from policy_crud.schemas.crud_config import CrudServiceConfig, PaginationConfig
from policy_crud.services.crud_service import CrudService
from tests.services.models import Country, Post, User, build_registry


@pytest.fixture
def db_manager(test_engine, test_session_factory, monkeypatch):
    """DatabaseSessionManager bound to the test engine, installed as the process singleton."""
    manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    manager.engine = test_engine
    manager._session_factory = test_session_factory
    monkeypatch.setattr(db_module, "db_manager", manager)
    return manager


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def user_config():
    return CrudServiceConfig(
        entity="User",
        allowed_joins=["posts.comments", "profile", "country"],
        default_joins=[],
        forbidden_paths=["password_hash", "posts.comments.body"],
        pagination=PaginationConfig(
            default_page_size=10, max_page_size=50, default_order_by=[{"email": "asc"}],
        ),
    )


@pytest.fixture
def post_config():
    return CrudServiceConfig(
        entity="Post",
        allowed_joins=["author", "comments", "categories"],
        default_joins=["author"],
        forbidden_paths=[re.compile(r"author\.(password_hash|email)")],
        pagination=PaginationConfig(default_order_by=[{"title": "asc"}]),
    )


@pytest.fixture
def user_service(user_config, registry, db_manager):
    return CrudService(user_config, registry, SqlAlchemyStore(User), db_manager)


@pytest.fixture
def post_service(post_config, registry, db_manager):
    return CrudService(post_config, registry, SqlAlchemyStore(Post), db_manager)


@pytest.fixture
def country_service(registry, db_manager):
    config = CrudServiceConfig(entity="Country")
    return CrudService(config, registry, SqlAlchemyStore(Country), db_manager)


async def _author_policy(request):
    return {"author": {"id": request.headers.get("x-user-id", "")}}


@pytest.fixture
async def client(db_manager, user_service, post_service):
    """FastAPI test client over user, post and policy-scoped post routers."""
    app = create_app(routers=[
        build_crud_router(user_service, "/users"),
        build_crud_router(post_service, "/posts"),
        build_crud_router(post_service, "/feed", policy=must_match_value("published", True)),
        build_crud_router(post_service, "/my-posts", policy=_author_policy),
    ])
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
