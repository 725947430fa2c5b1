"""Root conftest — shared test configuration and database fixtures.

Invariants:
    - Every test using test_engine gets a fresh in-memory SQLite database
    - Seed data is committed before the test body runs

Design Decisions:
    - SQLite in-memory with StaticPool: one shared connection, so every session sees the
      same database (PostgreSQL-specific features are not exercised here)
"""

import os

# Ensure tests never reach a real database
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///:memory:",
)
os.environ.setdefault("LOG_FORMAT", "text")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession, create_async_engine, async_sessionmaker,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from tests.services.models import (  # noqa: E402
    Base, Category, Comment, Country, Post, Profile, User,
)


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def seed(test_db):
    """Two users with posts, comments, a profile, a country and categories.

    Returns dict of ids keyed by a short name.
    """
    portugal = Country(name="Portugal")
    alice = User(email="alice@x.io", name="Alice", password_hash="a-hash", country=portugal)
    bob = User(email="bob@x.io", name="Bob", password_hash="b-hash")
    alice.profile = Profile(bio="Alice bio")
    news, tech = Category(name="News"), Category(name="Tech")
    hello = Post(title="Hello", content="first", published=True, author=alice, categories=[news])
    draft = Post(title="Draft", content="wip", published=False, author=alice)
    bobs = Post(title="Bob post", content="hi", published=True, author=bob, categories=[tech])
    hello.comments = [Comment(body="Nice"), Comment(body="Spam offer")]

    test_db.add_all([portugal, alice, bob, news, tech, hello, draft, bobs])
    await test_db.commit()
    return {
        "portugal": portugal.id,
        "alice": alice.id,
        "bob": bob.id,
        "alice_profile": alice.profile.id,
        "news": news.id,
        "tech": tech.id,
        "hello": hello.id,
        "draft": draft.id,
        "bobs": bobs.id,
        "comments": [c.id for c in hello.comments],
    }
