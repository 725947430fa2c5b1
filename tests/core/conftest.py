"""Core test fixtures — the blog schema registry, no database."""

import pytest

from tests.services.models import build_registry


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def user(registry):
    return registry.get("User")


@pytest.fixture
def post(registry):
    return registry.get("Post")
