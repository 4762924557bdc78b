"""Shared test fixtures and configuration."""

from __future__ import annotations

from typing import Any

import pytest
from fakes import FakeBackend
from pydantic import BaseModel, Field

from esodm.config.settings import RetryPolicy, Settings
from esodm.models.config import ModelConfig
from esodm.repository import Repository


class UserSchema(BaseModel):
    """Schema of the ``users`` test collection."""

    name: str
    age: int = Field(ge=0)
    tags: list[str] = Field(default_factory=list)


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance with defaults."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def policy() -> RetryPolicy:
    """Retry policy with millisecond backoff and small pages."""
    return RetryPolicy(max_retries=3, base=0.01, page_limit=10000, bulk_size=1000)


@pytest.fixture
def user_documents() -> list[dict[str, Any]]:
    return [{"id": f"u{i:02d}", "name": f"user-{i:02d}", "age": i, "tags": ["even" if i % 2 == 0 else "odd"]} for i in range(25)]


@pytest.fixture
def users(backend: FakeBackend, policy: RetryPolicy, user_documents: list[dict[str, Any]]) -> Repository:
    """Repository over ``acme_users`` seeded with 25 documents."""
    backend.seed("acme_users-1", user_documents, alias="acme_users")
    return Repository(ModelConfig(tenant="acme", base_name="users", schema_model=UserSchema), backend, policy)


@pytest.fixture
def empty_users(backend: FakeBackend, policy: RetryPolicy) -> Repository:
    """Repository over an existing but empty ``acme_users`` collection."""
    backend.seed("acme_users-1", [], alias="acme_users")
    return Repository(ModelConfig(tenant="acme", base_name="users", schema_model=UserSchema), backend, policy)
