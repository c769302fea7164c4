"""Shared pytest fixtures."""

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from inbox_enrich.processing.types import CustomLabel, EnrichmentRequest, InboundEmail
from inbox_enrich.providers.registry import ProviderRegistry
from inbox_enrich.storage.cache import EnrichmentCache
from inbox_enrich.storage.db import EnrichmentDatabase
from inbox_enrich.storage.tasks import TaskStore

USER = "me@example.com"


def make_email(id: str = "msg_1", **kwargs: str) -> InboundEmail:
    defaults = dict(sender="alice@example.com", content="Please review the budget by Friday.")
    return InboundEmail(id=id, **{**defaults, **kwargs})  # type: ignore[arg-type]


def make_provider(*responses: object, name: str = "anthropic") -> MagicMock:
    """Mock AIProvider whose generate() returns/raises ``responses`` in order.

    Non-string, non-exception responses are JSON-encoded first.
    """
    provider = MagicMock()
    provider.name = name
    provider.generate = AsyncMock(
        side_effect=[
            r if isinstance(r, (str, BaseException)) else json.dumps(r) for r in responses
        ]
    )
    return provider


@pytest.fixture
def db(tmp_path: Path) -> Iterator[EnrichmentDatabase]:
    database = EnrichmentDatabase(db_path=tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def cache(db: EnrichmentDatabase) -> EnrichmentCache:
    return EnrichmentCache(db)


@pytest.fixture
def task_store(db: EnrichmentDatabase) -> TaskStore:
    return TaskStore(db)


@pytest.fixture
def request_ctx() -> EnrichmentRequest:
    return EnrichmentRequest(
        credential="test-key",
        user_email=USER,
        custom_labels=(CustomLabel(name="Finance", prompt="Anything about money"),),
    )


def registry_for(provider: MagicMock) -> ProviderRegistry:
    return ProviderRegistry([provider])
