"""Integration test fixtures (require a running PostgreSQL)."""

from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from courier.core.models.queue import PostgresQueueConfig
from courier.core.queues.postgres import PostgresQueue

# Loaded from .env.test by the root conftest when present
DB_URL = os.environ.get('COURIER_TEST_DATABASE_URL')


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    if DB_URL:
        return
    skip = pytest.mark.skip(reason='COURIER_TEST_DATABASE_URL is not set')
    for item in items:
        if 'integration' in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def queue_config() -> PostgresQueueConfig:
    """Config with a queue name unique to the test, so tests never share rows."""
    assert DB_URL is not None
    return PostgresQueueConfig(
        database_url=DB_URL,
        queue_name=f'test-{uuid.uuid4().hex[:12]}',
        visibility_timeout_ms=1_000,
        pool_size=2,
        max_overflow=2,
    )


@pytest_asyncio.fixture
async def queue(queue_config: PostgresQueueConfig) -> AsyncGenerator[PostgresQueue, None]:
    """PostgresQueue with its table created."""
    q = PostgresQueue(queue_config)
    await q.ensure_schema_initialized()
    yield q
    await q.close()
