"""Concurrent queue claims against a real PostgreSQL, where SKIP LOCKED applies."""

import asyncio
import uuid
from datetime import timedelta

import pytest

from core.config import Settings
from core.database import Database
from models.database import ExecutionQueueItem, utcnow
from services.execution.queue import ExecutionQueueService

pytestmark = pytest.mark.integration


@pytest.fixture(scope="module")
def postgres_url():
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker unavailable: {e}")
    try:
        yield container.get_connection_url(driver="asyncpg")
    finally:
        container.stop()


@pytest.fixture
async def databases(postgres_url):
    """Two independent engines, as two dispatcher processes would have."""
    settings = Settings(database_url=postgres_url, log_format="console")
    first, second = Database(settings), Database(settings)
    await first.startup()
    await second.startup()
    yield first, second
    await first.shutdown()
    await second.shutdown()


class TestConcurrentClaims:
    """Two dispatchers claiming at once never receive the same row."""

    async def test_parallel_claims_are_disjoint(self, databases):
        first, second = databases
        now = utcnow()
        workspace_id = uuid.uuid4()
        async with first.get_session() as session:
            session.add_all([
                ExecutionQueueItem(
                    workspace_id=workspace_id,
                    workflow_definition_id=uuid.uuid4(),
                    created_at=now - timedelta(seconds=i),
                )
                for i in range(20)
            ])
            await session.commit()

        claims_a, claims_b = await asyncio.gather(
            ExecutionQueueService(first).claim_batch(10),
            ExecutionQueueService(second).claim_batch(10),
        )

        ids_a = {item.id for item in claims_a}
        ids_b = {item.id for item in claims_b}
        assert len(ids_a) == len(claims_a)
        assert len(ids_b) == len(claims_b)
        assert ids_a.isdisjoint(ids_b)
        assert len(ids_a | ids_b) == 20
        assert await ExecutionQueueService(first).get_pending_count(workspace_id) == 0
