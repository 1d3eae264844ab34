"""Unit tests for the execution queue."""

import uuid
from datetime import timedelta

import pytest

from models.database import ExecutionQueueItem, utcnow
from models.enums import ExecutionQueueStatus, WorkflowNodeType
from services.execution.errors import NotFoundError, WorkspaceAccessError
from services.execution.queue import ExecutionQueueService, InvalidQueueTransition


@pytest.fixture
def queue(database):
    return ExecutionQueueService(database)


@pytest.fixture
def add_items(database):
    """Insert queue items directly, one per age in minutes."""
    async def _add(workspace_id, ages_minutes, status=ExecutionQueueStatus.PENDING):
        now = utcnow()
        items = [
            ExecutionQueueItem(
                workspace_id=workspace_id,
                workflow_definition_id=uuid.uuid4(),
                status=status,
                created_at=now - timedelta(minutes=age),
            )
            for age in ages_minutes
        ]
        async with database.get_session() as session:
            session.add_all(items)
            await session.commit()
        return items
    return _add


async def reload(database, item_id):
    async with database.get_session() as session:
        return await session.get(ExecutionQueueItem, item_id)


class TestEnqueue:
    """Tests for ExecutionQueueService.enqueue."""

    async def test_enqueue_pending(self, queue, create_workspace, create_workflow):
        workspace = await create_workspace()
        definition, _, _ = await create_workflow(
            workspace.id, [("start", WorkflowNodeType.TRIGGER, "FUNCTION", {})]
        )

        item = await queue.enqueue(workspace.id, definition.id, input={"order": 7})

        assert item.status == ExecutionQueueStatus.PENDING
        assert item.attempt_count == 0
        assert item.input == {"order": 7}
        assert await queue.get_pending_count(workspace.id) == 1

    async def test_unknown_definition(self, queue):
        with pytest.raises(NotFoundError):
            await queue.enqueue(uuid.uuid4(), uuid.uuid4())

    async def test_definition_of_another_workspace(self, queue, create_workspace, create_workflow):
        owner = await create_workspace(name="Owner")
        other = await create_workspace(name="Other")
        definition, _, _ = await create_workflow(
            owner.id, [("start", WorkflowNodeType.TRIGGER, "FUNCTION", {})]
        )
        with pytest.raises(WorkspaceAccessError):
            await queue.enqueue(other.id, definition.id)


class TestClaimBatch:
    """Tests for claiming PENDING items."""

    async def test_claims_oldest_first_up_to_limit(self, queue, add_items):
        workspace_id = uuid.uuid4()
        middle, oldest, newest = await add_items(workspace_id, [2, 3, 1])

        claimed = await queue.claim_batch(2)

        assert [item.id for item in claimed] == [oldest.id, middle.id]
        assert all(item.status == ExecutionQueueStatus.CLAIMED for item in claimed)
        assert all(item.claimed_at is not None for item in claimed)
        assert await queue.get_pending_count() == 1

    async def test_only_pending_items_are_claimed(self, queue, add_items):
        workspace_id = uuid.uuid4()
        await add_items(workspace_id, [5], status=ExecutionQueueStatus.DISPATCHED)
        await add_items(workspace_id, [4], status=ExecutionQueueStatus.FAILED)
        assert await queue.claim_batch(10) == []

    async def test_claimed_items_not_claimed_again(self, queue, add_items):
        await add_items(uuid.uuid4(), [1, 2])
        first = await queue.claim_batch(10)
        second = await queue.claim_batch(10)
        assert len(first) == 2
        assert second == []


class TestTransitions:
    """Tests for per-item state transitions."""

    async def test_dispatch_requires_claim(self, queue, database, add_items):
        (item,) = await add_items(uuid.uuid4(), [1])
        async with database.get_session() as session:
            pending = await queue.get_item(session, item.id)
            with pytest.raises(InvalidQueueTransition, match="PENDING to DISPATCHED"):
                queue.mark_dispatched(session, pending)

    async def test_mark_failed_counts_attempt(self, queue, database, add_items):
        await add_items(uuid.uuid4(), [1])
        (claimed,) = await queue.claim_batch(1)

        async with database.get_session() as session:
            item = await queue.get_item(session, claimed.id)
            queue.mark_failed(session, item, "x" * 5000)
            await session.commit()

        failed = await reload(database, claimed.id)
        assert failed.status == ExecutionQueueStatus.FAILED
        assert failed.attempt_count == 1
        assert len(failed.last_error) == 2000

    async def test_release_clears_claim(self, queue, database, add_items):
        await add_items(uuid.uuid4(), [1])
        (claimed,) = await queue.claim_batch(1)

        async with database.get_session() as session:
            item = await queue.get_item(session, claimed.id)
            queue.release_to_pending(session, item, reason="busy")
            await session.commit()

        released = await reload(database, claimed.id)
        assert released.status == ExecutionQueueStatus.PENDING
        assert released.claimed_at is None
        assert released.last_error == "busy"

    async def test_terminal_states_do_not_move(self, queue, database, add_items):
        (item,) = await add_items(uuid.uuid4(), [1], status=ExecutionQueueStatus.DISPATCHED)
        async with database.get_session() as session:
            dispatched = await queue.get_item(session, item.id)
            with pytest.raises(InvalidQueueTransition):
                queue.release_to_pending(session, dispatched)


class TestStaleRecovery:
    """Tests for recover_stale_items."""

    async def test_stale_claim_is_reclaimable(self, queue, database, add_items):
        """A claim abandoned by a crashed dispatcher returns to PENDING."""
        await add_items(uuid.uuid4(), [10, 9])
        stale, fresh = await queue.claim_batch(2)

        async with database.get_session() as session:
            item = await queue.get_item(session, stale.id)
            item.claimed_at = utcnow() - timedelta(minutes=6)
            session.add(item)
            await session.commit()

        assert await queue.recover_stale_items(5) == 1

        recovered = await reload(database, stale.id)
        assert recovered.status == ExecutionQueueStatus.PENDING
        assert recovered.attempt_count == 1
        assert recovered.last_error == "claim went stale"
        assert (await reload(database, fresh.id)).status == ExecutionQueueStatus.CLAIMED

        reclaimed = await queue.claim_batch(10)
        assert [item.id for item in reclaimed] == [stale.id]

    @pytest.mark.parametrize("status", [
        ExecutionQueueStatus.PENDING,
        ExecutionQueueStatus.DISPATCHED,
        ExecutionQueueStatus.FAILED,
    ])
    async def test_only_claimed_rows_are_reset(self, queue, database, add_items, status):
        """Rows outside CLAIMED keep status and attempts even with an old claimed_at."""
        (item,) = await add_items(uuid.uuid4(), [30], status=status)
        async with database.get_session() as session:
            row = await queue.get_item(session, item.id)
            row.claimed_at = utcnow() - timedelta(minutes=20)
            row.attempt_count = 2
            session.add(row)
            await session.commit()

        assert await queue.recover_stale_items(5) == 0

        untouched = await reload(database, item.id)
        assert untouched.status == status
        assert untouched.attempt_count == 2
        assert untouched.last_error is None

    async def test_nothing_stale(self, queue, add_items):
        await add_items(uuid.uuid4(), [1])
        await queue.claim_batch(1)
        assert await queue.recover_stale_items(5) == 0


class TestPendingCount:
    """Tests for get_pending_count."""

    async def test_scoped_by_workspace(self, queue, add_items):
        ours, theirs = uuid.uuid4(), uuid.uuid4()
        await add_items(ours, [1, 2])
        await add_items(theirs, [3])
        assert await queue.get_pending_count(ours) == 2
        assert await queue.get_pending_count() == 3
