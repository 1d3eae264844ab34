"""Execution queue: a shared backlog of workflow runs waiting for dispatch.

Rows move PENDING -> CLAIMED -> DISPATCHED | FAILED, or back from CLAIMED to
PENDING when a claim goes stale, the workspace is at capacity, or a dispatch
attempt fails with attempts left. Claims use ``FOR UPDATE SKIP LOCKED`` so
concurrent dispatchers never receive the same row.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from core.database import Database
from core.logging import get_logger
from models.database import ExecutionQueueItem, utcnow
from models.enums import ExecutionQueueStatus
from services.execution.errors import NotFoundError, WorkspaceAccessError

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 2000


class InvalidQueueTransition(RuntimeError):
    """A queue item was moved out of a state it is not in."""


def _transition(item: ExecutionQueueItem, to: ExecutionQueueStatus, *allowed: ExecutionQueueStatus) -> None:
    if item.status not in allowed:
        raise InvalidQueueTransition(
            f"Queue item {item.id} cannot move from {item.status.value} to {to.value}"
        )
    item.status = to


class ExecutionQueueService:
    """Queue persistence. Per-item transitions take the caller's session."""

    def __init__(self, database: Database):
        self.database = database

    # ============================================================================
    # Producers
    # ============================================================================

    async def enqueue(self, workspace_id: UUID, workflow_definition_id: UUID,
                      input: Optional[Dict[str, Any]] = None) -> ExecutionQueueItem:
        """Add a PENDING item after checking the definition belongs to the workspace."""
        async with self.database.get_session() as session:
            definition = await self.database.get_workflow_definition(workflow_definition_id, session=session)
            if definition is None:
                raise NotFoundError(f"Workflow definition {workflow_definition_id} not found")
            if definition.workspace_id != workspace_id:
                raise WorkspaceAccessError(
                    f"Workflow definition {workflow_definition_id} does not belong to workspace {workspace_id}"
                )

            item = ExecutionQueueItem(
                workspace_id=workspace_id,
                workflow_definition_id=workflow_definition_id,
                input=input,
                created_at=utcnow(),
            )
            session.add(item)
            await session.commit()

        logger.info("Execution enqueued", item_id=str(item.id),
                    workflow_definition_id=str(workflow_definition_id))
        return item

    # ============================================================================
    # Claiming
    # ============================================================================

    async def claim_batch(self, batch_size: int) -> List[ExecutionQueueItem]:
        """Claim up to ``batch_size`` of the oldest PENDING items in one transaction."""
        async with self.database.get_session() as session:
            stmt = (
                select(ExecutionQueueItem)
                .where(ExecutionQueueItem.status == ExecutionQueueStatus.PENDING)
                .order_by(col(ExecutionQueueItem.created_at))
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            )
            items = list((await session.execute(stmt)).scalars().all())

            now = utcnow()
            for item in items:
                _transition(item, ExecutionQueueStatus.CLAIMED, ExecutionQueueStatus.PENDING)
                item.claimed_at = now
                session.add(item)
            await session.commit()

        if items:
            logger.info("Claimed queue items", count=len(items))
        return items

    async def get_item(self, session: AsyncSession, item_id: UUID) -> Optional[ExecutionQueueItem]:
        return await session.get(ExecutionQueueItem, item_id)

    # ============================================================================
    # Transitions (caller commits)
    # ============================================================================

    def mark_dispatched(self, session: AsyncSession, item: ExecutionQueueItem) -> None:
        _transition(item, ExecutionQueueStatus.DISPATCHED, ExecutionQueueStatus.CLAIMED)
        item.dispatched_at = utcnow()
        session.add(item)

    def mark_failed(self, session: AsyncSession, item: ExecutionQueueItem, error: str) -> None:
        _transition(item, ExecutionQueueStatus.FAILED, ExecutionQueueStatus.CLAIMED)
        item.attempt_count += 1
        item.last_error = (error or "")[:_MAX_ERROR_LENGTH]
        session.add(item)
        logger.warning("Queue item failed", item_id=str(item.id), attempts=item.attempt_count, error=error)

    def release_to_pending(self, session: AsyncSession, item: ExecutionQueueItem,
                           reason: Optional[str] = None) -> None:
        _transition(item, ExecutionQueueStatus.PENDING, ExecutionQueueStatus.CLAIMED)
        item.claimed_at = None
        item.attempt_count += 1
        if reason:
            item.last_error = reason[:_MAX_ERROR_LENGTH]
        session.add(item)

    def set_execution_id(self, session: AsyncSession, item: ExecutionQueueItem, execution_id: UUID) -> None:
        item.execution_id = execution_id
        session.add(item)

    # ============================================================================
    # Maintenance
    # ============================================================================

    async def recover_stale_items(self, threshold_minutes: int) -> int:
        """Return CLAIMED items older than the threshold to PENDING."""
        cutoff = utcnow() - timedelta(minutes=threshold_minutes)
        async with self.database.get_session() as session:
            stmt = (
                select(ExecutionQueueItem)
                .where(
                    ExecutionQueueItem.status == ExecutionQueueStatus.CLAIMED,
                    col(ExecutionQueueItem.claimed_at) < cutoff,
                )
                .with_for_update(skip_locked=True)
            )
            stale = list((await session.execute(stmt)).scalars().all())
            for item in stale:
                self.release_to_pending(session, item, reason="claim went stale")
            await session.commit()

        if stale:
            logger.warning("Recovered stale queue items", count=len(stale), threshold_minutes=threshold_minutes)
        return len(stale)

    async def get_pending_count(self, workspace_id: Optional[UUID] = None) -> int:
        async with self.database.get_session() as session:
            stmt = select(func.count()).select_from(ExecutionQueueItem).where(
                ExecutionQueueItem.status == ExecutionQueueStatus.PENDING
            )
            if workspace_id is not None:
                stmt = stmt.where(ExecutionQueueItem.workspace_id == workspace_id)
            return int((await session.execute(stmt)).scalar_one())
