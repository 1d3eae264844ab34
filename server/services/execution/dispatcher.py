"""Execution queue dispatcher.

Every poll interval, one process in the cluster (the lease holder) claims a
batch of PENDING items and starts a Temporal workflow for each. Every item is
handled in its own session so one failure never affects the rest of the batch.
"""

import time
from datetime import timedelta
from typing import Optional, Tuple, TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from temporalio.exceptions import WorkflowAlreadyStartedError

from constants import LEASE_DURATIONS, PROCESS_QUEUE_LOCK, RECOVER_STALE_LOCK, execution_workflow_id
from core.database import Database
from core.logging import get_logger, log_execution_time
from models.database import (
    ExecutionQueueItem,
    WorkflowDefinitionVersion,
    WorkflowExecution,
    utcnow,
)
from models.enums import ExecutionQueueStatus, TriggerType, WorkflowStatus, WorkspacePlan
from services.execution.lease import LeaseManager
from services.execution.models import RetryPolicy, WorkflowRequest
from services.execution.queue import ExecutionQueueService

if TYPE_CHECKING:
    from core.config import Settings
    from services.temporal.executor import TemporalExecutor

logger = get_logger(__name__)


def _lease_window(name: str) -> Tuple[timedelta, timedelta]:
    at_most, at_least = LEASE_DURATIONS[name]
    return timedelta(seconds=at_most), timedelta(seconds=at_least)


class ExecutionDispatcher:
    """Moves queue items from CLAIMED to DISPATCHED by starting workflows."""

    def __init__(
        self,
        database: Database,
        queue: ExecutionQueueService,
        lease_manager: LeaseManager,
        starter: "TemporalExecutor",
        settings: "Settings",
    ):
        self.database = database
        self.queue = queue
        self.lease_manager = lease_manager
        self.starter = starter
        self.settings = settings
        self.batch_size = settings.queue_batch_size
        self.max_attempts = settings.queue_max_attempts

    # ============================================================================
    # Scheduled entry points
    # ============================================================================

    async def process_queue(self) -> int:
        """Claim and dispatch one batch if this process holds the queue lease."""
        at_most, at_least = _lease_window(PROCESS_QUEUE_LOCK)
        async with self.lease_manager.hold(PROCESS_QUEUE_LOCK, at_most, at_least) as acquired:
            if not acquired:
                logger.debug("Queue lease held elsewhere, skipping cycle")
                return 0

            start_time = time.time()
            items = await self.queue.claim_batch(self.batch_size)
            for item in items:
                await self.process_item(item.id)

            if items:
                log_execution_time(logger, "dispatch_batch", start_time, time.time(), count=len(items))
            return len(items)

    async def recover_stale_items(self, threshold_minutes: Optional[int] = None) -> int:
        """Reset stale claims if this process holds the recovery lease."""
        threshold = threshold_minutes or self.settings.queue_stale_threshold_minutes
        at_most, at_least = _lease_window(RECOVER_STALE_LOCK)
        async with self.lease_manager.hold(RECOVER_STALE_LOCK, at_most, at_least) as acquired:
            if not acquired:
                return 0
            return await self.queue.recover_stale_items(threshold)

    async def poll(self) -> None:
        """Scheduler job wrapper for process_queue."""
        try:
            await self.process_queue()
        except Exception as e:
            logger.error("Queue poll failed", error=str(e), exc_info=True)

    async def sweep(self) -> None:
        """Scheduler job wrapper for recover_stale_items."""
        try:
            await self.recover_stale_items()
        except Exception as e:
            logger.error("Stale queue recovery failed", error=str(e), exc_info=True)

    # ============================================================================
    # Per-item processing
    # ============================================================================

    async def process_item(self, item_id: UUID) -> None:
        """Dispatch one claimed item; failures are recorded on the item, never raised."""
        try:
            await self._dispatch(item_id)
        except Exception as e:
            logger.error("Dispatch failed", item_id=str(item_id), error=str(e))
            await self._handle_failure(item_id, e)

    async def _dispatch(self, item_id: UUID) -> None:
        async with self.database.get_session() as session:
            item = await self.queue.get_item(session, item_id)
            if item is None or item.status != ExecutionQueueStatus.CLAIMED:
                logger.warning("Skipping queue item no longer claimed", item_id=str(item_id))
                return

            workspace = await self.database.get_workspace(item.workspace_id, session=session)
            if workspace is None:
                self.queue.mark_failed(session, item, f"Workspace {item.workspace_id} not found")
                await session.commit()
                return

            limit = WorkspacePlan(workspace.plan).max_concurrent_workflows
            running = await self.database.count_running_executions(session, workspace.id)
            if running >= limit:
                self.queue.release_to_pending(session, item)
                await session.commit()
                logger.info("Workspace at capacity, item released", item_id=str(item_id),
                            workspace_id=str(workspace.id), running=running, limit=limit)
                return

            definition = await self.database.get_workflow_definition(item.workflow_definition_id, session=session)
            version = None
            if definition is not None:
                version = await self.database.get_latest_version(session, definition.id)
            if definition is None or version is None:
                self.queue.mark_failed(session, item, f"Workflow definition {item.workflow_definition_id} "
                                                      f"or its version not found")
                await session.commit()
                return

            execution = await self._get_or_create_execution(session, item, version)
            self.queue.set_execution_id(session, item, execution.id)
            await session.commit()

            request = WorkflowRequest(
                execution_id=str(execution.id),
                workspace_id=str(item.workspace_id),
                workflow_definition_id=str(item.workflow_definition_id),
                workflow_version_id=str(version.id),
                node_ids=[str(node_id) for node_id in (version.workflow or {}).get("node_ids", [])],
                input=item.input,
                retry_policy=RetryPolicy.from_settings(self.settings),
                activity_timeout_minutes=self.settings.activity_start_to_close_minutes,
            )

        workflow_id = execution_workflow_id(execution.id)
        run_id: Optional[str] = None
        try:
            run_id = await self.starter.start_execution(request)
        except WorkflowAlreadyStartedError:
            logger.info("Workflow already started, treating as dispatched", workflow_id=workflow_id)
        except Exception:
            await self._discard_execution(execution.id)
            raise

        async with self.database.get_session() as session:
            item = await self.queue.get_item(session, item_id)
            execution = await session.get(WorkflowExecution, execution.id)
            if execution is not None:
                execution.engine_workflow_id = workflow_id
                execution.engine_run_id = run_id
                session.add(execution)
            self.queue.mark_dispatched(session, item)
            await session.commit()

        logger.info("Execution dispatched", item_id=str(item_id), workflow_id=workflow_id)

    async def _get_or_create_execution(self, session: AsyncSession, item: ExecutionQueueItem,
                                       version: WorkflowDefinitionVersion) -> WorkflowExecution:
        """Reuse the item's execution across dispatch retries, creating it if absent.

        An unsettled execution is restarted from the current dispatch so its
        duration covers the run that actually starts.
        """
        if item.execution_id is not None:
            existing = await session.get(WorkflowExecution, item.execution_id)
            if existing is not None:
                # A settled execution already ran under this id; its start is rejected as a duplicate
                if existing.completed_at is None:
                    existing.status = WorkflowStatus.RUNNING
                    existing.workflow_version_id = version.id
                    existing.started_at = utcnow()
                    existing.duration_ms = 0
                    existing.output = None
                    existing.error = None
                    session.add(existing)
                return existing

        execution = WorkflowExecution(
            id=item.execution_id or uuid4(),
            workspace_id=item.workspace_id,
            workflow_definition_id=item.workflow_definition_id,
            workflow_version_id=version.id,
            status=WorkflowStatus.RUNNING,
            trigger_type=TriggerType.FUNCTION,
            started_at=utcnow(),
            input=item.input,
        )
        session.add(execution)
        return execution

    async def _discard_execution(self, execution_id: UUID) -> None:
        async with self.database.get_session() as session:
            execution = await session.get(WorkflowExecution, execution_id)
            if execution is not None:
                await session.delete(execution)
                await session.commit()
        logger.info("Discarded execution after failed start", execution_id=str(execution_id))

    async def _handle_failure(self, item_id: UUID, error: Exception) -> None:
        async with self.database.get_session() as session:
            item = await self.queue.get_item(session, item_id)
            if item is None or item.status != ExecutionQueueStatus.CLAIMED:
                return
            if item.attempt_count >= self.max_attempts:
                self.queue.mark_failed(session, item, str(error))
            else:
                self.queue.release_to_pending(session, item, reason=str(error))
            await session.commit()
