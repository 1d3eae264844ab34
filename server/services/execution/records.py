"""Durable execution and node records.

The orchestration activity writes a RUNNING node record before each node runs
and settles it afterwards. On a retried attempt, nodes already COMPLETED for
the execution replay their recorded output instead of re-running.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import select

from core.database import Database
from core.logging import get_logger
from models.database import ExecutionQueueItem, WorkflowExecution, WorkflowExecutionNode, utcnow
from models.enums import WorkflowStatus
from models.nodes import WorkflowNode
from services.execution.errors import ClassifiedError

logger = get_logger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_ms(started_at: Optional[datetime], finished_at: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((finished_at - as_utc(started_at)).total_seconds() * 1000))


class ExecutionRecordService:
    """Reads and settles WorkflowExecution rows."""

    def __init__(self, database: Database):
        self.database = database

    async def get_execution(self, execution_id: UUID) -> Optional[WorkflowExecution]:
        async with self.database.get_session() as session:
            return await session.get(WorkflowExecution, execution_id)

    async def record_completion(self, execution_id: UUID, status: WorkflowStatus,
                                output: Optional[Dict[str, Any]] = None,
                                error: Optional[Dict[str, Any]] = None) -> bool:
        """Persist the terminal status of an execution. Returns False if the row is gone.

        A COMPLETED execution also removes its queue item. Items of failed
        executions stay DISPATCHED with their history.
        """
        async with self.database.get_session() as session:
            if status == WorkflowStatus.COMPLETED:
                removed = await session.execute(
                    delete(ExecutionQueueItem).where(ExecutionQueueItem.execution_id == execution_id)
                )
                if removed.rowcount:
                    logger.debug("Removed queue item of completed execution", execution_id=str(execution_id))

            execution = await session.get(WorkflowExecution, execution_id)
            if execution is None:
                await session.commit()
                logger.warning("Execution record missing at completion", execution_id=str(execution_id))
                return False

            finished_at = utcnow()
            execution.status = status
            execution.completed_at = finished_at
            execution.duration_ms = elapsed_ms(execution.started_at, finished_at)
            execution.output = output
            execution.error = error
            session.add(execution)
            await session.commit()

        logger.info("Execution completed", execution_id=str(execution_id), status=status.value,
                    duration_ms=execution.duration_ms)
        return True


class NodeExecutionRecorder:
    """Write-ahead node records for one attempt of one execution."""

    def __init__(self, database: Database, execution_id: UUID, workspace_id: UUID, attempt: int = 1):
        self.database = database
        self.execution_id = execution_id
        self.workspace_id = workspace_id
        self.attempt = attempt
        self._completed: Dict[UUID, Any] = {}
        self._sequence = 0

    async def load(self) -> int:
        """Load outputs of nodes completed by earlier attempts. Returns how many."""
        async with self.database.get_session() as session:
            stmt = (
                select(WorkflowExecutionNode)
                .where(WorkflowExecutionNode.workflow_execution_id == self.execution_id)
                .order_by(WorkflowExecutionNode.sequence_index)
            )
            records = list((await session.execute(stmt)).scalars().all())

        self._sequence = len(records)
        for record in records:
            if record.status == WorkflowStatus.COMPLETED:
                self._completed[record.node_id] = record.output
        if self._completed:
            logger.info("Replaying completed nodes", execution_id=str(self.execution_id),
                        attempt=self.attempt, count=len(self._completed))
        return len(self._completed)

    def has_completed(self, node_id: UUID) -> bool:
        return node_id in self._completed

    def completed_output(self, node_id: UUID) -> Any:
        return self._completed.get(node_id)

    async def start(self, node: WorkflowNode, inputs: Optional[Dict[str, Any]] = None) -> UUID:
        """Write the RUNNING record before the node executes."""
        record = WorkflowExecutionNode(
            workspace_id=self.workspace_id,
            workflow_execution_id=self.execution_id,
            node_id=node.id,
            sequence_index=self._sequence,
            status=WorkflowStatus.RUNNING,
            attempt=self.attempt,
            input=inputs,
        )
        self._sequence += 1
        async with self.database.get_session() as session:
            session.add(record)
            await session.commit()
        return record.id

    async def _settle(self, record_id: UUID, status: WorkflowStatus,
                      output: Any = None, error: Optional[Dict[str, Any]] = None) -> None:
        async with self.database.get_session() as session:
            record = await session.get(WorkflowExecutionNode, record_id)
            if record is None:
                logger.warning("Node record vanished before settling", record_id=str(record_id))
                return
            finished_at = utcnow()
            record.status = status
            record.completed_at = finished_at
            record.duration_ms = elapsed_ms(record.started_at, finished_at)
            record.output = output
            record.error = error
            session.add(record)
            await session.commit()

    async def complete(self, record_id: UUID, node: WorkflowNode, output: Any) -> None:
        await self._settle(record_id, WorkflowStatus.COMPLETED, output=output)
        self._completed[node.id] = output

    async def fail(self, record_id: UUID, classified: ClassifiedError) -> None:
        await self._settle(record_id, WorkflowStatus.FAILED, error=classified.to_dict())
