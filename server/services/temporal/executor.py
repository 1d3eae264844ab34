"""Starts execution workflows on Temporal.

Used by the queue dispatcher. The workflow id is derived from the execution
id, so starting the same execution twice fails with
WorkflowAlreadyStartedError instead of running it twice.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio.client import Client, WorkflowHandle
from temporalio.common import WorkflowIDReusePolicy

from constants import execution_workflow_id
from core.logging import get_logger
from services.execution.models import WorkflowExecutionResult, WorkflowRequest
from .client import TemporalClientWrapper
from .workflow import WorkflowOrchestration

logger = get_logger(__name__)


class TemporalExecutor:
    """Starts and inspects WorkflowOrchestration runs."""

    def __init__(
        self,
        client_wrapper: TemporalClientWrapper,
        task_queue: str = "workflows.default",
        execution_timeout: Optional[timedelta] = None,
    ):
        """Initialize the Temporal executor.

        Args:
            client_wrapper: Temporal client wrapper (connected lazily)
            task_queue: Temporal task queue name
            execution_timeout: Optional upper bound for a whole run
        """
        self.client_wrapper = client_wrapper
        self.task_queue = task_queue
        self.execution_timeout = execution_timeout

    async def _client(self) -> Client:
        return await self.client_wrapper.connect()

    async def start_execution(self, request: WorkflowRequest) -> str:
        """Start the workflow for an execution without waiting for it.

        Returns:
            The first run id of the started workflow

        Raises:
            WorkflowAlreadyStartedError: A run for this execution already exists
        """
        client = await self._client()
        workflow_id = execution_workflow_id(request.execution_id)

        handle = await client.start_workflow(
            WorkflowOrchestration.run,
            request.to_dict(),
            id=workflow_id,
            task_queue=self.task_queue,
            execution_timeout=self.execution_timeout,
            # A finished run must not be restarted under the same execution id
            id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE,
        )

        logger.info(
            "Temporal workflow started",
            workflow_id=workflow_id,
            run_id=handle.first_execution_run_id,
            node_count=len(request.node_ids),
        )
        return handle.first_execution_run_id or handle.result_run_id or ""

    async def get_handle(self, execution_id: str) -> WorkflowHandle:
        client = await self._client()
        return client.get_workflow_handle(execution_workflow_id(execution_id))

    async def wait_for_result(self, execution_id: str) -> WorkflowExecutionResult:
        """Block until the execution's workflow finishes."""
        handle = await self.get_handle(execution_id)
        result: Dict[str, Any] = await handle.result()
        return WorkflowExecutionResult.from_dict(result)
