"""Temporal workflow - durable shell around the orchestration activity.

The workflow holds no business logic. It:
- Schedules execute_workflow_with_coordinator once, with the run's retry policy
- Turns the activity outcome (or its final failure) into a WorkflowExecutionResult
- Records the result on the execution row via record_completion

Each activity attempt is a full DAG walk; nodes finished by an earlier
attempt are replayed from their write-ahead records, not re-executed.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError, TimeoutError

from constants import (
    COORDINATOR_ACTIVITY_NAME,
    RECORD_COMPLETION_ACTIVITY_NAME,
    WORKFLOW_TYPE_NAME,
)
from models.enums import WorkflowStatus
from services.execution.errors import WorkflowErrorType
from services.execution.models import NodeResult, WorkflowExecutionResult, WorkflowRequest

RECORD_COMPLETION_TIMEOUT = timedelta(seconds=30)
RECORD_COMPLETION_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    maximum_interval=timedelta(seconds=10),
    maximum_attempts=5,
)


def _activity_failure(error: ActivityError, attempts: int) -> Dict[str, Any]:
    """Terminal error dict for an activity that exhausted its retries."""
    cause = error.cause
    failed_node_id: Optional[str] = None
    error_type = WorkflowErrorType.EXECUTION_ERROR
    message = str(cause or error)

    if isinstance(cause, ApplicationError):
        message = cause.message
        if cause.type in WorkflowErrorType.__members__:
            error_type = WorkflowErrorType(cause.type)
        if cause.details and isinstance(cause.details[0], dict):
            failed_node_id = cause.details[0].get("failed_node_id")
    elif isinstance(cause, TimeoutError):
        message = f"Orchestration activity timed out: {cause.message}"

    return {
        "failed_node_id": failed_node_id,
        "error_type": error_type.value,
        "message": message,
        "retryable": error_type.retryable,
        "attempt": attempts,
    }


@workflow.defn(name=WORKFLOW_TYPE_NAME, sandboxed=False)
class WorkflowOrchestration:
    """Runs one execution of a stored workflow definition.

    Workflow id is ``execution-{execution_id}``; the activity derives the
    execution id from it.
    """

    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Execute the DAG through the orchestration activity.

        Args:
            payload: WorkflowRequest as a dict

        Returns:
            WorkflowExecutionResult as a dict
        """
        request = WorkflowRequest.from_dict(payload)
        workflow.logger.info(
            f"Starting orchestration for execution {request.execution_id} "
            f"({len(request.node_ids)} nodes)"
        )

        try:
            outcome = await workflow.execute_activity(
                COORDINATOR_ACTIVITY_NAME,
                request.to_dict(),
                start_to_close_timeout=timedelta(minutes=request.activity_timeout_minutes),
                retry_policy=request.retry_policy.to_temporal(),
            )
            completed = outcome.get("phase") == WorkflowStatus.COMPLETED.value
            result = WorkflowExecutionResult(
                execution_id=request.execution_id,
                status=WorkflowStatus.COMPLETED if completed else WorkflowStatus.FAILED,
                node_results=[NodeResult.from_dict(r) for r in outcome.get("node_results", [])],
                error=outcome.get("error"),
            )
        except ActivityError as e:
            workflow.logger.warning(f"Orchestration activity failed permanently: {e.cause or e}")
            result = WorkflowExecutionResult(
                execution_id=request.execution_id,
                status=WorkflowStatus.FAILED,
                error=_activity_failure(e, request.retry_policy.max_attempts),
            )

        await workflow.execute_activity(
            RECORD_COMPLETION_ACTIVITY_NAME,
            result.to_dict(),
            start_to_close_timeout=RECORD_COMPLETION_TIMEOUT,
            retry_policy=RECORD_COMPLETION_RETRY,
        )

        workflow.logger.info(
            f"Execution {request.execution_id} finished with status {result.status.value}"
        )
        return result.to_dict()
