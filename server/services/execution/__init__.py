"""Execution engine package.

Durable run bookkeeping around the Temporal shell:
- Error taxonomy and classification of node failures
- Wire models for workflow requests and results
- Execution queue with skip-locked claims and stale recovery
- Cluster-wide scheduler lease
- Dispatcher that turns queue items into Temporal workflows
- Write-ahead node records for replay on retried attempts
"""

from .errors import (
    WorkflowErrorType,
    ClassifiedError,
    classify_error,
    NotFoundError,
    WorkspaceAccessError,
    NodeConfigValidationError,
    ConditionResultError,
)
from .models import (
    RetryPolicy,
    WorkflowExecutionContext,
    NodeResult,
    WorkflowRequest,
    WorkflowExecutionResult,
)
from .queue import ExecutionQueueService, InvalidQueueTransition
from .lease import LeaseManager
from .records import ExecutionRecordService, NodeExecutionRecorder
from .dispatcher import ExecutionDispatcher

__all__ = [
    # Errors
    "WorkflowErrorType",
    "ClassifiedError",
    "classify_error",
    "NotFoundError",
    "WorkspaceAccessError",
    "NodeConfigValidationError",
    "ConditionResultError",
    # Models
    "RetryPolicy",
    "WorkflowExecutionContext",
    "NodeResult",
    "WorkflowRequest",
    "WorkflowExecutionResult",
    # Queue and dispatch
    "ExecutionQueueService",
    "InvalidQueueTransition",
    "LeaseManager",
    "ExecutionDispatcher",
    # Records
    "ExecutionRecordService",
    "NodeExecutionRecorder",
]
