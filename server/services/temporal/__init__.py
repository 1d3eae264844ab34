"""Temporal workflow orchestration service.

Provides durable execution of stored workflows.

Architecture:
- One WorkflowOrchestration run per WorkflowExecution (workflow id ``execution-{id}``)
- The run schedules a single retryable activity that walks the whole DAG
- Nodes finished by an earlier attempt are replayed from write-ahead records
- A second activity records the final result on the execution row
"""

from .executor import TemporalExecutor
from .client import TemporalClientWrapper
from .worker import TemporalWorkerManager

__all__ = ["TemporalExecutor", "TemporalClientWrapper", "TemporalWorkerManager"]
