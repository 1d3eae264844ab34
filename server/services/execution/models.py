"""Execution state models.

All models crossing the Temporal boundary are plain dicts on the wire;
the dataclasses here convert with to_dict/from_dict.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Any, List, Optional
from uuid import UUID

from temporalio.common import RetryPolicy as TemporalRetryPolicy

from models.enums import WorkflowStatus


@dataclass
class RetryPolicy:
    """Retry configuration for the orchestration activity.

    Implements exponential backoff with configurable limits.
    Delay formula: min(initial_delay * (backoff_multiplier ^ attempt), max_delay)
    """
    max_attempts: int = 3
    initial_delay: float = 1.0       # seconds
    max_delay: float = 60.0          # seconds
    backoff_multiplier: float = 2.0

    def to_temporal(self) -> TemporalRetryPolicy:
        return TemporalRetryPolicy(
            initial_interval=timedelta(seconds=self.initial_delay),
            backoff_coefficient=self.backoff_multiplier,
            maximum_interval=timedelta(seconds=self.max_delay),
            maximum_attempts=self.max_attempts,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryPolicy":
        """Create from dict."""
        data = data or {}
        return cls(
            max_attempts=data.get("max_attempts", 3),
            initial_delay=data.get("initial_delay", 1.0),
            max_delay=data.get("max_delay", 60.0),
            backoff_multiplier=data.get("backoff_multiplier", 2.0),
        )

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.activity_max_attempts,
            initial_delay=settings.activity_initial_interval_seconds,
            max_delay=settings.activity_max_interval_seconds,
            backoff_multiplier=settings.activity_backoff_coefficient,
        )


@dataclass
class WorkflowExecutionContext:
    """Per-run bindings visible to template resolution and handlers.

    ``variables`` is shared by every node of the run; ``step_outputs`` is
    keyed by node key and only holds nodes that have completed.
    """
    execution_id: UUID
    workspace_id: UUID
    trigger: Optional[Dict[str, Any]] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    step_outputs: Dict[str, Any] = field(default_factory=dict)

    def with_steps(self, step_outputs: Dict[str, Any]) -> "WorkflowExecutionContext":
        """Same run bindings with a fresh view of completed step outputs."""
        return WorkflowExecutionContext(
            execution_id=self.execution_id,
            workspace_id=self.workspace_id,
            trigger=self.trigger,
            variables=self.variables,
            step_outputs=dict(step_outputs),
        )


@dataclass
class NodeResult:
    """Outcome of one node as reported in the workflow result."""
    node_id: str
    node_key: str
    status: WorkflowStatus
    output: Any = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_key": self.node_key,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeResult":
        return cls(
            node_id=data["node_id"],
            node_key=data.get("node_key", ""),
            status=WorkflowStatus(data["status"]),
            output=data.get("output"),
            error=data.get("error"),
        )


@dataclass
class WorkflowRequest:
    """Input of the Temporal workflow, built by the dispatcher."""
    execution_id: str
    workspace_id: str
    workflow_definition_id: str
    workflow_version_id: str
    node_ids: List[str]
    input: Optional[Dict[str, Any]] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    activity_timeout_minutes: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workspace_id": self.workspace_id,
            "workflow_definition_id": self.workflow_definition_id,
            "workflow_version_id": self.workflow_version_id,
            "node_ids": list(self.node_ids),
            "input": self.input,
            "retry_policy": self.retry_policy.to_dict(),
            "activity_timeout_minutes": self.activity_timeout_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowRequest":
        return cls(
            execution_id=data["execution_id"],
            workspace_id=data["workspace_id"],
            workflow_definition_id=data.get("workflow_definition_id", ""),
            workflow_version_id=data.get("workflow_version_id", ""),
            node_ids=list(data.get("node_ids", [])),
            input=data.get("input"),
            retry_policy=RetryPolicy.from_dict(data.get("retry_policy")),
            activity_timeout_minutes=data.get("activity_timeout_minutes", 5),
        )


@dataclass
class WorkflowExecutionResult:
    """Final result returned by the Temporal workflow."""
    execution_id: str
    status: WorkflowStatus
    node_results: List[NodeResult] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None

    @property
    def outputs_by_key(self) -> Dict[str, Any]:
        return {
            r.node_key: r.output
            for r in self.node_results
            if r.status == WorkflowStatus.COMPLETED
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "node_results": [r.to_dict() for r in self.node_results],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowExecutionResult":
        return cls(
            execution_id=data["execution_id"],
            status=WorkflowStatus(data["status"]),
            node_results=[NodeResult.from_dict(r) for r in data.get("node_results", [])],
            error=data.get("error"),
        )
