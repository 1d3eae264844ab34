"""DAG coordination: graph model, pure state machine and concurrent runner."""

from services.coordinator.coordinator import (
    GraphCoordinator,
    IncompleteExecutionError,
    WorkflowDeadlockError,
    WorkflowValidationError,
)
from services.coordinator.graph import (
    GraphCycleError,
    GraphValidationResult,
    WorkflowGraph,
    topological_sort,
    validate_graph,
)
from services.coordinator.state import (
    AllNodesCompleted,
    InvalidStateTransition,
    NodeCompleted,
    NodeFailed,
    NodesReady,
    WorkflowFailed,
    WorkflowPhase,
    WorkflowState,
    apply,
    initialize,
)

__all__ = [
    "GraphCoordinator",
    "IncompleteExecutionError",
    "WorkflowDeadlockError",
    "WorkflowValidationError",
    "GraphCycleError",
    "GraphValidationResult",
    "WorkflowGraph",
    "topological_sort",
    "validate_graph",
    "AllNodesCompleted",
    "InvalidStateTransition",
    "NodeCompleted",
    "NodeFailed",
    "NodesReady",
    "WorkflowFailed",
    "WorkflowPhase",
    "WorkflowState",
    "apply",
    "initialize",
]
