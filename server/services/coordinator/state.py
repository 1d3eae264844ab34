"""Pure workflow state machine.

``apply(state, event)`` returns a new WorkflowState and never mutates its
input. All scheduling decisions (which nodes become ready, which branch is
pruned, when the run is complete) happen here; the coordinator only runs
nodes and feeds back events.

Phases:
    INITIALIZING -> EXECUTING_NODES -> COMPLETED
                                    -> FAILED
    INITIALIZING -> COMPLETED (empty graph)
    INITIALIZING -> FAILED (validation)
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Type
from uuid import UUID

from services.coordinator.graph import WorkflowGraph, descendants


class WorkflowPhase(str, Enum):
    INITIALIZING = "INITIALIZING"
    EXECUTING_NODES = "EXECUTING_NODES"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class InvalidStateTransition(RuntimeError):
    """An event is not legal in the current phase or for the given node."""


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class NodesReady:
    node_ids: FrozenSet[UUID]


@dataclass(frozen=True)
class NodeCompleted:
    node_id: UUID
    output: Any = None


@dataclass(frozen=True)
class NodeFailed:
    node_id: UUID
    error: BaseException


@dataclass(frozen=True)
class AllNodesCompleted:
    pass


@dataclass(frozen=True)
class WorkflowFailed:
    reason: str = ""


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True)
class WorkflowState:
    graph: WorkflowGraph
    phase: WorkflowPhase = WorkflowPhase.INITIALIZING
    active_nodes: FrozenSet[UUID] = frozenset()
    completed_nodes: FrozenSet[UUID] = frozenset()
    failed_nodes: FrozenSet[UUID] = frozenset()
    skipped_nodes: FrozenSet[UUID] = frozenset()
    data_registry: Dict[UUID, Any] = field(default_factory=dict)
    node_errors: Dict[UUID, BaseException] = field(default_factory=dict)
    failure_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (WorkflowPhase.COMPLETED, WorkflowPhase.FAILED)

    @property
    def settled_nodes(self) -> FrozenSet[UUID]:
        return self.completed_nodes | self.failed_nodes | self.skipped_nodes

    @property
    def pending_nodes(self) -> FrozenSet[UUID]:
        """Nodes neither settled nor running."""
        return frozenset(self.graph.nodes) - self.settled_nodes - self.active_nodes

    def output_of(self, node_id: UUID) -> Any:
        return self.data_registry.get(node_id)

    def outputs_by_key(self) -> Dict[str, Any]:
        return {self.graph.node(node_id).key: output for node_id, output in self.data_registry.items()}

    def is_ready(self, node_id: UUID) -> bool:
        """Every predecessor completed and the node not yet scheduled or settled."""
        if node_id in self.active_nodes or node_id in self.settled_nodes:
            return False
        return self.graph.predecessors(node_id) <= self.completed_nodes


# =============================================================================
# TRANSITIONS
# =============================================================================

def _require_phase(state: WorkflowState, event: Any, *phases: WorkflowPhase) -> None:
    if state.phase not in phases:
        raise InvalidStateTransition(
            f"{type(event).__name__} is not allowed in phase {state.phase.value}"
        )


def _on_nodes_ready(state: WorkflowState, event: NodesReady) -> WorkflowState:
    _require_phase(state, event, WorkflowPhase.INITIALIZING, WorkflowPhase.EXECUTING_NODES)
    if not event.node_ids:
        raise InvalidStateTransition("NodesReady requires at least one node")
    for node_id in event.node_ids:
        if node_id not in state.graph.nodes:
            raise InvalidStateTransition(f"Unknown node {node_id}")
        if node_id in state.settled_nodes or node_id in state.active_nodes:
            raise InvalidStateTransition(f"Node {node_id} is already scheduled or settled")
        if not state.graph.predecessors(node_id) <= state.completed_nodes:
            raise InvalidStateTransition(f"Node {node_id} has upstream nodes that have not completed")
    return replace(
        state,
        phase=WorkflowPhase.EXECUTING_NODES,
        active_nodes=state.active_nodes | event.node_ids,
    )


def _on_node_completed(state: WorkflowState, event: NodeCompleted) -> WorkflowState:
    _require_phase(state, event, WorkflowPhase.EXECUTING_NODES)
    if event.node_id not in state.active_nodes:
        raise InvalidStateTransition(f"Node {event.node_id} is not active")

    graph = state.graph
    completed = state.completed_nodes | {event.node_id}
    registry = {**state.data_registry, event.node_id: event.output}

    followed, pruned = graph.branch_targets(event.node_id, event.output)
    # A pruned branch skips its whole subtree; nodes below a skipped node can never become ready
    newly_skipped = descendants(graph, pruned, stop=set(completed) | set(state.active_nodes))
    skipped = state.skipped_nodes | newly_skipped

    next_state = replace(
        state,
        active_nodes=state.active_nodes - {event.node_id},
        completed_nodes=completed,
        skipped_nodes=skipped,
        data_registry=registry,
    )

    ready = frozenset(node_id for node_id in followed if next_state.is_ready(node_id))
    if ready:
        next_state = replace(next_state, active_nodes=next_state.active_nodes | ready)

    if not next_state.active_nodes and next_state.completed_nodes | next_state.skipped_nodes == frozenset(graph.nodes):
        return _on_all_nodes_completed(next_state, AllNodesCompleted())
    return next_state


def _on_node_failed(state: WorkflowState, event: NodeFailed) -> WorkflowState:
    _require_phase(state, event, WorkflowPhase.EXECUTING_NODES)
    if event.node_id not in state.active_nodes:
        raise InvalidStateTransition(f"Node {event.node_id} is not active")
    return replace(
        state,
        phase=WorkflowPhase.FAILED,
        active_nodes=state.active_nodes - {event.node_id},
        failed_nodes=state.failed_nodes | {event.node_id},
        node_errors={**state.node_errors, event.node_id: event.error},
        failure_reason=str(event.error) or type(event.error).__name__,
    )


def _on_all_nodes_completed(state: WorkflowState, event: AllNodesCompleted) -> WorkflowState:
    if state.phase == WorkflowPhase.COMPLETED:
        return state
    _require_phase(state, event, WorkflowPhase.INITIALIZING, WorkflowPhase.EXECUTING_NODES)
    if state.active_nodes:
        raise InvalidStateTransition("Cannot complete while nodes are active")
    unsettled = frozenset(state.graph.nodes) - state.completed_nodes - state.skipped_nodes
    if unsettled:
        raise InvalidStateTransition(f"{len(unsettled)} node(s) have not completed")
    return replace(state, phase=WorkflowPhase.COMPLETED)


def _on_workflow_failed(state: WorkflowState, event: WorkflowFailed) -> WorkflowState:
    if state.is_terminal:
        raise InvalidStateTransition(f"Workflow already {state.phase.value}")
    return replace(state, phase=WorkflowPhase.FAILED, failure_reason=event.reason or None)


_TRANSITIONS: Dict[Type, Callable[[WorkflowState, Any], WorkflowState]] = {
    NodesReady: _on_nodes_ready,
    NodeCompleted: _on_node_completed,
    NodeFailed: _on_node_failed,
    AllNodesCompleted: _on_all_nodes_completed,
    WorkflowFailed: _on_workflow_failed,
}


def apply(state: WorkflowState, event: Any) -> WorkflowState:
    """Apply one event, returning the next state."""
    handler = _TRANSITIONS.get(type(event))
    if handler is None:
        raise InvalidStateTransition(f"Unsupported event {type(event).__name__}")
    return handler(state, event)


def initialize(graph: WorkflowGraph) -> WorkflowState:
    """Initial state with every root node active. An empty graph is already complete."""
    state = WorkflowState(graph=graph)
    if not graph.nodes:
        return apply(state, AllNodesCompleted())
    return apply(state, NodesReady(graph.roots()))
