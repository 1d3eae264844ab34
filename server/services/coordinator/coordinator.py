"""Graph coordinator: runs ready nodes concurrently and feeds results to the state machine."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

from core.logging import get_logger
from models.nodes import WorkflowNode
from services.coordinator.graph import WorkflowGraph, validate_graph
from services.coordinator.state import (
    NodeCompleted,
    NodeFailed,
    WorkflowFailed,
    WorkflowPhase,
    WorkflowState,
    apply,
    initialize,
)

logger = get_logger(__name__)

# (node, state snapshot at launch) -> node output
NodeRunner = Callable[[WorkflowNode, WorkflowState], Awaitable[Any]]
StateListener = Callable[[WorkflowState], None]


class WorkflowValidationError(ValueError):
    """The workflow graph failed structural validation."""

    def __init__(self, errors, state: Optional[WorkflowState] = None):
        self.errors = list(errors)
        self.state = state
        super().__init__("Workflow validation failed: " + "; ".join(self.errors))


class WorkflowDeadlockError(RuntimeError):
    """Nodes remain unsettled but none is running or ready."""


class IncompleteExecutionError(RuntimeError):
    """The state machine reported completion with unsettled nodes."""


class GraphCoordinator:
    """Drives a WorkflowGraph to a terminal state.

    Ready nodes run concurrently as asyncio tasks. Each finished task is
    applied to the state machine immediately, so newly ready successors start
    without waiting for sibling branches. The first failure cancels every
    in-flight sibling and ends the run.
    """

    def __init__(self, on_state_change: Optional[StateListener] = None):
        self._on_state_change = on_state_change

    def _emit(self, state: WorkflowState) -> WorkflowState:
        if self._on_state_change is not None:
            self._on_state_change(state)
        return state

    def validate(self, graph: WorkflowGraph) -> None:
        """Raise WorkflowValidationError carrying a FAILED state if the graph is invalid."""
        result = validate_graph(graph)
        if not result.valid:
            failed = apply(WorkflowState(graph=graph), WorkflowFailed("; ".join(result.errors)))
            self._emit(failed)
            logger.warning("Workflow graph rejected", errors=result.errors, node_count=len(graph))
            raise WorkflowValidationError(result.errors, state=failed)

    async def execute_workflow(self, graph: WorkflowGraph, run_node: NodeRunner) -> WorkflowState:
        """Execute every reachable node and return the terminal state.

        Node failures do not raise: the returned state is FAILED and carries
        the original exception in ``node_errors``.
        """
        self.validate(graph)
        start_time = time.time()

        state = self._emit(initialize(graph))
        running: Dict[UUID, asyncio.Task] = {}

        try:
            while not state.is_terminal:
                for node_id in state.active_nodes - running.keys():
                    node = graph.node(node_id)
                    running[node_id] = asyncio.create_task(
                        run_node(node, state), name=f"node:{node.key}"
                    )

                if not running:
                    raise WorkflowDeadlockError(
                        f"No runnable nodes; {len(state.pending_nodes)} node(s) pending"
                    )

                done, _ = await asyncio.wait(running.values(), return_when=asyncio.FIRST_COMPLETED)
                task_nodes = {task: node_id for node_id, task in running.items()}

                for task in done:
                    node_id = task_nodes[task]
                    del running[node_id]
                    error = task.exception()
                    if error is not None:
                        logger.warning("Node failed", node_key=graph.node(node_id).key,
                                       error=str(error), error_class=type(error).__name__)
                        state = self._emit(apply(state, NodeFailed(node_id, error)))
                        break
                    state = self._emit(apply(state, NodeCompleted(node_id, task.result())))
        finally:
            await self._cancel_running(running)

        if state.phase == WorkflowPhase.COMPLETED:
            unsettled = frozenset(graph.nodes) - state.completed_nodes - state.skipped_nodes
            if unsettled:
                raise IncompleteExecutionError(f"{len(unsettled)} node(s) never settled")

        logger.info(
            "Workflow graph finished",
            phase=state.phase.value,
            completed=len(state.completed_nodes),
            skipped=len(state.skipped_nodes),
            failed=len(state.failed_nodes),
            execution_time_seconds=round(time.time() - start_time, 4),
        )
        return state

    async def _cancel_running(self, running: Dict[UUID, asyncio.Task]) -> None:
        if not running:
            return
        for task in running.values():
            task.cancel()
        await asyncio.gather(*running.values(), return_exceptions=True)
        logger.debug("Cancelled in-flight nodes", count=len(running))
        running.clear()
