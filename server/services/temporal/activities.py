"""Temporal activities: one full DAG walk per attempt, plus completion recording.

``execute_workflow_with_coordinator`` loads the version's nodes and edges,
builds the graph and runs it through the GraphCoordinator. Nodes run
concurrently inside the activity (FIRST_COMPLETED scheduling); each one is
bracketed by write-ahead node records so a retried attempt replays completed
nodes instead of repeating their side effects.

A node failure is classified. Retryable failures on a non-final attempt raise
a retryable ApplicationError and Temporal re-runs the whole walk; anything
else is returned as a FAILED outcome.
"""

import asyncio
from typing import Any, Dict, List, Optional
from uuid import UUID

from temporalio import activity
from temporalio.exceptions import ApplicationError

from constants import (
    COORDINATOR_ACTIVITY_NAME,
    RECORD_COMPLETION_ACTIVITY_NAME,
    execution_id_from_workflow_id,
)
from core.database import Database
from core.logging import get_logger
from models.enums import WorkflowStatus
from models.nodes import WorkflowEdge, WorkflowNode
from services.coordinator import (
    GraphCoordinator,
    WorkflowGraph,
    WorkflowPhase,
    WorkflowState,
    WorkflowValidationError,
)
from services.execution.errors import ClassifiedError, WorkflowErrorType, classify_error
from services.execution.models import NodeResult, WorkflowExecutionContext, WorkflowRequest
from services.execution.records import ExecutionRecordService, NodeExecutionRecorder
from services.node_executor import NodeExecutor

logger = get_logger(__name__)

CANCELLED_NODE_ERROR = ClassifiedError(
    error_type=WorkflowErrorType.EXECUTION_ERROR,
    retryable=True,
    message="Cancelled before completion: a sibling node failed",
)


def _failure(message: str, error_type: WorkflowErrorType, attempt: int,
             failed_node_id: Optional[str] = None, retryable: bool = False) -> Dict[str, Any]:
    return {
        "failed_node_id": failed_node_id,
        "error_type": error_type.value,
        "message": message,
        "retryable": retryable,
        "attempt": attempt,
    }


def node_results(state: WorkflowState, errors: Dict[UUID, ClassifiedError]) -> List[Dict[str, Any]]:
    """Completed nodes with outputs, then failed nodes with their classified error."""
    results = []
    for node_id in state.completed_nodes:
        node = state.graph.node(node_id)
        results.append(NodeResult(str(node_id), node.key, WorkflowStatus.COMPLETED,
                                  output=state.output_of(node_id)).to_dict())
    for node_id in state.failed_nodes:
        node = state.graph.node(node_id)
        classified = errors.get(node_id)
        results.append(NodeResult(str(node_id), node.key, WorkflowStatus.FAILED,
                                  error=classified.to_dict() if classified else None).to_dict())
    return results


class WorkflowCoordinationActivities:
    """Activity implementations sharing the worker's database and node executor."""

    def __init__(self, database: Database, node_executor: NodeExecutor):
        self.database = database
        self.node_executor = node_executor
        self.records = ExecutionRecordService(database)

    async def load_graph(self, workspace_id: UUID, node_ids: List[UUID]) -> WorkflowGraph:
        """Build the runtime graph; invalid node configs raise NodeConfigValidationError."""
        definitions = await self.database.get_nodes(workspace_id, node_ids)
        nodes = [WorkflowNode.from_definition(d) for d in definitions]
        for node in nodes:
            self.node_executor.validate(node)
        edges = [WorkflowEdge.from_definition(e)
                 for e in await self.database.get_edges_between(workspace_id, [n.id for n in nodes])]
        return WorkflowGraph.build(nodes, edges)

    @activity.defn(name=COORDINATOR_ACTIVITY_NAME)
    async def execute_workflow_with_coordinator(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run the workflow DAG to a terminal state.

        Returns:
            Dict with phase, node_results and error (None on success)
        """
        info = activity.info()
        request = WorkflowRequest.from_dict(payload)
        execution_id = UUID(execution_id_from_workflow_id(info.workflow_id))
        workspace_id = UUID(request.workspace_id)
        attempt = info.attempt
        max_attempts = request.retry_policy.max_attempts

        logger.info("Coordinator activity started", execution_id=str(execution_id),
                    attempt=attempt, node_count=len(request.node_ids))

        try:
            graph = await self.load_graph(workspace_id, [UUID(n) for n in request.node_ids])
        except Exception as e:
            classified = classify_error(e)
            if classified.retryable and attempt < max_attempts:
                raise ApplicationError(classified.message, type=classified.error_type.value) from e
            return {
                "phase": WorkflowPhase.FAILED.value,
                "node_results": [],
                "error": _failure(classified.message, classified.error_type, attempt,
                                  retryable=classified.retryable),
            }

        recorder = NodeExecutionRecorder(self.database, execution_id, workspace_id, attempt)
        await recorder.load()

        context = WorkflowExecutionContext(
            execution_id=execution_id,
            workspace_id=workspace_id,
            trigger=request.input or {},
        )
        classified_errors: Dict[UUID, ClassifiedError] = {}

        async def run_node(node: WorkflowNode, state: WorkflowState) -> Any:
            node_context = context.with_steps(state.outputs_by_key())
            if recorder.has_completed(node.id):
                output = recorder.completed_output(node.id)
                self.node_executor.restore(node, node_context, output)
                return output

            inputs = None
            record_id = None
            try:
                inputs = self.node_executor.resolve_inputs(node, node_context)
                record_id = await recorder.start(node, inputs)
                output = await self.node_executor.execute(node, node_context, inputs)
            except asyncio.CancelledError:
                # A sibling failed; the RUNNING record must not outlive the walk
                if record_id is not None:
                    await recorder.fail(record_id, CANCELLED_NODE_ERROR)
                raise
            except Exception as e:
                classified = classify_error(e, node.type)
                classified_errors[node.id] = classified
                if record_id is None:
                    record_id = await recorder.start(node, inputs)
                await recorder.fail(record_id, classified)
                raise

            await recorder.complete(record_id, node, output)
            activity.heartbeat({"completed_node": node.key})
            return output

        coordinator = GraphCoordinator()
        try:
            state = await coordinator.execute_workflow(graph, run_node)
        except WorkflowValidationError as e:
            return {
                "phase": WorkflowPhase.FAILED.value,
                "node_results": [],
                "error": _failure(str(e), WorkflowErrorType.VALIDATION_ERROR, attempt),
            }

        if state.phase == WorkflowPhase.COMPLETED:
            return {
                "phase": state.phase.value,
                "node_results": node_results(state, classified_errors),
                "error": None,
            }

        failed_id = next(iter(state.failed_nodes))
        failed_node = graph.node(failed_id)
        classified = classified_errors.get(failed_id) or classify_error(
            state.node_errors[failed_id], failed_node.type
        )

        if classified.retryable and attempt < max_attempts:
            logger.warning("Retryable node failure, retrying walk", execution_id=str(execution_id),
                           node_key=failed_node.key, attempt=attempt, error=classified.message)
            raise ApplicationError(
                f"Node '{failed_node.key}' failed: {classified.message}",
                {"failed_node_id": str(failed_id)},
                type=classified.error_type.value,
                non_retryable=False,
            )

        logger.error("Workflow failed", execution_id=str(execution_id), node_key=failed_node.key,
                     error_type=classified.error_type.value, attempt=attempt)
        return {
            "phase": state.phase.value,
            "node_results": node_results(state, classified_errors),
            "error": _failure(classified.message, classified.error_type, attempt,
                              failed_node_id=str(failed_id), retryable=classified.retryable),
        }

    @activity.defn(name=RECORD_COMPLETION_ACTIVITY_NAME)
    async def record_completion(self, payload: Dict[str, Any]) -> bool:
        """Persist the final result on the execution record and clean up its queue item."""
        results = payload.get("node_results") or []
        output = {
            "node_results": results,
            "outputs": {r["node_key"]: r.get("output") for r in results
                        if r.get("status") == WorkflowStatus.COMPLETED.value},
        }
        return await self.records.record_completion(
            UUID(payload["execution_id"]),
            WorkflowStatus(payload["status"]),
            output=output,
            error=payload.get("error"),
        )
