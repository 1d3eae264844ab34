"""Unit tests for GraphCoordinator: concurrent execution driven by the state machine."""

import asyncio
import uuid

import pytest

from models.enums import WorkflowNodeType
from models.nodes import WorkflowEdge
from services.coordinator import (
    GraphCoordinator,
    WorkflowGraph,
    WorkflowPhase,
    WorkflowValidationError,
)
from services.execution.models import WorkflowExecutionContext


class TestExecuteWorkflow:
    """Tests for execute_workflow."""

    async def test_linear_success(self, make_node, make_graph):
        """A -> B -> C completes with three outputs in dependency order."""
        a, b, c = make_node("a"), make_node("b"), make_node("c")
        graph = make_graph([a, b, c], [("a", "b"), ("b", "c")])
        order = []

        async def run_node(node, state):
            order.append(node.key)
            return {"key": node.key, "seen": sorted(state.outputs_by_key())}

        state = await GraphCoordinator().execute_workflow(graph, run_node)

        assert state.phase == WorkflowPhase.COMPLETED
        assert order == ["a", "b", "c"]
        assert len(state.data_registry) == 3
        assert state.output_of(c.id) == {"key": "c", "seen": ["a", "b"]}

    async def test_diamond_failure_stops_before_join(self, make_node, make_graph):
        """B fails: D never runs, A is completed and B failed."""
        a, b, c, d = (make_node(k) for k in "abcd")
        graph = make_graph([a, b, c, d], [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")])
        ran = []

        async def run_node(node, state):
            ran.append(node.key)
            if node.key == "b":
                raise RuntimeError("b exploded")
            if node.key == "c":
                await asyncio.sleep(0.05)
            return {"ok": node.key}

        state = await GraphCoordinator().execute_workflow(graph, run_node)

        assert state.phase == WorkflowPhase.FAILED
        assert state.completed_nodes >= {a.id}
        assert state.failed_nodes == {b.id}
        assert d.id not in state.completed_nodes
        assert "d" not in ran
        assert isinstance(state.node_errors[b.id], RuntimeError)

    async def test_failure_cancels_in_flight_siblings(self, make_node, make_graph):
        """A slow sibling still running at the first failure is cancelled."""
        root, fast, slow = make_node("root"), make_node("fast"), make_node("slow")
        graph = make_graph([root, fast, slow], [("root", "fast"), ("root", "slow")])
        cancelled = asyncio.Event()

        async def run_node(node, state):
            if node.key == "fast":
                raise ValueError("nope")
            if node.key == "slow":
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise
            return {}

        state = await GraphCoordinator().execute_workflow(graph, run_node)
        assert state.phase == WorkflowPhase.FAILED
        assert cancelled.is_set()
        assert slow.id not in state.completed_nodes

    async def test_siblings_run_concurrently(self, make_node, make_graph):
        """Independent branches overlap instead of running one after another."""
        root, left, right = make_node("root"), make_node("left"), make_node("right")
        graph = make_graph([root, left, right], [("root", "left"), ("root", "right")])
        both_started = asyncio.Event()
        started = set()

        async def run_node(node, state):
            if node.key != "root":
                started.add(node.key)
                if len(started) == 2:
                    both_started.set()
                await asyncio.wait_for(both_started.wait(), timeout=1)
            return {}

        state = await GraphCoordinator().execute_workflow(graph, run_node)
        assert state.phase == WorkflowPhase.COMPLETED

    async def test_invalid_graph_raises_with_failed_state(self, make_node):
        """Validation failure raises and reports a FAILED state to listeners."""
        a = make_node("a")
        graph = WorkflowGraph.build([a], [WorkflowEdge(source_id=a.id, target_id=uuid.uuid4())])
        seen = []

        async def run_node(node, state):
            raise AssertionError("must not run")

        with pytest.raises(WorkflowValidationError) as exc_info:
            await GraphCoordinator(on_state_change=seen.append).execute_workflow(graph, run_node)

        assert exc_info.value.state.phase == WorkflowPhase.FAILED
        assert seen[-1].phase == WorkflowPhase.FAILED

    async def test_state_listener_sees_every_transition(self, make_node, make_graph):
        a, b = make_node("a"), make_node("b")
        graph = make_graph([a, b], [("a", "b")])
        phases = []

        async def run_node(node, state):
            return {}

        await GraphCoordinator(on_state_change=lambda s: phases.append(s.phase)).execute_workflow(graph, run_node)
        assert phases[0] == WorkflowPhase.EXECUTING_NODES
        assert phases[-1] == WorkflowPhase.COMPLETED


class TestConditionRouting:
    """Condition nodes executed through the real node executor."""

    async def test_negative_balance_takes_false_branch(
        self, make_node, make_graph, node_executor, entity_service, create_workspace
    ):
        """entity.balance > 0 with balance -5 routes to the false target only."""
        workspace = await create_workspace()
        account = await entity_service.create_entity(workspace.id, uuid.uuid4(), {"balance": -5})

        check = make_node("check", WorkflowNodeType.CONTROL_FLOW, "CONDITION", {
            "expression": "entity.balance > 0",
            "context_entity_id": "{{trigger.account_id}}",
        })
        positive, negative = make_node("positive"), make_node("negative")
        graph = make_graph(
            [check, positive, negative],
            [("check", "positive", "true"), ("check", "negative", "false")],
        )
        context = WorkflowExecutionContext(
            execution_id=uuid.uuid4(),
            workspace_id=workspace.id,
            trigger={"account_id": str(account.id)},
        )

        async def run_node(node, state):
            return await node_executor.execute(node, context.with_steps(state.outputs_by_key()))

        state = await GraphCoordinator().execute_workflow(graph, run_node)

        assert state.phase == WorkflowPhase.COMPLETED
        assert state.output_of(check.id)["condition_result"] is False
        assert state.completed_nodes == {check.id, negative.id}
        assert state.skipped_nodes == {positive.id}
