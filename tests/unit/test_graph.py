"""Unit tests for WorkflowGraph, topological sort and structural validation."""

import uuid

import pytest

from models.enums import WorkflowNodeType
from models.nodes import WorkflowEdge
from services.coordinator import GraphCycleError, WorkflowGraph, topological_sort, validate_graph
from services.coordinator.graph import descendants


class TestWorkflowGraph:
    """Tests for adjacency and branch selection."""

    def test_adjacency(self, make_node, make_graph):
        """Successors keep edge order; predecessors are sets."""
        a, b, c = make_node("a"), make_node("b"), make_node("c")
        graph = make_graph([a, b, c], [("a", "b"), ("a", "c"), ("b", "c")])

        assert graph.successors(a.id) == (b.id, c.id)
        assert graph.predecessors(c.id) == {a.id, b.id}
        assert graph.roots() == {a.id}
        assert len(graph) == 3

    def test_duplicate_edges_collapse_in_successors(self, make_node, make_graph):
        a, b = make_node("a"), make_node("b")
        graph = make_graph([a, b], [("a", "b"), ("a", "b")])
        assert graph.successors(a.id) == (b.id,)
        assert len(graph.outgoing_edges(a.id)) == 2

    def test_branch_targets_for_non_condition(self, make_node, make_graph):
        """Non-control-flow nodes follow every outgoing edge."""
        a, b = make_node("a"), make_node("b")
        graph = make_graph([a, b], [("a", "b", "true")])
        followed, pruned = graph.branch_targets(a.id, {"condition_result": False})
        assert followed == {b.id}
        assert pruned == frozenset()

    def test_branch_label_case_insensitive(self, make_node, make_graph):
        check = make_node("check", WorkflowNodeType.CONTROL_FLOW, "CONDITION", {"expression": "true"})
        yes, no = make_node("yes"), make_node("no")
        graph = make_graph([check, yes, no], [("check", "yes", "TRUE"), ("check", "no", " False ")])

        followed, pruned = graph.branch_targets(check.id, {"condition_result": True})
        assert followed == {yes.id}
        assert pruned == {no.id}


class TestTopologicalSort:
    """Tests for Kahn ordering."""

    def test_orders_dependencies_first(self, make_node, make_graph):
        a, b, c, d = (make_node(k) for k in "abcd")
        graph = make_graph([d, c, b, a], [("a", "b"), ("b", "c"), ("a", "d"), ("d", "c")])
        order = topological_sort(graph)
        assert order.index(a.id) < order.index(b.id) < order.index(c.id)
        assert order.index(d.id) < order.index(c.id)

    def test_cycle_raises(self, make_node, make_graph):
        a, b, c = make_node("a"), make_node("b"), make_node("c")
        graph = make_graph([a, b, c], [("a", "b"), ("b", "c"), ("c", "b")])
        with pytest.raises(GraphCycleError) as exc_info:
            topological_sort(graph)
        assert sorted(exc_info.value.remaining) == sorted([str(b.id), str(c.id)])


class TestValidateGraph:
    """Tests for structural validation."""

    def test_valid_graph(self, make_node, make_graph):
        a, b = make_node("a"), make_node("b")
        assert validate_graph(make_graph([a, b], [("a", "b")])).valid

    def test_dangling_edge_fails_fast(self, make_node):
        """Edges to unknown nodes are reported and stop further checks."""
        a = make_node("a")
        graph = WorkflowGraph.build([a], [WorkflowEdge(source_id=a.id, target_id=uuid.uuid4())])
        result = validate_graph(graph)
        assert not result.valid
        assert len(result.errors) == 1
        assert "unknown target" in result.errors[0]

    def test_cycle_reported(self, make_node, make_graph):
        a, b, c = make_node("a"), make_node("b"), make_node("c")
        result = validate_graph(make_graph([a, b, c], [("a", "b"), ("b", "c"), ("c", "b")]))
        assert any("cycle" in error for error in result.errors)

    def test_condition_needs_two_edges(self, make_node, make_graph):
        check = make_node("check", WorkflowNodeType.CONTROL_FLOW, "CONDITION", {"expression": "true"})
        yes = make_node("yes")
        result = validate_graph(make_graph([check, yes], [("check", "yes", "true")]))
        assert result.errors == ["Condition node 'check' needs at least 2 outgoing edges"]

    def test_condition_edge_labels_must_be_boolean(self, make_node, make_graph):
        """A label that no condition result can select is reported, not silently pruned."""
        check = make_node("check", WorkflowNodeType.CONTROL_FLOW, "CONDITION", {"expression": "true"})
        yes, no, always = make_node("yes"), make_node("no"), make_node("always")
        result = validate_graph(make_graph(
            [check, yes, no, always],
            [("check", "yes", "yes"), ("check", "no", " False "), ("check", "always")],
        ))
        assert result.errors == ["Condition node 'check' has edge to 'yes' with unknown label 'yes'"]

    def test_unreachable_nodes_reported(self, make_node, make_graph):
        """A cycle with no entry from a root is unreachable."""
        a, b, c = make_node("a"), make_node("b"), make_node("c")
        result = validate_graph(make_graph([a, b, c], [("b", "c"), ("c", "b")]))
        assert any(error == "Unreachable nodes: b, c" for error in result.errors)


class TestDescendants:
    """Tests for subtree collection."""

    def test_stops_at_boundary(self, make_node, make_graph):
        a, b, c, d = (make_node(k) for k in "abcd")
        graph = make_graph([a, b, c, d], [("a", "b"), ("b", "c"), ("c", "d")])
        assert descendants(graph, [b.id]) == {b.id, c.id, d.id}
        assert descendants(graph, [b.id], stop={c.id}) == {b.id}
