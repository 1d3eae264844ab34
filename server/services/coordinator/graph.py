"""Workflow graph structure, validation and topological ordering."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from constants import BRANCH_FALSE, BRANCH_TRUE
from models.nodes import WorkflowEdge, WorkflowNode


class GraphCycleError(ValueError):
    """The graph contains at least one cycle."""

    def __init__(self, remaining: Iterable[UUID]):
        self.remaining = sorted(str(node_id) for node_id in remaining)
        super().__init__(f"Workflow graph contains a cycle through {len(self.remaining)} node(s)")


@dataclass(frozen=True)
class WorkflowGraph:
    """Immutable DAG of workflow nodes with precomputed adjacency.

    Edges pointing at unknown nodes are kept in ``edges`` so validation can
    report them, but are left out of the adjacency maps.
    """
    nodes: Dict[UUID, WorkflowNode]
    edges: Tuple[WorkflowEdge, ...]
    _successors: Dict[UUID, Tuple[UUID, ...]] = field(repr=False, compare=False)
    _predecessors: Dict[UUID, FrozenSet[UUID]] = field(repr=False, compare=False)
    _outgoing: Dict[UUID, Tuple[WorkflowEdge, ...]] = field(repr=False, compare=False)

    @classmethod
    def build(cls, nodes: Iterable[WorkflowNode], edges: Iterable[WorkflowEdge]) -> "WorkflowGraph":
        node_map = {node.id: node for node in nodes}
        edge_list = tuple(edges)

        successors: Dict[UUID, List[UUID]] = {node_id: [] for node_id in node_map}
        predecessors: Dict[UUID, Set[UUID]] = {node_id: set() for node_id in node_map}
        outgoing: Dict[UUID, List[WorkflowEdge]] = {node_id: [] for node_id in node_map}

        for edge in edge_list:
            if edge.source_id not in node_map or edge.target_id not in node_map:
                continue
            if edge.target_id not in successors[edge.source_id]:
                successors[edge.source_id].append(edge.target_id)
            predecessors[edge.target_id].add(edge.source_id)
            outgoing[edge.source_id].append(edge)

        return cls(
            nodes=node_map,
            edges=edge_list,
            _successors={k: tuple(v) for k, v in successors.items()},
            _predecessors={k: frozenset(v) for k, v in predecessors.items()},
            _outgoing={k: tuple(v) for k, v in outgoing.items()},
        )

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: UUID) -> WorkflowNode:
        return self.nodes[node_id]

    def successors(self, node_id: UUID) -> Tuple[UUID, ...]:
        return self._successors.get(node_id, ())

    def predecessors(self, node_id: UUID) -> FrozenSet[UUID]:
        return self._predecessors.get(node_id, frozenset())

    def outgoing_edges(self, node_id: UUID) -> Tuple[WorkflowEdge, ...]:
        return self._outgoing.get(node_id, ())

    def roots(self) -> FrozenSet[UUID]:
        """Nodes without predecessors."""
        return frozenset(node_id for node_id in self.nodes if not self._predecessors[node_id])

    def branch_targets(self, node_id: UUID, output: Any) -> Tuple[FrozenSet[UUID], FrozenSet[UUID]]:
        """Split successors into (followed, not followed) for a completed node.

        Only a control-flow node's boolean result prunes edges: an edge is
        followed when it is unlabeled or its label matches "true"/"false".
        A target reachable through any followed edge is followed.
        """
        node = self.nodes[node_id]
        edges = self.outgoing_edges(node_id)
        if not node.is_control_flow or not isinstance(output, dict) or "condition_result" not in output:
            return frozenset(e.target_id for e in edges), frozenset()

        branch = BRANCH_TRUE if output["condition_result"] is True else BRANCH_FALSE
        followed = frozenset(
            e.target_id for e in edges
            if e.label is None or e.label.strip().lower() == branch
        )
        pruned = frozenset(e.target_id for e in edges) - followed
        return followed, pruned


@dataclass
class GraphValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def topological_sort(graph: WorkflowGraph) -> List[UUID]:
    """Kahn's algorithm. Raises GraphCycleError if not every node can be ordered."""
    in_degree = {node_id: len(graph.predecessors(node_id)) for node_id in graph.nodes}
    queue = deque(node_id for node_id in graph.nodes if in_degree[node_id] == 0)
    ordered: List[UUID] = []

    while queue:
        node_id = queue.popleft()
        ordered.append(node_id)
        for successor in graph.successors(node_id):
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                queue.append(successor)

    if len(ordered) != len(graph.nodes):
        raise GraphCycleError(set(graph.nodes) - set(ordered))
    return ordered


def _unreachable(graph: WorkflowGraph) -> Set[UUID]:
    seen: Set[UUID] = set()
    queue = deque(graph.roots())
    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        queue.extend(graph.successors(node_id))
    return set(graph.nodes) - seen


def validate_graph(graph: WorkflowGraph) -> GraphValidationResult:
    """Structural validation.

    Edge consistency fails fast: a dangling edge makes the remaining checks
    meaningless. Otherwise cycles, unreachable nodes and condition wiring
    (fan-out and branch labels) are all reported together.
    """
    result = GraphValidationResult()

    for edge in graph.edges:
        if edge.source_id not in graph.nodes:
            result.errors.append(f"Edge {edge.id} references unknown source node {edge.source_id}")
        if edge.target_id not in graph.nodes:
            result.errors.append(f"Edge {edge.id} references unknown target node {edge.target_id}")
    if result.errors:
        return result

    try:
        topological_sort(graph)
    except GraphCycleError as e:
        result.errors.append(str(e))

    unreachable = _unreachable(graph)
    if unreachable:
        keys = sorted(graph.node(node_id).key for node_id in unreachable)
        result.errors.append(f"Unreachable nodes: {', '.join(keys)}")

    for node in graph.nodes.values():
        if not node.is_control_flow:
            continue
        edges = graph.outgoing_edges(node.id)
        if len(edges) < 2:
            result.errors.append(f"Condition node '{node.key}' needs at least 2 outgoing edges")
        for edge in edges:
            # Any other label can never match a condition result
            if edge.label is not None and edge.label.strip().lower() not in (BRANCH_TRUE, BRANCH_FALSE):
                target = graph.node(edge.target_id).key
                result.errors.append(
                    f"Condition node '{node.key}' has edge to '{target}' with unknown label '{edge.label}'"
                )

    return result


def descendants(graph: WorkflowGraph, start: Iterable[UUID], stop: Optional[Set[UUID]] = None) -> Set[UUID]:
    """Every node reachable from ``start`` (inclusive), not expanding through ``stop``."""
    stop = stop or set()
    found: Set[UUID] = set()
    queue = deque(start)
    while queue:
        node_id = queue.popleft()
        if node_id in found or node_id in stop:
            continue
        found.add(node_id)
        queue.extend(graph.successors(node_id))
    return found
