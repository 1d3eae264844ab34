"""Shared fixtures: temporary SQLite database, graph builders and node services."""

import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx
import pytest

from core.config import Settings
from core.database import Database
from models.database import (
    EdgeDefinition,
    NodeDefinition,
    WorkflowDefinition,
    WorkflowDefinitionVersion,
    Workspace,
)
from models.enums import WorkflowNodeType, WorkspacePlan
from models.nodes import WorkflowEdge, WorkflowNode, parse_node_config
from services.coordinator import WorkflowGraph
from services.entity import EntityService
from services.entity_context import EntityContextService
from services.expression import ExpressionEvaluator, ExpressionParser
from services.node_executor import NodeExecutor, NodeServiceProvider
from services.parameter_resolver import ParameterResolver

# (source key, target key) or (source key, target key, label)
EdgeSpec = Tuple[str, ...]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}",
        log_format="console",
        queue_batch_size=10,
        queue_max_attempts=3,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest.fixture
def make_node():
    """Build an in-memory WorkflowNode. Defaults to a map-data utility."""
    def _make(key: str, node_type: WorkflowNodeType = WorkflowNodeType.UTILITY,
              subtype: str = "MAP_DATA", config: Optional[Dict[str, Any]] = None) -> WorkflowNode:
        if config is None:
            config = {"mapping": {"node": key}}
        return WorkflowNode(
            id=uuid.uuid4(),
            key=key,
            name=key.title(),
            type=node_type,
            subtype=subtype,
            config=parse_node_config(node_type, subtype, config),
        )
    return _make


@pytest.fixture
def make_graph():
    """Build a WorkflowGraph from nodes and key-based edge tuples."""
    def _make(nodes: Sequence[WorkflowNode], edges: Iterable[EdgeSpec] = ()) -> WorkflowGraph:
        by_key = {node.key: node for node in nodes}
        built = [
            WorkflowEdge(
                source_id=by_key[edge[0]].id,
                target_id=by_key[edge[1]].id,
                label=edge[2] if len(edge) > 2 else None,
            )
            for edge in edges
        ]
        return WorkflowGraph.build(nodes, built)
    return _make


@pytest.fixture
async def create_workspace(database):
    async def _create(plan: WorkspacePlan = WorkspacePlan.STARTUP, name: str = "Acme") -> Workspace:
        workspace = Workspace(name=name, plan=plan)
        async with database.get_session() as session:
            session.add(workspace)
            await session.commit()
        return workspace
    return _create


@pytest.fixture
async def create_workflow(database):
    """Persist a definition, its nodes, edges and one version.

    Nodes are (key, type, subtype, config) tuples. Returns the definition,
    the version and a key -> NodeDefinition map.
    """
    async def _create(workspace_id: uuid.UUID,
                      nodes: Sequence[Tuple[str, WorkflowNodeType, str, Dict[str, Any]]],
                      edges: Iterable[EdgeSpec] = ()):
        definition = WorkflowDefinition(workspace_id=workspace_id, name="Test workflow")
        node_defs = {
            key: NodeDefinition(workspace_id=workspace_id, key=key, name=key.title(),
                                type=node_type, subtype=subtype, config=config)
            for key, node_type, subtype, config in nodes
        }
        edge_defs: List[EdgeDefinition] = [
            EdgeDefinition(
                workspace_id=workspace_id,
                source_node_id=node_defs[edge[0]].id,
                target_node_id=node_defs[edge[1]].id,
                label=edge[2] if len(edge) > 2 else None,
            )
            for edge in edges
        ]
        version = WorkflowDefinitionVersion(
            workflow_definition_id=definition.id,
            workspace_id=workspace_id,
            workflow={"node_ids": [str(n.id) for n in node_defs.values()]},
        )

        async with database.get_session() as session:
            session.add(definition)
            await session.flush()
            session.add_all(list(node_defs.values()))
            session.add_all(edge_defs)
            session.add(version)
            await session.commit()
        return definition, version, node_defs
    return _create


@pytest.fixture
async def http_client():
    client = httpx.AsyncClient()
    yield client
    await client.aclose()


@pytest.fixture
def entity_service(database) -> EntityService:
    return EntityService(database)


@pytest.fixture
def node_services(entity_service, http_client) -> NodeServiceProvider:
    return NodeServiceProvider(
        entity_service,
        EntityContextService(entity_service),
        ExpressionParser(),
        ExpressionEvaluator(),
        http_client,
    )


@pytest.fixture
def node_executor(node_services, settings) -> NodeExecutor:
    return NodeExecutor(node_services, ParameterResolver(), settings)
