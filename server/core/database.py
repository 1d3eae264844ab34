"""Async database service with SQLModel and SQLAlchemy 2.0."""

from typing import List, Optional, Sequence
from uuid import UUID
from contextlib import asynccontextmanager

from sqlmodel import SQLModel, select, col
from sqlalchemy import func, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from core.config import Settings
from core.logging import get_logger
from models.database import (
    EdgeDefinition,
    NodeDefinition,
    WorkflowDefinition,
    WorkflowDefinitionVersion,
    WorkflowExecution,
    Workspace,
)
from models.enums import WorkflowStatus

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            engine_kwargs = {"echo": self.settings.database_echo, "future": True}
            # SQLite uses a static pool; sizing arguments only apply to server databases
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow
                engine_kwargs["pool_pre_ping"] = True

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully", dialect=self.engine.dialect.name)

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        async with self.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True

    # ============================================================================
    # Workspaces
    # ============================================================================

    async def get_workspace(self, workspace_id: UUID,
                            session: Optional[AsyncSession] = None) -> Optional[Workspace]:
        """Get a workspace by id, optionally inside a caller's session."""
        if session is not None:
            return await session.get(Workspace, workspace_id)
        async with self.get_session() as own:
            return await own.get(Workspace, workspace_id)

    async def count_running_executions(self, session: AsyncSession, workspace_id: UUID) -> int:
        stmt = select(func.count()).select_from(WorkflowExecution).where(
            WorkflowExecution.workspace_id == workspace_id,
            WorkflowExecution.status == WorkflowStatus.RUNNING,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    # ============================================================================
    # Workflow Definitions
    # ============================================================================

    async def get_workflow_definition(self, definition_id: UUID,
                                      session: Optional[AsyncSession] = None) -> Optional[WorkflowDefinition]:
        if session is not None:
            definition = await session.get(WorkflowDefinition, definition_id)
        else:
            async with self.get_session() as own:
                definition = await own.get(WorkflowDefinition, definition_id)
        if definition is None or definition.deleted:
            return None
        return definition

    async def get_latest_version(self, session: AsyncSession,
                                 definition_id: UUID) -> Optional[WorkflowDefinitionVersion]:
        """Get the highest-numbered version of a workflow definition."""
        stmt = (
            select(WorkflowDefinitionVersion)
            .where(WorkflowDefinitionVersion.workflow_definition_id == definition_id)
            .order_by(col(WorkflowDefinitionVersion.version_number).desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    # ============================================================================
    # Graph Loading
    # ============================================================================

    async def get_nodes(self, workspace_id: UUID, node_ids: Sequence[UUID]) -> List[NodeDefinition]:
        """Load live node definitions in the order the ids were given."""
        if not node_ids:
            return []
        async with self.get_session() as session:
            stmt = select(NodeDefinition).where(
                col(NodeDefinition.id).in_(list(node_ids)),
                NodeDefinition.workspace_id == workspace_id,
                NodeDefinition.deleted == False,  # noqa: E712
            )
            result = await session.execute(stmt)
            by_id = {node.id: node for node in result.scalars().all()}

        missing = [str(node_id) for node_id in node_ids if node_id not in by_id]
        if missing:
            logger.warning("Workflow references missing nodes",
                           workspace_id=str(workspace_id), missing=missing)
        return [by_id[node_id] for node_id in node_ids if node_id in by_id]

    async def get_edges_between(self, workspace_id: UUID, node_ids: Sequence[UUID]) -> List[EdgeDefinition]:
        """Load every edge leaving one of the given nodes."""
        if not node_ids:
            return []
        async with self.get_session() as session:
            stmt = (
                select(EdgeDefinition)
                .where(
                    col(EdgeDefinition.source_node_id).in_(list(node_ids)),
                    EdgeDefinition.workspace_id == workspace_id,
                )
                .order_by(EdgeDefinition.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
