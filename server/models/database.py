"""SQLModel database models and tables."""

import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func

from models.enums import (
    ExecutionQueueStatus,
    TriggerType,
    WorkflowNodeType,
    WorkflowStatus,
    WorkspacePlan,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Workspaces and entities
# ============================================================================

class Workspace(SQLModel, table=True):
    """Tenant owning workflows, entities and executions."""

    __tablename__ = "workspaces"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(max_length=255)
    plan: WorkspacePlan = Field(default=WorkspacePlan.FREE)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class Entity(SQLModel, table=True):
    """Workspace entity. Payload is keyed by attribute label."""

    __tablename__ = "entities"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    type_id: uuid.UUID = Field(index=True)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    deleted: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


# ============================================================================
# Workflow definitions
# ============================================================================

class WorkflowDefinition(SQLModel, table=True):
    """Workflow definition header. The graph lives in its versions."""

    __tablename__ = "workflow_definitions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    version_number: int = Field(default=1)
    deleted: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class WorkflowDefinitionVersion(SQLModel, table=True):
    """Immutable snapshot of a definition's graph: {"node_ids": [...]}."""

    __tablename__ = "workflow_definition_versions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workflow_definition_id: uuid.UUID = Field(foreign_key="workflow_definitions.id", index=True)
    workspace_id: uuid.UUID = Field(index=True)
    version_number: int = Field(default=1)
    workflow: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class NodeDefinition(SQLModel, table=True):
    """Stored workflow node. Config is validated into a node config model on load."""

    __tablename__ = "workflow_nodes"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    key: str = Field(max_length=255)
    name: str = Field(max_length=255)
    version: int = Field(default=1)
    type: WorkflowNodeType
    subtype: str = Field(max_length=50)
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    deleted: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class EdgeDefinition(SQLModel, table=True):
    """Dependency edge. Label selects the branch after a control-flow node."""

    __tablename__ = "workflow_edges"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    source_node_id: uuid.UUID = Field(index=True)
    target_node_id: uuid.UUID = Field(index=True)
    label: Optional[str] = Field(default=None, max_length=50)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


# ============================================================================
# Execution queue and records
# ============================================================================

class ExecutionQueueItem(SQLModel, table=True):
    """Backlog row claimed by dispatchers with skip-locked reads."""

    __tablename__ = "execution_queue"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    workflow_definition_id: uuid.UUID = Field(index=True)
    execution_id: Optional[uuid.UUID] = Field(default=None, index=True)
    status: ExecutionQueueStatus = Field(default=ExecutionQueueStatus.PENDING, index=True)
    attempt_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None, max_length=2000)
    input: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    claimed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    dispatched_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class WorkflowExecution(SQLModel, table=True):
    """One run of a workflow definition version."""

    __tablename__ = "workflow_executions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    workflow_definition_id: uuid.UUID = Field(index=True)
    workflow_version_id: uuid.UUID
    engine_workflow_id: Optional[str] = Field(default=None, max_length=255)
    engine_run_id: Optional[str] = Field(default=None, max_length=255)
    status: WorkflowStatus = Field(default=WorkflowStatus.RUNNING, index=True)
    trigger_type: TriggerType = Field(default=TriggerType.FUNCTION)
    started_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    duration_ms: int = Field(default=0)
    input: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    output: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


class WorkflowExecutionNode(SQLModel, table=True):
    """Per-node trace, written ahead of and after each node execution."""

    __tablename__ = "workflow_execution_nodes"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    workspace_id: uuid.UUID = Field(index=True)
    workflow_execution_id: uuid.UUID = Field(foreign_key="workflow_executions.id", index=True)
    node_id: uuid.UUID = Field(index=True)
    sequence_index: int = Field(default=0)
    status: WorkflowStatus = Field(default=WorkflowStatus.RUNNING)
    attempt: int = Field(default=1)
    started_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    duration_ms: int = Field(default=0)
    input: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    output: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


# ============================================================================
# Scheduler leases
# ============================================================================

class SchedulerLease(SQLModel, table=True):
    """Cluster-wide lease row, one per scheduled task name."""

    __tablename__ = "scheduler_leases"

    name: str = Field(primary_key=True, max_length=64)
    lock_until: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    locked_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    locked_by: str = Field(max_length=255)
