"""Enumerations shared by the workflow tables, node configs and services."""

from enum import Enum


class WorkflowNodeType(str, Enum):
    """Top-level node category."""
    TRIGGER = "TRIGGER"
    ACTION = "ACTION"
    CONTROL_FLOW = "CONTROL_FLOW"
    FUNCTION = "FUNCTION"
    UTILITY = "UTILITY"


class TriggerType(str, Enum):
    """Trigger subtypes. Also recorded as the trigger type of an execution."""
    ENTITY_EVENT = "ENTITY_EVENT"
    SCHEDULE = "SCHEDULE"
    WEBHOOK = "WEBHOOK"
    FUNCTION = "FUNCTION"


class ActionType(str, Enum):
    """Side-effecting action subtypes."""
    CREATE_ENTITY = "CREATE_ENTITY"
    UPDATE_ENTITY = "UPDATE_ENTITY"
    DELETE_ENTITY = "DELETE_ENTITY"
    QUERY_ENTITY = "QUERY_ENTITY"
    BULK_UPDATE_ENTITY = "BULK_UPDATE_ENTITY"
    HTTP_REQUEST = "HTTP_REQUEST"
    SET_VARIABLE = "SET_VARIABLE"


class ControlType(str, Enum):
    """Control-flow subtypes."""
    CONDITION = "CONDITION"


class FunctionType(str, Enum):
    """Pure function subtypes."""
    EXPRESSION = "EXPRESSION"


class UtilityType(str, Enum):
    """Pure utility subtypes."""
    MAP_DATA = "MAP_DATA"


class BulkUpdateErrorHandling(str, Enum):
    """How a bulk update reacts to a single entity failing."""
    FAIL_FAST = "FAIL_FAST"
    BEST_EFFORT = "BEST_EFFORT"


class ExecutionQueueStatus(str, Enum):
    """Queue item lifecycle.

    State transitions:
        PENDING -> CLAIMED -> DISPATCHED
                           -> FAILED
        CLAIMED -> PENDING (stale recovery, capacity release, retry)
    """
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    DISPATCHED = "DISPATCHED"
    FAILED = "FAILED"


class WorkflowStatus(str, Enum):
    """Status of a workflow execution or of one node execution."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WorkspacePlan(str, Enum):
    """Billing plan of a workspace, bounding concurrent executions."""
    FREE = "FREE"
    STARTUP = "STARTUP"
    SCALE = "SCALE"
    ENTERPRISE = "ENTERPRISE"

    @property
    def max_concurrent_workflows(self) -> int:
        return _PLAN_CONCURRENCY[self]


_PLAN_CONCURRENCY = {
    WorkspacePlan.FREE: 1,
    WorkspacePlan.STARTUP: 5,
    WorkspacePlan.SCALE: 20,
    WorkspacePlan.ENTERPRISE: 100,
}
