"""Pydantic models for node configs with discriminated unions.

Stored node configs carry a ``config_type`` discriminator. ``parse_node_config``
maps a node's (type, subtype) pair onto the matching config model and validates
the raw JSON through a single module-level TypeAdapter.

Each config also exposes ``validate_config`` for semantic checks that go beyond
the schema (UUID-or-template fields, expression syntax, HTTP method names).
"""

import uuid
from dataclasses import dataclass, field
from typing import (
    Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type, Union, Annotated, TYPE_CHECKING,
)

from pydantic import BaseModel, Field, TypeAdapter

from constants import HTTP_METHODS, TEMPLATE_PATTERN
from models.database import EdgeDefinition, NodeDefinition
from models.enums import (
    ActionType,
    BulkUpdateErrorHandling,
    ControlType,
    FunctionType,
    TriggerType,
    UtilityType,
    WorkflowNodeType,
)

if TYPE_CHECKING:
    from services.node_executor import NodeServiceProvider


class UnknownNodeTypeError(ValueError):
    """No config model is registered for a (type, subtype) pair."""

    def __init__(self, node_type: str, subtype: str):
        super().__init__(f"Unknown node type {node_type}/{subtype}")
        self.node_type = node_type
        self.subtype = subtype


def is_template(value: Any) -> bool:
    return isinstance(value, str) and TEMPLATE_PATTERN.search(value) is not None


def _check_uuid_or_template(errors: List[str], field_name: str, value: Optional[str],
                            required: bool = True) -> None:
    if value is None or value == "":
        if required:
            errors.append(f"{field_name} is required")
        return
    if is_template(value):
        return
    try:
        uuid.UUID(str(value))
    except ValueError:
        errors.append(f"{field_name} must be a UUID or a template, got '{value}'")


def _check_expression(errors: List[str], field_name: str, expression: str,
                      services: Optional["NodeServiceProvider"]) -> None:
    if not expression or not expression.strip():
        errors.append(f"{field_name} is required")
        return
    if services is None:
        return
    from services.expression import ExpressionParser, ExpressionSyntaxError

    try:
        services.service(ExpressionParser).parse(expression)
    except ExpressionSyntaxError as e:
        errors.append(f"{field_name} is invalid: {e}")


# =============================================================================
# BASE MODEL
# =============================================================================

class BaseNodeConfig(BaseModel):
    """Base class for all node configs."""
    model_config = {"extra": "ignore"}

    node_type: ClassVar[WorkflowNodeType]
    subtype: ClassVar[str]

    version: int = 1

    def validate_config(self, services: Optional["NodeServiceProvider"] = None) -> List[str]:
        """Return human-readable problems with this config. Empty means valid."""
        return []

    def template_fields(self) -> Dict[str, Any]:
        """Fields subject to template resolution before execution."""
        return self.model_dump(mode="json", exclude={"config_type", "version"})


# =============================================================================
# TRIGGER CONFIGS
# =============================================================================

class EntityEventTriggerConfig(BaseNodeConfig):
    """Starts a workflow when an entity of a type is created, updated or deleted."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.TRIGGER
    subtype: ClassVar[str] = TriggerType.ENTITY_EVENT.value

    config_type: Literal["workflow_entity_event_trigger"]
    entity_type_id: Optional[str] = None
    operations: List[Literal["CREATE", "UPDATE", "DELETE"]] = Field(default_factory=lambda: ["CREATE"])

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_type_id", self.entity_type_id)
        if not self.operations:
            errors.append("operations must not be empty")
        return errors


class ScheduleTriggerConfig(BaseNodeConfig):
    """Starts a workflow on a cron expression or fixed interval."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.TRIGGER
    subtype: ClassVar[str] = TriggerType.SCHEDULE.value

    config_type: Literal["workflow_schedule_trigger"]
    cron_expression: Optional[str] = None
    interval_seconds: Optional[int] = Field(default=None, ge=1)
    timezone: str = "UTC"

    def validate_config(self, services=None) -> List[str]:
        if not self.cron_expression and not self.interval_seconds:
            return ["one of cron_expression or interval_seconds is required"]
        return []


class WebhookTriggerConfig(BaseNodeConfig):
    """Starts a workflow from an inbound HTTP call."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.TRIGGER
    subtype: ClassVar[str] = TriggerType.WEBHOOK.value

    config_type: Literal["workflow_webhook_trigger"]
    path: str = ""
    method: str = "POST"

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        if not self.path:
            errors.append("path is required")
        if self.method.upper() not in HTTP_METHODS:
            errors.append(f"method '{self.method}' is not supported")
        return errors


class FunctionTriggerConfig(BaseNodeConfig):
    """Starts a workflow from an explicit function call carrying arguments."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.TRIGGER
    subtype: ClassVar[str] = TriggerType.FUNCTION.value

    config_type: Literal["workflow_function_trigger"]
    input_schema: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# CONTROL FLOW CONFIGS
# =============================================================================

class ConditionControlConfig(BaseNodeConfig):
    """Boolean branch. Outgoing edges labeled "true"/"false" select the path."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.CONTROL_FLOW
    subtype: ClassVar[str] = ControlType.CONDITION.value

    config_type: Literal["workflow_condition_control"]
    expression: str = ""
    context_entity_id: Optional[str] = None

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_expression(errors, "expression", self.expression, services)
        _check_uuid_or_template(errors, "context_entity_id", self.context_entity_id, required=False)
        return errors

    def template_fields(self) -> Dict[str, Any]:
        # The expression is evaluated, not interpolated
        return {"context_entity_id": self.context_entity_id}


# =============================================================================
# ACTION CONFIGS
# =============================================================================

class CreateEntityActionConfig(BaseNodeConfig):
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.CREATE_ENTITY.value

    config_type: Literal["workflow_create_entity_action"]
    entity_type_id: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_type_id", self.entity_type_id)
        return errors


class UpdateEntityActionConfig(BaseNodeConfig):
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.UPDATE_ENTITY.value

    config_type: Literal["workflow_update_entity_action"]
    entity_id: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_id", self.entity_id)
        if not self.payload:
            errors.append("payload must not be empty")
        return errors


class DeleteEntityActionConfig(BaseNodeConfig):
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.DELETE_ENTITY.value

    config_type: Literal["workflow_delete_entity_action"]
    entity_id: str = ""

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_id", self.entity_id)
        return errors


class QueryEntityActionConfig(BaseNodeConfig):
    """Lists entities of a type whose payload matches every filter pair."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.QUERY_ENTITY.value

    config_type: Literal["workflow_query_entity_action"]
    entity_type_id: str = ""
    filters: Dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_type_id", self.entity_type_id)
        return errors


class BulkUpdateEntityActionConfig(BaseNodeConfig):
    """Applies one payload to every matching entity, in batches."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.BULK_UPDATE_ENTITY.value

    config_type: Literal["workflow_bulk_update_entity_action"]
    entity_type_id: str = ""
    filters: Dict[str, Any] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)
    error_handling: BulkUpdateErrorHandling = BulkUpdateErrorHandling.FAIL_FAST
    batch_size: Optional[int] = Field(default=None, ge=1, le=1000)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_uuid_or_template(errors, "entity_type_id", self.entity_type_id)
        if not self.payload:
            errors.append("payload must not be empty")
        return errors


class HttpRequestActionConfig(BaseNodeConfig):
    """Outbound HTTP call. 4xx/5xx responses fail the node."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.HTTP_REQUEST.value

    config_type: Literal["workflow_http_request_action"]
    url: str = ""
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    query_params: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=300)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        if not self.url:
            errors.append("url is required")
        elif not is_template(self.url) and not self.url.startswith(("http://", "https://")):
            errors.append("url must start with http:// or https://")
        if self.method.upper() not in HTTP_METHODS:
            errors.append(f"method '{self.method}' is not supported")
        return errors


class SetVariableActionConfig(BaseNodeConfig):
    """Binds a workflow-scoped variable readable as {{variables.<name>}}."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.ACTION
    subtype: ClassVar[str] = ActionType.SET_VARIABLE.value

    config_type: Literal["workflow_set_variable_action"]
    name: str = ""
    value: Any = None

    def validate_config(self, services=None) -> List[str]:
        if not self.name or not self.name.replace("_", "").isalnum():
            return ["name must be a non-empty identifier"]
        return []


# =============================================================================
# FUNCTION / UTILITY CONFIGS
# =============================================================================

class ExpressionFunctionConfig(BaseNodeConfig):
    """Evaluates an expression against resolved bindings."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.FUNCTION
    subtype: ClassVar[str] = FunctionType.EXPRESSION.value

    config_type: Literal["workflow_expression_function"]
    expression: str = ""
    bindings: Dict[str, Any] = Field(default_factory=dict)

    def validate_config(self, services=None) -> List[str]:
        errors: List[str] = []
        _check_expression(errors, "expression", self.expression, services)
        return errors

    def template_fields(self) -> Dict[str, Any]:
        return {"bindings": self.bindings}


class MapDataUtilityConfig(BaseNodeConfig):
    """Builds a new object from templated values."""
    node_type: ClassVar[WorkflowNodeType] = WorkflowNodeType.UTILITY
    subtype: ClassVar[str] = UtilityType.MAP_DATA.value

    config_type: Literal["workflow_map_data_utility"]
    mapping: Dict[str, Any] = Field(default_factory=dict)

    def validate_config(self, services=None) -> List[str]:
        return [] if self.mapping else ["mapping must not be empty"]


# =============================================================================
# DISCRIMINATED UNION
# =============================================================================

NodeConfig = Annotated[
    Union[
        EntityEventTriggerConfig,
        ScheduleTriggerConfig,
        WebhookTriggerConfig,
        FunctionTriggerConfig,
        ConditionControlConfig,
        CreateEntityActionConfig,
        UpdateEntityActionConfig,
        DeleteEntityActionConfig,
        QueryEntityActionConfig,
        BulkUpdateEntityActionConfig,
        HttpRequestActionConfig,
        SetVariableActionConfig,
        ExpressionFunctionConfig,
        MapDataUtilityConfig,
    ],
    Field(discriminator="config_type")
]

_node_config_adapter = TypeAdapter(NodeConfig)

NODE_CONFIG_CLASSES: Tuple[Type[BaseNodeConfig], ...] = (
    EntityEventTriggerConfig,
    ScheduleTriggerConfig,
    WebhookTriggerConfig,
    FunctionTriggerConfig,
    ConditionControlConfig,
    CreateEntityActionConfig,
    UpdateEntityActionConfig,
    DeleteEntityActionConfig,
    QueryEntityActionConfig,
    BulkUpdateEntityActionConfig,
    HttpRequestActionConfig,
    SetVariableActionConfig,
    ExpressionFunctionConfig,
    MapDataUtilityConfig,
)

# (node type, subtype) -> config_type discriminator value
_CONFIG_TYPE_BY_KIND: Dict[Tuple[WorkflowNodeType, str], str] = {
    (cls.node_type, cls.subtype): cls.model_fields["config_type"].annotation.__args__[0]
    for cls in NODE_CONFIG_CLASSES
}


def config_type_for(node_type: Union[WorkflowNodeType, str], subtype: str) -> str:
    """Resolve the discriminator value for a node kind."""
    try:
        kind = (WorkflowNodeType(node_type), subtype.upper())
    except ValueError:
        raise UnknownNodeTypeError(str(node_type), subtype) from None
    if kind not in _CONFIG_TYPE_BY_KIND:
        raise UnknownNodeTypeError(kind[0].value, subtype)
    return _CONFIG_TYPE_BY_KIND[kind]


def parse_node_config(node_type: Union[WorkflowNodeType, str], subtype: str,
                      config: Optional[Dict[str, Any]]) -> BaseNodeConfig:
    """Validate raw stored config for a node kind.

    Raises:
        UnknownNodeTypeError: If no config model exists for (node_type, subtype)
        ValidationError: If the config does not match the model schema
    """
    config_with_type = {**(config or {}), "config_type": config_type_for(node_type, subtype)}
    return _node_config_adapter.validate_python(config_with_type)


# =============================================================================
# RUNTIME GRAPH ELEMENTS
# =============================================================================

@dataclass(frozen=True)
class WorkflowNode:
    """Executable node: stored definition plus its validated config."""
    id: uuid.UUID
    key: str
    name: str
    type: WorkflowNodeType
    subtype: str
    config: BaseNodeConfig
    workspace_id: Optional[uuid.UUID] = None
    version: int = 1

    @classmethod
    def from_definition(cls, definition: NodeDefinition) -> "WorkflowNode":
        return cls(
            id=definition.id,
            key=definition.key,
            name=definition.name,
            type=WorkflowNodeType(definition.type),
            subtype=definition.subtype.upper(),
            config=parse_node_config(definition.type, definition.subtype, definition.config),
            workspace_id=definition.workspace_id,
            version=definition.version,
        )

    @property
    def is_control_flow(self) -> bool:
        return self.type == WorkflowNodeType.CONTROL_FLOW


@dataclass(frozen=True)
class WorkflowEdge:
    """Directed dependency from source to target, optionally labeled."""
    source_id: uuid.UUID
    target_id: uuid.UUID
    label: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def from_definition(cls, definition: EdgeDefinition) -> "WorkflowEdge":
        return cls(
            id=definition.id,
            source_id=definition.source_node_id,
            target_id=definition.target_node_id,
            label=definition.label,
        )
