"""Node Executor - Single node execution with handler dispatch.

Uses a registry keyed by node config class, so every variant of the closed
config union has exactly one handler. Handlers share one signature::

    async def handle_x(node, context, inputs, services) -> Dict[str, Any]

where ``inputs`` are the node's template fields after resolution and
``services`` is a NodeServiceProvider.
"""

import time
from functools import partial
from typing import Any, Callable, Dict, Optional, Type, TypeVar, TYPE_CHECKING

from core.logging import get_logger, log_execution_time
from models.nodes import (
    NODE_CONFIG_CLASSES,
    BaseNodeConfig,
    BulkUpdateEntityActionConfig,
    ConditionControlConfig,
    CreateEntityActionConfig,
    DeleteEntityActionConfig,
    EntityEventTriggerConfig,
    ExpressionFunctionConfig,
    FunctionTriggerConfig,
    HttpRequestActionConfig,
    MapDataUtilityConfig,
    QueryEntityActionConfig,
    ScheduleTriggerConfig,
    SetVariableActionConfig,
    UpdateEntityActionConfig,
    WebhookTriggerConfig,
    WorkflowNode,
)
from services.execution.errors import NodeConfigValidationError
from services.execution.models import WorkflowExecutionContext
from services.handlers import (
    handle_bulk_update_entity,
    handle_condition,
    handle_create_entity,
    handle_delete_entity,
    handle_expression,
    handle_http_request,
    handle_map_data,
    handle_query_entity,
    handle_set_variable,
    handle_trigger,
    handle_update_entity,
    restore_set_variable,
)
from services.parameter_resolver import ParameterResolver

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

T = TypeVar("T")

Handler = Callable[..., Any]


class NodeServiceProvider:
    """Service locator handed to node handlers.

    Services are registered by instance and looked up by class; a lookup by a
    base class returns the first registered instance of it.
    """

    def __init__(self, *services: Any):
        self._services: Dict[type, Any] = {type(s): s for s in services}

    def service(self, service_type: Type[T]) -> T:
        found = self._services.get(service_type)
        if found is not None:
            return found
        for instance in self._services.values():
            if isinstance(instance, service_type):
                return instance
        raise LookupError(f"No service registered for {service_type.__name__}")


class NodeExecutor:
    """Executes individual workflow nodes using registry-based dispatch."""

    def __init__(
        self,
        services: NodeServiceProvider,
        resolver: ParameterResolver,
        settings: "Settings",
    ):
        self.services = services
        self.resolver = resolver
        self.settings = settings
        self._handlers = self._build_handler_registry()

        missing = [cls.__name__ for cls in NODE_CONFIG_CLASSES if cls not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for node configs: {', '.join(missing)}")

    def _build_handler_registry(self) -> Dict[Type[BaseNodeConfig], Handler]:
        """Build handler registry with settings bound via partial."""
        return {
            # Triggers
            EntityEventTriggerConfig: handle_trigger,
            ScheduleTriggerConfig: handle_trigger,
            WebhookTriggerConfig: handle_trigger,
            FunctionTriggerConfig: handle_trigger,
            # Control flow
            ConditionControlConfig: handle_condition,
            # Entity actions
            CreateEntityActionConfig: handle_create_entity,
            UpdateEntityActionConfig: handle_update_entity,
            DeleteEntityActionConfig: handle_delete_entity,
            QueryEntityActionConfig: handle_query_entity,
            BulkUpdateEntityActionConfig: partial(
                handle_bulk_update_entity, default_batch_size=self.settings.bulk_update_batch_size
            ),
            # HTTP
            HttpRequestActionConfig: partial(
                handle_http_request, default_timeout=self.settings.http_request_timeout
            ),
            # Variables, functions, utilities
            SetVariableActionConfig: handle_set_variable,
            ExpressionFunctionConfig: handle_expression,
            MapDataUtilityConfig: handle_map_data,
        }

    def validate(self, node: WorkflowNode) -> None:
        """Raise NodeConfigValidationError if the node's config is not runnable."""
        errors = node.config.validate_config(self.services)
        if errors:
            raise NodeConfigValidationError(node.key, errors)

    def resolve_inputs(self, node: WorkflowNode, context: WorkflowExecutionContext) -> Dict[str, Any]:
        return self.resolver.resolve(node.config.template_fields(), context)

    async def execute(self, node: WorkflowNode, context: WorkflowExecutionContext,
                      inputs: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a single workflow node.

        Exceptions propagate unchanged; the caller classifies them.
        """
        start_time = time.time()
        if inputs is None:
            inputs = self.resolve_inputs(node, context)

        handler = self._handlers[type(node.config)]
        logger.debug("Dispatching node", node_key=node.key, node_type=node.type.value, subtype=node.subtype)
        output = await handler(node, context, inputs, self.services)

        log_execution_time(logger, "node", start_time, time.time(),
                           node_key=node.key, subtype=node.subtype,
                           execution_id=str(context.execution_id))
        return output

    def restore(self, node: WorkflowNode, context: WorkflowExecutionContext, output: Any) -> None:
        """Re-apply run-scoped effects of a node whose output is replayed from a record."""
        if isinstance(node.config, SetVariableActionConfig):
            restore_set_variable(context, output)
