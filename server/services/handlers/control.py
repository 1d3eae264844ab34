"""Control-flow node handlers - Condition."""

from typing import Any, Dict

from core.logging import get_logger
from services.entity import as_uuid
from services.entity_context import EntityContextService
from services.execution.errors import ConditionResultError
from services.expression import ExpressionEvaluator, ExpressionParser

logger = get_logger(__name__)


async def handle_condition(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    """Evaluate the condition expression to a boolean.

    The expression sees completed step outputs under ``steps``, the trigger
    under ``trigger``, run variables under ``variables`` and, when
    ``context_entity_id`` is set, the entity's attributes under ``entity``.

    Raises:
        ConditionResultError: If the expression does not yield a boolean
    """
    expression = node.config.expression
    evaluation_context: Dict[str, Any] = {
        "steps": dict(context.step_outputs),
        "trigger": dict(context.trigger or {}),
        "variables": dict(context.variables),
    }

    entity_ref = inputs.get("context_entity_id")
    if entity_ref:
        entity_id = as_uuid(entity_ref, "context_entity_id")
        builder = services.service(EntityContextService)
        evaluation_context["entity"] = await builder.build_context(entity_id, context.workspace_id)

    parser = services.service(ExpressionParser)
    evaluator = services.service(ExpressionEvaluator)
    result = evaluator.evaluate(parser.parse(expression), evaluation_context)

    if not isinstance(result, bool):
        raise ConditionResultError(
            f"Condition '{expression}' evaluated to {type(result).__name__}, expected a boolean"
        )

    logger.info("Condition evaluated", node_key=node.key, result=result)
    return {"condition_result": result, "evaluated_expression": expression}
