"""Utility, function and variable node handlers - pure transformations of resolved inputs."""

from typing import Any, Dict

from core.logging import get_logger
from services.expression import ExpressionEvaluator, ExpressionParser

logger = get_logger(__name__)


async def handle_set_variable(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    """Bind a run variable, readable downstream as {{variables.<name>}}."""
    name = node.config.name
    value = inputs.get("value")
    context.variables[name] = value
    logger.debug("Variable set", node_key=node.key, name=name)
    return {"name": name, "value": value}


def restore_set_variable(context, output: Any) -> None:
    """Replay a recorded set-variable output into a fresh run context."""
    if isinstance(output, dict) and "name" in output:
        context.variables[output["name"]] = output.get("value")


async def handle_expression(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    """Evaluate an expression against the node's resolved bindings."""
    parser = services.service(ExpressionParser)
    evaluator = services.service(ExpressionEvaluator)
    bindings = inputs.get("bindings") or {}
    result = evaluator.evaluate(parser.parse(node.config.expression), bindings)
    return {"result": result, "evaluated_expression": node.config.expression}


async def handle_map_data(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    """Return the resolved mapping as a new object."""
    return dict(inputs.get("mapping") or {})
