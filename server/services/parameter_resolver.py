"""Parameter Resolver - Template variable resolution.

Resolves {{steps.<key>.output.<path>}}, {{trigger.<path>}} and
{{variables.<name>}} templates in node configs using the run's bindings.
"""

from typing import Any, List

from constants import TEMPLATE_PATTERN, TEMPLATE_ROOTS
from core.logging import get_logger
from services.execution.models import WorkflowExecutionContext

logger = get_logger(__name__)

# Missing from the context, distinct from an explicit None value
_MISSING = object()


def get_nested_value(data: Any, path: List[str]) -> Any:
    """Walk dict keys and list indices. Returns _MISSING when the path breaks.

    Examples:
        >>> get_nested_value({"items": [{"name": "a"}]}, ["items", "0", "name"])
        'a'
    """
    current = data
    for part in path:
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


class ParameterResolver:
    """Resolves template variables in node configs."""

    def resolve(self, value: Any, context: WorkflowExecutionContext) -> Any:
        """Resolve templates recursively through dicts and lists."""
        if isinstance(value, str) and '{{' in value:
            return self._resolve_string(value, context)
        if isinstance(value, dict):
            return {k: self.resolve(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(item, context) for item in value]
        return value

    def _resolve_string(self, value: str, context: WorkflowExecutionContext) -> Any:
        matches = list(TEMPLATE_PATTERN.finditer(value))
        if not matches:
            return value

        # A value that is exactly one template keeps the referenced type
        if len(matches) == 1 and matches[0].group(0) == value.strip():
            resolved = self._lookup(matches[0].group(1), context)
            return None if resolved is _MISSING else resolved

        result = value
        for match in matches:
            resolved = self._lookup(match.group(1), context)
            if resolved is _MISSING or resolved is None:
                logger.debug("Template unresolved, dropping value", template=match.group(0))
                return None
            result = result.replace(match.group(0), str(resolved))
        return result

    def _lookup(self, expression: str, context: WorkflowExecutionContext) -> Any:
        parts = expression.split('.')
        root = parts[0]
        if root not in TEMPLATE_ROOTS:
            raise ValueError(f"Unknown template root '{root}' in '{{{{{expression}}}}}'")

        if root == 'trigger':
            if context.trigger is None:
                raise ValueError(f"Template '{{{{{expression}}}}}' references a trigger, but none is set")
            return get_nested_value(context.trigger, parts[1:])

        if root == 'variables':
            if len(parts) < 2:
                raise ValueError("Template 'variables' requires a variable name")
            return get_nested_value(context.variables, parts[1:])

        # steps.<key>[.output].<path>
        if len(parts) < 2:
            raise ValueError("Template 'steps' requires a node key")
        step_key = parts[1]
        if step_key not in context.step_outputs:
            logger.warning("Template references a step with no output", step=step_key,
                           available=sorted(context.step_outputs))
            return _MISSING
        path = parts[2:]
        if path and path[0] == 'output':
            path = path[1:]
        return get_nested_value(context.step_outputs[step_key], path)

