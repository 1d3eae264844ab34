"""Trigger node handlers."""

from typing import Any, Dict

from core.logging import get_logger

logger = get_logger(__name__)


async def handle_trigger(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    """Expose the run's trigger context as the trigger node's output.

    Triggers are graph roots: the event that fired them is already captured
    in ``context.trigger`` when the run starts, so the node only publishes it
    for downstream templates ({{steps.<trigger key>.output.<field>}}).
    """
    payload = dict(context.trigger or {})
    logger.debug("Trigger bindings published", node_key=node.key, subtype=node.subtype,
                 fields=sorted(payload))
    return {"trigger_type": node.subtype, **payload}
