"""Entity action handlers - Create, Update, Delete, Query and Bulk Update."""

from typing import Any, Dict, List

from core.logging import get_logger
from models.enums import BulkUpdateErrorHandling
from services.entity import EntityService, as_uuid, entity_to_dict

logger = get_logger(__name__)


async def handle_create_entity(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    entity_service = services.service(EntityService)
    type_id = as_uuid(inputs.get("entity_type_id"), "entity_type_id")
    entity = await entity_service.create_entity(context.workspace_id, type_id, inputs.get("payload") or {})
    return {"entity_id": str(entity.id), "entity": entity_to_dict(entity)}


async def handle_update_entity(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    entity_service = services.service(EntityService)
    entity_id = as_uuid(inputs.get("entity_id"), "entity_id")
    entity = await entity_service.update_entity(entity_id, context.workspace_id, inputs.get("payload") or {})
    return {"entity_id": str(entity.id), "entity": entity_to_dict(entity)}


async def handle_delete_entity(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    entity_service = services.service(EntityService)
    entity_id = as_uuid(inputs.get("entity_id"), "entity_id")
    await entity_service.delete_entity(entity_id, context.workspace_id)
    return {"entity_id": str(entity_id), "deleted": True}


async def handle_query_entity(node, context, inputs: Dict[str, Any], services) -> Dict[str, Any]:
    entity_service = services.service(EntityService)
    type_id = as_uuid(inputs.get("entity_type_id"), "entity_type_id")
    entities = await entity_service.query_entities(
        context.workspace_id,
        type_id,
        filters=inputs.get("filters") or {},
        limit=inputs.get("limit"),
        offset=inputs.get("offset") or 0,
    )
    return {"count": len(entities), "entities": [entity_to_dict(e) for e in entities]}


async def handle_bulk_update_entity(
    node,
    context,
    inputs: Dict[str, Any],
    services,
    default_batch_size: int = 50,
) -> Dict[str, Any]:
    """Apply one payload to every matching entity, batch by batch.

    FAIL_FAST re-raises the first per-entity error. BEST_EFFORT collects
    failures and keeps going; the node still succeeds.
    """
    entity_service = services.service(EntityService)
    type_id = as_uuid(inputs.get("entity_type_id"), "entity_type_id")
    payload = inputs.get("payload") or {}
    batch_size = inputs.get("batch_size") or default_batch_size
    best_effort = node.config.error_handling == BulkUpdateErrorHandling.BEST_EFFORT

    targets = await entity_service.query_entities(
        context.workspace_id, type_id, filters=inputs.get("filters") or {}
    )

    updated: List[str] = []
    failures: List[Dict[str, str]] = []
    for start in range(0, len(targets), batch_size):
        batch = targets[start:start + batch_size]
        for entity in batch:
            try:
                await entity_service.update_entity(entity.id, context.workspace_id, payload)
                updated.append(str(entity.id))
            except Exception as e:
                if not best_effort:
                    logger.error("Bulk update aborted", node_key=node.key,
                                 entity_id=str(entity.id), error=str(e))
                    raise
                failures.append({"entity_id": str(entity.id), "error": str(e)})
        logger.debug("Bulk update batch done", node_key=node.key,
                     batch_start=start, batch_size=len(batch))

    if failures:
        logger.warning("Bulk update finished with failures", node_key=node.key,
                       updated=len(updated), failed=len(failures))
    return {
        "matched": len(targets),
        "updated": len(updated),
        "failed": len(failures),
        "updated_ids": updated,
        "failures": failures,
    }
