"""Expression contexts built from entity attributes."""

from typing import Any, Dict
from uuid import UUID

from core.logging import get_logger
from services.entity import EntityService

logger = get_logger(__name__)


class EntityContextService:
    """Builds the attribute map a condition expression is evaluated against."""

    def __init__(self, entity_service: EntityService):
        self.entity_service = entity_service

    async def build_context(self, entity_id: UUID, workspace_id: UUID) -> Dict[str, Any]:
        """Attribute label -> value, plus the entity id under "id".

        Raises:
            NotFoundError: If the entity does not exist or was deleted
            WorkspaceAccessError: If the entity belongs to another workspace
        """
        entity = await self.entity_service.get_entity(entity_id, workspace_id)
        context = dict(entity.payload or {})
        context.setdefault("id", str(entity.id))
        logger.debug("Entity context built", entity_id=str(entity_id), attributes=len(context))
        return context
