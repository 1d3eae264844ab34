"""Workspace-scoped entity storage used by entity action nodes and condition contexts."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlmodel import select

from core.database import Database
from core.logging import get_logger
from models.database import Entity, utcnow
from services.execution.errors import NotFoundError, WorkspaceAccessError

logger = get_logger(__name__)


def as_uuid(value: Any, field_name: str) -> UUID:
    """Coerce a resolved config value to a UUID, raising ValueError with the field name."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be a UUID, got '{value}'") from None


def _matches(payload: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(payload.get(key) == expected for key, expected in filters.items())


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    return {
        "id": str(entity.id),
        "type_id": str(entity.type_id),
        "payload": dict(entity.payload or {}),
    }


class EntityService:
    """CRUD over entities; every call is checked against the caller's workspace."""

    def __init__(self, database: Database):
        self.database = database

    async def get_entity(self, entity_id: UUID, workspace_id: UUID) -> Entity:
        async with self.database.get_session() as session:
            entity = await session.get(Entity, entity_id)
        return self._check(entity, entity_id, workspace_id)

    def _check(self, entity: Optional[Entity], entity_id: UUID, workspace_id: UUID) -> Entity:
        if entity is None or entity.deleted:
            raise NotFoundError(f"Entity {entity_id} not found")
        if entity.workspace_id != workspace_id:
            logger.warning("Cross-workspace entity access rejected",
                           entity_id=str(entity_id), workspace_id=str(workspace_id))
            raise WorkspaceAccessError(f"Entity {entity_id} does not belong to workspace {workspace_id}")
        return entity

    async def create_entity(self, workspace_id: UUID, type_id: UUID, payload: Dict[str, Any]) -> Entity:
        entity = Entity(workspace_id=workspace_id, type_id=type_id, payload=dict(payload))
        async with self.database.get_session() as session:
            session.add(entity)
            await session.commit()
            await session.refresh(entity)
        logger.info("Entity created", entity_id=str(entity.id), type_id=str(type_id))
        return entity

    async def update_entity(self, entity_id: UUID, workspace_id: UUID, payload: Dict[str, Any]) -> Entity:
        """Merge ``payload`` into the entity's attributes."""
        async with self.database.get_session() as session:
            entity = self._check(await session.get(Entity, entity_id), entity_id, workspace_id)
            # JSON columns are compared by identity; assign a new dict
            entity.payload = {**(entity.payload or {}), **payload}
            entity.updated_at = utcnow()
            session.add(entity)
            await session.commit()
            await session.refresh(entity)
        logger.info("Entity updated", entity_id=str(entity_id), fields=sorted(payload))
        return entity

    async def delete_entity(self, entity_id: UUID, workspace_id: UUID) -> None:
        async with self.database.get_session() as session:
            entity = self._check(await session.get(Entity, entity_id), entity_id, workspace_id)
            entity.deleted = True
            entity.updated_at = utcnow()
            session.add(entity)
            await session.commit()
        logger.info("Entity deleted", entity_id=str(entity_id))

    async def query_entities(self, workspace_id: UUID, type_id: UUID,
                             filters: Optional[Dict[str, Any]] = None,
                             limit: Optional[int] = None, offset: int = 0) -> List[Entity]:
        """Entities of a type whose payload equals every filter value, oldest first."""
        async with self.database.get_session() as session:
            stmt = (
                select(Entity)
                .where(
                    Entity.workspace_id == workspace_id,
                    Entity.type_id == type_id,
                    Entity.deleted == False,  # noqa: E712
                )
                .order_by(Entity.created_at, Entity.id)
            )
            result = await session.execute(stmt)
            entities = [e for e in result.scalars().all() if _matches(e.payload or {}, filters or {})]

        entities = entities[offset:]
        return entities if limit is None else entities[:limit]

