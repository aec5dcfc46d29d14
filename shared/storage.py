"""
Entity storage used by the backend services.

Services receive a :class:`Repository` instead of reaching for a module-level
dict, so a persistent store can replace :class:`InMemoryRepository` without
touching business rules.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

Entity = TypeVar("Entity", bound=Dict[str, Any])


class Repository(ABC, Generic[Entity]):
    """Minimal keyed entity store."""

    @abstractmethod
    async def get(self, entity_id: str) -> Optional[Entity]:
        """Return the entity with ``entity_id`` or ``None``."""

    @abstractmethod
    async def put(self, entity: Entity) -> Entity:
        """Insert or replace an entity keyed by its ``id`` field."""

    @abstractmethod
    async def list(self) -> List[Entity]:
        """Return all entities in insertion order."""


class InMemoryRepository(Repository[Entity]):
    """Dict-backed repository; contents live for the process lifetime."""

    def __init__(self, entities: Optional[Iterable[Entity]] = None):
        self._entities: Dict[str, Entity] = {}
        for entity in entities or ():
            self._entities[entity["id"]] = dict(entity)

    async def get(self, entity_id: str) -> Optional[Entity]:
        entity = self._entities.get(entity_id)
        return dict(entity) if entity is not None else None

    async def put(self, entity: Entity) -> Entity:
        self._entities[entity["id"]] = dict(entity)
        return entity

    async def list(self) -> List[Entity]:
        return [dict(entity) for entity in self._entities.values()]

    def __len__(self) -> int:
        return len(self._entities)
