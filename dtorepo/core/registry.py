"""Registry of entity types and their repository singletons."""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dtorepo.core.entity import Entity, lookup_entity_type
from dtorepo.core.keys import PrimaryKey
from dtorepo.core.repository import Repository
from dtorepo.errors import UnknownEntityTypeError

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[type[Entity], "RepositoryRegistry"], Repository]


class EntityDescriptor(BaseModel):
    """What the registry knows about one entity type."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    type_name: str = Field(description="Type tag the entity type is looked up by")
    entity_type: type[Entity] = Field(description="Entity class")
    repository_factory: Any = Field(default=None, description="Callable building the type's repository")

    def key_of(self, entity: Entity) -> PrimaryKey | None:
        return entity.primary_key()

    @property
    def child_types(self) -> dict[str, type[Entity]]:
        return self.entity_type.child_fields()


class RepositoryRegistry:
    """One repository per entity type, built on first use.

    ``repository_for`` accepts an entity class or its type name, so code
    that only knows a foreign key's target type name can reach the target
    type's repository.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._descriptors: dict[str, EntityDescriptor] = {}
        self._repositories: dict[type[Entity], Repository] = {}

    def register(self, entity_type: type[Entity], factory: RepositoryFactory | None = None) -> EntityDescriptor:
        """Register an entity type, optionally with a custom repository factory."""
        with self._lock:
            return self._register(entity_type, factory)

    def _register(self, entity_type: type[Entity], factory: RepositoryFactory | None = None) -> EntityDescriptor:
        descriptor = EntityDescriptor(
            type_name=entity_type.type_name(),
            entity_type=entity_type,
            repository_factory=factory,
        )
        self._descriptors[descriptor.type_name] = descriptor
        return descriptor

    def descriptor(self, entity_type: type[Entity] | str) -> EntityDescriptor:
        if isinstance(entity_type, str):
            entity_type = self.entity_type(entity_type)
        descriptor = self._descriptors.get(entity_type.type_name())
        if descriptor is None or descriptor.entity_type is not entity_type:
            descriptor = self.register(entity_type)
        return descriptor

    def entity_type(self, type_name: str) -> type[Entity]:
        """Resolve a type name to its entity class.

        Raises:
            UnknownEntityTypeError: If no entity class has that name
        """
        descriptor = self._descriptors.get(type_name)
        if descriptor is not None:
            return descriptor.entity_type
        entity_type = lookup_entity_type(type_name)
        if entity_type is None:
            raise UnknownEntityTypeError(f"No entity type named '{type_name}'")
        return entity_type

    def repository_for(self, entity_type: type[Entity] | str) -> Repository:
        """Get or create the repository for an entity type.

        Args:
            entity_type: Entity class or type name

        Raises:
            UnknownEntityTypeError: If a type name does not resolve
        """
        if isinstance(entity_type, str):
            entity_type = self.entity_type(entity_type)

        repository = self._repositories.get(entity_type)
        if repository is not None:
            return repository

        with self._lock:
            repository = self._repositories.get(entity_type)
            if repository is None:
                descriptor = self._descriptors.get(entity_type.type_name())
                if descriptor is None or descriptor.entity_type is not entity_type:
                    descriptor = self._register(entity_type)
                factory = descriptor.repository_factory or Repository
                repository = factory(entity_type, self)
                self._repositories[entity_type] = repository
                logger.debug("Created repository for %s", descriptor.type_name)
        return repository

    def get(self, entity_type: type[Entity] | str) -> Repository | None:
        """Existing repository for a type, without creating one."""
        if isinstance(entity_type, str):
            descriptor = self._descriptors.get(entity_type)
            if descriptor is None:
                return None
            entity_type = descriptor.entity_type
        return self._repositories.get(entity_type)

    @property
    def repositories(self) -> list[Repository]:
        return list(self._repositories.values())

    @property
    def type_names(self) -> list[str]:
        return list(self._descriptors)

    def clear(self) -> None:
        """Drop every repository and registration."""
        with self._lock:
            self._repositories.clear()
            self._descriptors.clear()

    def __contains__(self, entity_type: object) -> bool:
        if isinstance(entity_type, str):
            return entity_type in self._descriptors
        return entity_type in self._repositories

    def __len__(self) -> int:
        return len(self._repositories)


_default_registry = RepositoryRegistry()

# Registry for the current context; falls back to the process default
_current_registry: ContextVar[RepositoryRegistry | None] = ContextVar("current_registry", default=None)


def get_registry() -> RepositoryRegistry:
    """Get the registry of the current context."""
    registry = _current_registry.get()
    return registry if registry is not None else _default_registry


def set_current_registry(registry: RepositoryRegistry | None):
    """Set the registry for the current context (None restores the default)."""
    _current_registry.set(registry)


@contextmanager
def use_registry(registry: RepositoryRegistry | None = None) -> Iterator[RepositoryRegistry]:
    """Run a block against a registry (a fresh one if none is given).

    Example:
        >>> with use_registry() as registry:
        ...     registry.repository_for(GameItem).find_all(db)
    """
    registry = registry if registry is not None else RepositoryRegistry()
    token = _current_registry.set(registry)
    try:
        yield registry
    finally:
        _current_registry.reset(token)
