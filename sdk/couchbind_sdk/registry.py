"""
Entity metadata registry for the couchbind SDK.

This module maps entity types to routing metadata:
- EntityRegistry: explicit registration map built at startup
- MetadataResolver: resolves a type to database + class name under a routing policy
- entity_metadata: class decorator registering into the global registry

The registry can be frozen after startup to prevent runtime modifications.

Example:
    >>> from couchbind_sdk import Entity, entity_metadata
    >>>
    >>> @entity_metadata(database_name="users")
    ... class User(Entity):
    ...     email: str
    >>>
    >>> resolver = MetadataResolver(get_registry(), Settings())
    >>> resolver.resolve(User)
    EntityMetadata(database_name='users', class_name='user')
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from .config import DatabaseNaming, Settings
from .entity import DesignDocument, Entity
from .errors import DuplicateRegistrationError, MissingMetadataError, RegistryFrozenError

E = TypeVar("E", bound=type[Entity])

# Global registry
_global_registry: EntityRegistry | None = None
_registry_lock = threading.Lock()

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert a class name to its default database/class name.

    >>> snake_case("TestEntity1")
    'test_entity1'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class EntityDeclaration:
    """Metadata declared for one entity type.

    Attributes:
        entity_type: The registered class
        database_name: Database used under the per-entity routing policy
        class_name: Discriminator written into every document of this type
    """

    entity_type: type[Entity]
    database_name: str
    class_name: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": f"{self.entity_type.__module__}.{self.entity_type.__qualname__}",
            "database_name": self.database_name,
            "class_name": self.class_name,
        }


@dataclass(frozen=True)
class EntityMetadata:
    """Resolved routing metadata for an entity type."""

    database_name: str
    class_name: str


class EntityRegistry:
    """Registration map from entity type to declared metadata.

    Example:
        >>> registry = EntityRegistry()
        >>> registry.register(User, database_name="users")
        >>> registry.freeze()
    """

    def __init__(self) -> None:
        self._by_type: dict[type[Entity], EntityDeclaration] = {}
        self._by_class_name: dict[str, EntityDeclaration] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether registry is frozen."""
        return self._frozen

    def register(
        self,
        entity_type: type[Entity],
        database_name: str | None = None,
        class_name: str | None = None,
    ) -> EntityDeclaration:
        """Register an entity type.

        Args:
            entity_type: Entity subclass to register
            database_name: Target database (defaults to snake_case of the class name)
            class_name: Discriminator value (defaults to snake_case of the class name)

        Returns:
            The stored declaration

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the type or class name is taken
        """
        default_name = snake_case(entity_type.__name__)
        declaration = EntityDeclaration(
            entity_type=entity_type,
            database_name=database_name or default_name,
            class_name=class_name or default_name,
        )

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Cannot register: registry is frozen")

            if entity_type in self._by_type:
                raise DuplicateRegistrationError(f"{entity_type.__qualname__} already registered")

            existing = self._by_class_name.get(declaration.class_name)
            if existing is not None:
                raise DuplicateRegistrationError(
                    f"class name '{declaration.class_name}' already registered "
                    f"for {existing.entity_type.__qualname__}"
                )

            self._by_type[entity_type] = declaration
            self._by_class_name[declaration.class_name] = declaration

        return declaration

    def get(self, entity_type: type[Entity]) -> EntityDeclaration | None:
        """Get declaration for an entity type."""
        return self._by_type.get(entity_type)

    def get_by_class_name(self, class_name: str) -> EntityDeclaration | None:
        """Get declaration by discriminator value."""
        return self._by_class_name.get(class_name)

    def declarations(self) -> Iterator[EntityDeclaration]:
        """Iterate over all declarations."""
        yield from self._by_type.values()

    def freeze(self) -> None:
        """Freeze registry.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._frozen = True

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "entities": [
                d.to_dict() for d in sorted(self._by_type.values(), key=lambda d: d.class_name)
            ]
        }


class MetadataResolver:
    """Resolves entity types to database and class name.

    The routing policy comes from settings and never changes for a resolver;
    results are memoized per type.
    """

    def __init__(self, registry: EntityRegistry, settings: Settings) -> None:
        self.registry = registry
        self.naming = settings.database_naming
        self.shared_database = settings.database_name
        self._cache: dict[type[Entity], EntityMetadata] = {}

    def resolve(self, entity_type: type[Entity]) -> EntityMetadata:
        """Resolve routing metadata.

        Raises:
            MissingMetadataError: If the type was never registered
        """
        cached = self._cache.get(entity_type)
        if cached is not None:
            return cached

        declaration = self.registry.get(entity_type)
        if declaration is None:
            raise MissingMetadataError(entity_type.__qualname__)

        if self.naming == DatabaseNaming.PREDEFINED:
            database_name = self.shared_database
        else:
            database_name = declaration.database_name

        metadata = EntityMetadata(database_name=database_name, class_name=declaration.class_name)
        self._cache[entity_type] = metadata
        return metadata

    def database_for(self, entity_type: type[Entity]) -> str:
        return self.resolve(entity_type).database_name

    def holds(self, entity_type: type[Entity], class_name: str | None) -> bool:
        """Whether a document carrying `class_name` may be decoded as `entity_type`.

        Documents without a discriminator (written by other clients) and
        design documents are accepted as is.
        """
        if class_name is None or issubclass(entity_type, DesignDocument):
            return True
        return self.resolve(entity_type).class_name == class_name

    def resolve_class_name(
        self, class_name: str, among: tuple[type[Entity], ...] | None = None
    ) -> type[Entity] | None:
        """Map a discriminator back to its entity type.

        Args:
            class_name: Discriminator found in a document
            among: Restrict matches to these types

        Returns:
            The entity type, or None if no (allowed) type carries that name
        """
        if among is not None:
            for entity_type in among:
                if self.resolve(entity_type).class_name == class_name:
                    return entity_type
            return None

        declaration = self.registry.get_by_class_name(class_name)
        return declaration.entity_type if declaration else None


def get_registry() -> EntityRegistry:
    """Get the global entity registry."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = EntityRegistry()
        return _global_registry


def entity_metadata(
    database_name: str | None = None,
    class_name: str | None = None,
    registry: EntityRegistry | None = None,
) -> Callable[[E], E]:
    """Class decorator registering an entity type.

    Registers into the global registry unless `registry` is given.
    """

    def decorator(entity_type: E) -> E:
        (registry or get_registry()).register(entity_type, database_name, class_name)
        return entity_type

    return decorator


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
