"""Per-type cache, mapper and save orchestrator for entities."""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from dtorepo.core.column_mapper import ColumnMapper
from dtorepo.core.entity import Entity
from dtorepo.core.foreign_keys import ForeignKeyReference
from dtorepo.core.keys import PrimaryKey, PrimaryKeyIndex
from dtorepo.core.state import EntityState
from dtorepo.db.table import ChangeSet, Row, TableSchema
from dtorepo.errors import UnknownEntityTypeError
from dtorepo.naming import property_name_from_column

if TYPE_CHECKING:
    from dtorepo.core.registry import RepositoryRegistry
    from dtorepo.db.database import Database

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=Entity)


class Repository(Generic[EntityT]):
    """Cache of every entity of one type loaded from a database.

    One repository exists per entity type and registry; get it with
    ``Repository.get_instance(EntityType)``. Loads are cached per database
    handle: calling ``find_all`` again with the same ``Database`` returns the
    same list until ``save_all``, ``invalidate`` or ``reload=True``.

    Example:
        >>> repo = Repository.get_instance(GameItemType)
        >>> core = repo.find_by_key(db, {"GameItemTypeCd": "CORE"})
        >>> core.body_part_worn_cd = "toes"
        >>> repo.save_all(db)
    """

    def __init__(self, entity_type: type[EntityT], registry: "RepositoryRegistry | None" = None):
        self.entity_type = entity_type
        self.registry = registry
        self.mapper = ColumnMapper(entity_type)

        self._items: list[EntityT] = []
        self._by_key: PrimaryKeyIndex[EntityT] = PrimaryKeyIndex(entity_type.type_name())
        self._by_row: dict[Row, EntityT] = {}
        self._source: "Database | None" = None
        self._generation: int | None = None

        # Index of the load in progress; lookups during a load answer from it
        self._pending_index: PrimaryKeyIndex[EntityT] | None = None
        self._saving = False

    @classmethod
    def get_instance(cls, entity_type: type[EntityT]) -> "Repository[EntityT]":
        """Get the repository for an entity type from the current registry."""
        from dtorepo.core.registry import get_registry

        return get_registry().repository_for(entity_type)

    def __repr__(self) -> str:
        return f"Repository({self.entity_type.type_name()}, items={len(self._items)})"

    # -- cache ------------------------------------------------------------

    @property
    def all_items(self) -> list[EntityT]:
        """Every cached entity, including unsaved Added ones."""
        return self._items

    @property
    def is_loaded(self) -> bool:
        return self._source is not None

    def is_loaded_from(self, db: "Database") -> bool:
        return self._source is db and self._generation == db.generation

    def invalidate(self) -> None:
        """Drop every cached entity; the next ``find_all`` fetches again."""
        self._items = []
        self._by_key = PrimaryKeyIndex(self.entity_type.type_name())
        self._by_row = {}
        self._source = None
        self._generation = None

    def entity_for_row(self, row: Row) -> EntityT | None:
        """Entity backed by a row of the current load."""
        return self._by_row.get(row)

    # -- loading ----------------------------------------------------------

    def find_all(self, db: "Database", reload: bool = False) -> list[EntityT]:
        """Load every entity of the type, or return the cached list.

        Args:
            db: Database to load from
            reload: Fetch even if the cache was filled from ``db``

        Returns:
            The cached entity list

        Raises:
            FetchError: If the schema or rows cannot be fetched
            MappingError: If a column value does not convert to its property type
            KeyCollisionError: If two rows share a primary key
        """
        if self._pending_index is not None:
            return self._items
        if not reload and self.is_loaded_from(db):
            return self._items

        type_name = self.entity_type.type_name()
        access = db.access(self.entity_type)
        logger.debug("Loading %s from table %s", type_name, access.table_name)

        try:
            with access.borrowed_connection():
                self._load(db, access)
        except Exception:
            logger.exception("Failed to load %s", type_name)
            raise
        finally:
            self._pending_index = None

        logger.info("Loaded %d %s entities", len(self._items), type_name)
        return self._items

    def _load(self, db: "Database", access) -> None:
        rowset = access.fetch()
        self._bind_primary_key(rowset.schema)
        column_names = rowset.column_names

        loaded: list[EntityT] = []
        index: PrimaryKeyIndex[EntityT] = PrimaryKeyIndex(self.entity_type.type_name())
        by_row: dict[Row, EntityT] = {}
        for row in rowset:
            entity = self.entity_type()
            self.mapper.populate_entity_from_row(entity, row, column_names)
            entity._attach_row(row)
            key = entity.primary_key()
            if key is not None:
                index.add(key, entity)
            loaded.append(entity)
            by_row[row] = entity

        self._pending_index = index
        for entity in loaded:
            self.resolve_children(entity, db)
        for entity in loaded:
            entity.mark(EntityState.UNCHANGED)

        unsaved = [e for e in self._items if e.state is EntityState.ADDED]
        self._items = loaded + unsaved
        self._by_key = index
        self._by_row = by_row
        self._source = db
        self._generation = db.generation

    def _bind_primary_key(self, schema: TableSchema) -> None:
        if self.entity_type.has_declared_primary_key():
            return
        field_names = [
            self.entity_type.field_name_for(property_name_from_column(column)) for column in schema.primary_key
        ]
        if None in field_names:
            logger.debug(
                "Primary key %s of %s does not map to %s properties",
                schema.primary_key,
                schema.table_name,
                self.entity_type.type_name(),
            )
            field_names = []
        self.entity_type.bind_primary_key(tuple(field_names))

    def find_by_key(self, db: "Database", key_values: Mapping[str, Any] | PrimaryKey) -> EntityT | None:
        """Look up an entity by its key, loading the type first if needed.

        Args:
            db: Database to load from
            key_values: ``PrimaryKey`` or mapping of key property (or field) names to values

        Returns:
            The matching entity, or None
        """
        key = self._coerce_key(key_values)
        if self._pending_index is not None:
            return self._pending_index.get(key)
        self.find_all(db)
        return self._by_key.get(key)

    def _coerce_key(self, key_values: Mapping[str, Any] | PrimaryKey) -> PrimaryKey:
        if isinstance(key_values, PrimaryKey):
            return key_values
        values = {}
        for name, value in key_values.items():
            field_name = self.entity_type.field_name_for(name)
            property_name = self.entity_type.property_name_for(field_name) if field_name else name
            values[property_name] = value
        return PrimaryKey(values)

    def resolve_children(self, entity: EntityT, db: "Database") -> None:
        """Populate the entity's object-valued properties through foreign keys.

        A property is left as it is when any local key value is missing,
        when its type is unknown, or when no matching entity exists.
        """
        collection = db.foreign_keys.resolve(self.entity_type.type_name())
        if collection is None:
            return

        for reference in collection:
            field_name = self.entity_type.field_name_for(reference.property_name)
            child_type = self.entity_type.child_fields().get(field_name) if field_name else None
            if child_type is None:
                logger.debug(
                    "%s has no object property %s, skipping", self.entity_type.type_name(), reference.property_name
                )
                continue

            key_values = self._local_key_values(entity, reference)
            if key_values is None:
                continue

            child = self._registry().repository_for(child_type).find_by_key(db, key_values)
            if child is not None:
                entity._load_value(field_name, child)

    def _local_key_values(self, entity: EntityT, reference: ForeignKeyReference) -> dict[str, Any] | None:
        key_values = {}
        for mapping in reference.mappings:
            field_name = self.entity_type.field_name_for(mapping.source_property)
            value = getattr(entity, field_name) if field_name else None
            if value is None:
                return None
            key_values[mapping.target_property] = value
        return key_values

    # -- changes ----------------------------------------------------------

    def create_new(self) -> EntityT:
        """Create a default entity in state Added and add it to the cache."""
        entity = self.entity_type()
        entity.mark(EntityState.ADDED)
        self._items.append(entity)
        return entity

    def delete(self, entity: EntityT) -> None:
        """Mark a cached entity Deleted; entities not in the cache are ignored."""
        if any(item is entity for item in self._items):
            entity.mark(EntityState.DELETED)

    def save_all(self, db: "Database") -> list[EntityT]:
        """Write every pending change of the type, then reload.

        Repositories of referenced types are saved first, once each. The
        type's own inserts, updates and deletes go out as one batch in
        cache order.

        Returns:
            The reloaded entity list

        Raises:
            WriteError: If the batch write fails; the cache is kept as it was
        """
        if self._saving:
            return self._items
        if not self._items and not self.is_loaded:
            return self._items

        type_name = self.entity_type.type_name()
        self._saving = True
        try:
            self._save_children(db)

            access = db.access(self.entity_type)
            with access.borrowed_connection():
                rowset = access.empty_rowset()
                self._bind_primary_key(rowset.schema)
                changes = self._stage_changes(rowset)
                if changes:
                    logger.debug(
                        "Saving %s: %d insert(s), %d update(s), %d delete(s)",
                        type_name,
                        len(changes.inserted),
                        len(changes.updated),
                        len(changes.deleted),
                    )
                    access.apply_batch(changes)
        except Exception:
            logger.exception("Failed to save %s", type_name)
            raise
        finally:
            self._saving = False

        self.invalidate()
        return self.find_all(db)

    def _save_children(self, db: "Database") -> None:
        collection = db.foreign_keys.resolve(self.entity_type.type_name())
        if collection is None:
            return

        registry = self._registry()
        saved: list[Repository] = []
        for reference in collection:
            child_type = self._child_type(reference, registry)
            if child_type is None or child_type is self.entity_type:
                continue
            child_repository = registry.repository_for(child_type)
            if any(r is child_repository for r in saved):
                continue
            saved.append(child_repository)
            child_repository.save_all(db)

    def _child_type(self, reference: ForeignKeyReference, registry: "RepositoryRegistry") -> type[Entity] | None:
        field_name = self.entity_type.field_name_for(reference.property_name)
        if field_name is not None:
            declared = self.entity_type.child_fields().get(field_name)
            if declared is not None:
                return declared
        try:
            return registry.entity_type(reference.target_type_name)
        except UnknownEntityTypeError:
            logger.debug("No entity type %s for %s", reference.target_type_name, reference.property_name)
            return None

    def _stage_changes(self, rowset) -> ChangeSet:
        changes = ChangeSet()
        schema = rowset.schema
        for entity in self._items:
            state = entity.state
            row = entity.row
            if state is EntityState.DELETED:
                if row is not None:
                    changes.delete(row)
            elif state is EntityState.ADDED or (state is EntityState.MODIFIED and row is None):
                row = rowset.new_row()
                self.mapper.populate_row_from_entity(entity, row, schema)
                entity._attach_row(row)
                changes.insert(row)
            elif state is EntityState.MODIFIED:
                self.mapper.populate_row_from_entity(entity, row, schema)
                changes.update(row)
        return changes

    def _registry(self) -> "RepositoryRegistry":
        if self.registry is not None:
            return self.registry
        from dtorepo.core.registry import get_registry

        return get_registry()
