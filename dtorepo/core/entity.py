"""Base class for domain objects backed by a database row."""

import logging
import types
import typing
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, PrivateAttr

from dtorepo.core.keys import PrimaryKey
from dtorepo.core.state import PERSISTED_STATES, EntityState, try_set_state
from dtorepo.errors import ImmutableKeyError
from dtorepo.naming import property_name_from_column, table_name_from_type

logger = logging.getLogger(__name__)

# Every Entity subclass by type name, so foreign-key targets can be found at runtime.
_entity_types: dict[str, type["Entity"]] = {}


def lookup_entity_type(type_name: str) -> type["Entity"] | None:
    return _entity_types.get(type_name)


class Entity(BaseModel):
    """Domain object whose scalar fields map to the columns of one table.

    Field names are snake_case; each field's alias is its property name in
    PascalCase, which is what column names are matched against. Fields
    annotated with another Entity subclass are object-valued children
    resolved through foreign keys.

    Every field needs a default so the repository can construct empty
    instances.

    Example:
        >>> class GameItemType(Entity):
        ...     game_item_type_cd: str | None = None
        ...     body_part_worn_cd: str | None = None
    """

    model_config = ConfigDict(
        alias_generator=property_name_from_column,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    __table_name__: ClassVar[str | None] = None
    __primary_key__: ClassVar[tuple[str, ...]] = ()
    # Set when __primary_key__ was filled from a table schema rather than declared
    __key_discovered__: ClassVar[bool] = False

    _state: EntityState = PrivateAttr(default=EntityState.DETACHED)
    _row: Any = PrivateAttr(default=None)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)

        required = [name for name, field in cls.model_fields.items() if field.is_required()]
        if required:
            raise TypeError(
                f"Entity {cls.__name__} fields must have defaults; missing for: {', '.join(required)}"
            )

        if cls.__name__ in _entity_types and _entity_types[cls.__name__] is not cls:
            logger.debug("Entity type %s redefined", cls.__name__)
        _entity_types[cls.__name__] = cls
        if "__primary_key__" in cls.__dict__:
            cls.__key_discovered__ = False

    # -- identity ---------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        return self is other

    __hash__ = object.__hash__

    # -- class metadata ---------------------------------------------------

    @classmethod
    def type_name(cls) -> str:
        return cls.__name__

    @classmethod
    def table_name(cls) -> str:
        """Database table backing this type."""
        return cls.__table_name__ or table_name_from_type(cls.__name__)

    @classmethod
    def field_name_for(cls, name: str) -> str | None:
        """Resolve a field name or a property name to the field name."""
        fields = cls.model_fields
        if name in fields:
            return name
        for field_name, field in fields.items():
            if field.alias == name:
                return field_name
        return None

    @classmethod
    def property_name_for(cls, field_name: str) -> str:
        field = cls.model_fields[field_name]
        return field.alias or property_name_from_column(field_name)

    @classmethod
    def key_field_names(cls) -> tuple[str, ...]:
        """Field names making up the primary key, in declaration order of ``__primary_key__``."""
        names = []
        for name in cls.__primary_key__:
            field_name = cls.field_name_for(name)
            if field_name is None:
                raise ValueError(f"{cls.__name__}.__primary_key__ names unknown property '{name}'")
            names.append(field_name)
        return tuple(names)

    @classmethod
    def has_declared_primary_key(cls) -> bool:
        return bool(cls.__primary_key__) and not cls.__key_discovered__

    @classmethod
    def bind_primary_key(cls, field_names: tuple[str, ...]) -> None:
        """Record the key fields discovered from a table schema.

        Replaces a previously discovered key, so a table with a different
        key in another database rebinds the type. Does nothing if the class
        (or a base class) declares ``__primary_key__``.
        """
        if cls.has_declared_primary_key():
            return
        cls.__primary_key__ = tuple(field_names)
        cls.__key_discovered__ = bool(field_names)

    @classmethod
    def child_fields(cls) -> dict[str, type["Entity"]]:
        """Object-valued fields and the entity type each one holds."""
        children = {}
        for field_name, field in cls.model_fields.items():
            child_type = entity_type_in(field.annotation)
            if child_type is not None:
                children[field_name] = child_type
        return children

    # -- state ------------------------------------------------------------

    @property
    def state(self) -> EntityState:
        return self._state

    @property
    def row(self) -> Any:
        """Backing row owned by the database layer, or None if never persisted."""
        return self._row

    def mark(self, requested: EntityState) -> EntityState:
        """Request a state change; invalid transitions are ignored.

        Returns:
            The effective state
        """
        self._state = try_set_state(self._state, requested)
        return self._state

    def primary_key(self) -> PrimaryKey | None:
        """Key of this entity built from its key properties, or None if the type has no key."""
        field_names = type(self).key_field_names()
        if not field_names:
            return None
        cls = type(self)
        return PrimaryKey({cls.property_name_for(name): getattr(self, name) for name in field_names})

    def __setattr__(self, name: str, value: Any) -> None:
        cls = type(self)
        if name not in cls.model_fields:
            super().__setattr__(name, value)
            return

        if name in cls.key_field_names() and self._state in PERSISTED_STATES:
            current = getattr(self, name)
            if type(current) is type(value) and current == value:
                return
            raise ImmutableKeyError(
                f"Key property {cls.property_name_for(name)} of a persisted {cls.__name__} cannot change "
                f"(from {current!r} to {value!r})"
            )

        super().__setattr__(name, value)
        if self._state is not EntityState.ADDED:
            self.mark(EntityState.MODIFIED)

    # -- used by the repository -------------------------------------------

    def _load_value(self, field_name: str, value: Any) -> None:
        """Set a field without state tracking or key checks."""
        super().__setattr__(field_name, value)

    def _attach_row(self, row: Any) -> None:
        self._row = row


def entity_type_in(annotation: Any) -> type[Entity] | None:
    """Return the Entity subclass an annotation refers to, looking inside Optional/unions."""
    if isinstance(annotation, type) and issubclass(annotation, Entity):
        return annotation

    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        for arg in typing.get_args(annotation):
            found = entity_type_in(arg)
            if found is not None:
                return found
    return None
