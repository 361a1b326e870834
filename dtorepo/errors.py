"""Error taxonomy for repository operations."""

from typing import Any


class DtoRepoError(Exception):
    """Base class for every error raised by dtorepo."""

    pass


class DatabaseConnectionError(DtoRepoError):
    """Raised when a connection cannot be opened, closed or inspected."""

    pass


class FetchError(DtoRepoError):
    """Raised when a schema or row fetch fails."""

    pass


class WriteError(DtoRepoError):
    """Raised when a batch write fails."""

    pass


class MappingError(DtoRepoError):
    """Raised when a value cannot be converted between a column and a property."""

    def __init__(self, column: str, target_type: Any, raw_value: Any, reason: str | None = None):
        self.column = column
        self.target_type = target_type
        self.raw_value = raw_value
        type_name = getattr(target_type, "__name__", str(target_type))
        message = f"Cannot convert column '{column}' value {raw_value!r} to {type_name}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class KeyCollisionError(DtoRepoError):
    """Raised when two loaded entities share the same primary key."""

    def __init__(self, key: Any, entity_type_name: str | None = None):
        self.key = key
        self.entity_type_name = entity_type_name
        where = f" in {entity_type_name}" if entity_type_name else ""
        super().__init__(f"Duplicate primary key {key}{where}")


class ImmutableKeyError(DtoRepoError):
    """Raised when a key property of a persisted entity is reassigned."""

    pass


class UnknownEntityTypeError(DtoRepoError, LookupError):
    """Raised when an entity type name has no registered entity class."""

    pass
