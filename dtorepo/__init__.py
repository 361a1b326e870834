"""dtorepo: generic repository engine mapping relational rows to pydantic entities."""

__version__ = "0.1.0"

from dtorepo.core.entity import Entity
from dtorepo.core.keys import PrimaryKey, PrimaryKeyIndex
from dtorepo.core.state import EntityState, try_set_state
from dtorepo.errors import (
    DatabaseConnectionError,
    DtoRepoError,
    FetchError,
    ImmutableKeyError,
    KeyCollisionError,
    MappingError,
    UnknownEntityTypeError,
    WriteError,
)

__all__ = [
    "DatabaseConnectionError",
    "Database",
    "DtoRepoError",
    "Entity",
    "EntityState",
    "FetchError",
    "ImmutableKeyError",
    "KeyCollisionError",
    "MappingError",
    "PrimaryKey",
    "PrimaryKeyIndex",
    "Repository",
    "RepositoryRegistry",
    "UnknownEntityTypeError",
    "WriteError",
    "get_registry",
    "try_set_state",
    "use_registry",
]


def __getattr__(name):  # Lazy import to avoid importing duckdb on package import
    if name == "Database":
        from dtorepo.db.database import Database

        return Database
    if name == "Repository":
        from dtorepo.core.repository import Repository

        return Repository
    if name in ("RepositoryRegistry", "get_registry", "use_registry"):
        from dtorepo.core import registry

        return getattr(registry, name)
    raise AttributeError(name)
