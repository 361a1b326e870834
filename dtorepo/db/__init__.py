"""Database access layer: adapters, row sets and the per-type access handles."""

from dtorepo.db.base import BaseDatabaseAdapter

__all__ = ["BaseDatabaseAdapter", "Database", "TableAccess"]


def __getattr__(name):
    """Lazy import database adapters to avoid importing optional dependencies."""
    if name == "DuckDBAdapter":
        from dtorepo.db.duckdb import DuckDBAdapter

        return DuckDBAdapter
    if name == "PostgreSQLAdapter":
        from dtorepo.db.postgres import PostgreSQLAdapter

        return PostgreSQLAdapter
    if name in ("Database", "TableAccess"):
        from dtorepo.db import database

        return getattr(database, name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
