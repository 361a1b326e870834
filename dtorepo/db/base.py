"""Base database adapter interface."""

import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any

from dtorepo.core.foreign_keys import ForeignKeyConstraintRow
from dtorepo.db import statements
from dtorepo.db.table import ChangeKind, ChangeSet, Column, Row, RowSet, TableSchema

# Pattern for valid SQL identifiers: starts with letter or underscore,
# followed by letters, digits, or underscores. Also allows dots for
# qualified names (schema.table).
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)*$")


def validate_identifier(value: str, name: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Allows: letters, digits, underscores, and dots (for qualified names).
    Must start with a letter or underscore.

    Args:
        value: The identifier value to validate
        name: Human-readable name for error messages (e.g., "table name", "schema")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not value:
        raise ValueError(f"Invalid {name}: cannot be empty")

    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(
            f"Invalid {name}: '{value}'. "
            f"Identifiers must start with a letter or underscore and contain only "
            f"letters, digits, underscores, and dots."
        )

    return value


class BaseDatabaseAdapter(ABC):
    """Abstract base class for database adapters.

    Adapters wrap one driver connection and expose the primitives the
    repositories need: connection state, row fetches, batched writes and
    constraint metadata. The connection belongs to the caller; adapters
    never open or close it behind the caller's back.
    """

    # -- connection -------------------------------------------------------

    @abstractmethod
    def open(self) -> None:
        """Open the connection. Opening an open connection does nothing."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Closing a closed connection does nothing."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the connection is currently open."""
        raise NotImplementedError

    def dispose(self) -> None:
        """Release everything the adapter holds. Defaults to ``close()``."""
        self.close()

    # -- statements -------------------------------------------------------

    @abstractmethod
    def execute(self, sql: str, params: list | tuple | None = None) -> Any:
        """Execute SQL and return result object.

        Args:
            sql: SQL statement, using ``placeholder`` for parameters
            params: Parameter values

        Returns:
            Result object exposing ``fetchone()`` and ``fetchall()``
        """
        raise NotImplementedError

    @abstractmethod
    def executemany(self, sql: str, params: list) -> Any:
        """Execute SQL with multiple parameter sets.

        Args:
            sql: SQL query with placeholders
            params: List of parameter tuples

        Returns:
            Database-specific result object
        """
        raise NotImplementedError

    @abstractmethod
    def fetchone(self, result: Any) -> tuple | None:
        """Fetch one row from result.

        Args:
            result: Result object from execute()

        Returns:
            Single row tuple or None
        """
        raise NotImplementedError

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Context manager committing on success and rolling back on error."""
        raise NotImplementedError

    # -- metadata ---------------------------------------------------------

    @abstractmethod
    def get_tables(self) -> list[dict]:
        """Get list of tables in database.

        Returns:
            List of dicts with 'table_name' and 'schema' keys
        """
        raise NotImplementedError

    @abstractmethod
    def get_columns(self, table_name: str, schema: str | None = None) -> list[dict]:
        """Get columns for a table, in table order.

        Args:
            table_name: Name of table
            schema: Schema name (optional)

        Returns:
            List of dicts with 'column_name', 'data_type', 'column_default'
            and 'is_nullable' keys
        """
        raise NotImplementedError

    @abstractmethod
    def get_primary_key(self, table_name: str, schema: str | None = None) -> list[str]:
        """Get the primary key columns of a table, in key order."""
        raise NotImplementedError

    @abstractmethod
    def get_foreign_keys(self) -> list[ForeignKeyConstraintRow]:
        """Get every foreign-key column pair in the database.

        Returns:
            One row per column pair, ordered by constraint then column position
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def dialect(self) -> str:
        """Get SQLGlot dialect name.

        Returns:
            Dialect name (e.g., 'duckdb', 'postgres')
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def placeholder(self) -> str:
        """Parameter placeholder used by the driver (e.g. '?' or '%s')."""
        raise NotImplementedError

    @property
    @abstractmethod
    def raw_connection(self) -> Any:
        """Get underlying database connection object.

        Returns:
            Raw connection (DuckDBPyConnection, psycopg.Connection, etc.)
        """
        raise NotImplementedError

    @property
    def default_schema(self) -> str | None:
        return None

    # -- table access -----------------------------------------------------

    def fetch_schema(self, table_name: str, schema: str | None = None) -> TableSchema:
        """Read the column list and primary key of a table.

        Raises:
            LookupError: If the table has no columns (does not exist)
        """
        validate_identifier(table_name, "table name")
        schema = schema or self.default_schema
        column_rows = self.get_columns(table_name, schema)
        if not column_rows:
            raise LookupError(f"Table '{table_name}' not found")

        primary_key = tuple(self.get_primary_key(table_name, schema))
        columns = [
            Column(
                name=c["column_name"],
                data_type=str(c["data_type"]),
                nullable=_is_nullable(c.get("is_nullable")),
                has_default=c.get("column_default") is not None,
                primary_key=c["column_name"] in primary_key,
            )
            for c in column_rows
        ]
        return TableSchema(table_name=table_name, columns=columns, primary_key=primary_key, schema=schema)

    def fetch_table(self, schema: TableSchema) -> RowSet:
        """Select every row of a table."""
        result = self.execute(statements.select_all(schema, self.dialect))
        names = schema.column_names
        rows = []
        for values in result.fetchall():
            row_values = dict(zip(names, values))
            rows.append(Row(row_values, original=dict(row_values)))
        return RowSet(schema=schema, rows=rows)

    def apply_batch(self, schema: TableSchema, changes: ChangeSet) -> int:
        """Write staged inserts, updates and deletes in one transaction.

        Changes are applied in staging order. Inserts leave out columns
        that are None and have a server default so the database assigns
        them.

        Returns:
            Number of statements executed

        Raises:
            ValueError: If updates or deletes are staged for a table without a primary key
        """
        if (changes.updated or changes.deleted) and not schema.primary_key:
            raise ValueError(f"Table '{schema.qualified_name}' has no primary key; rows cannot be updated or deleted")

        dialect = self.dialect
        placeholder = self.placeholder
        executed = 0
        with self.transaction():
            for kind, row in changes:
                if kind is ChangeKind.INSERT:
                    columns = [
                        c.name for c in schema.columns if not (row.get(c.name) is None and c.has_default)
                    ]
                    sql = statements.insert_statement(schema, columns, dialect, placeholder)
                    params = [row.get(name) for name in columns]
                elif kind is ChangeKind.UPDATE:
                    columns = [c.name for c in schema.non_key_columns]
                    if not columns:
                        continue
                    sql = statements.update_statement(schema, columns, dialect, placeholder)
                    key = row.key_values(schema.primary_key)
                    params = [row.get(name) for name in columns] + [key[name] for name in schema.primary_key]
                else:
                    sql = statements.delete_statement(schema, dialect, placeholder)
                    key = row.key_values(schema.primary_key)
                    params = [key[name] for name in schema.primary_key]

                self.execute(sql, params)
                executed += 1

        for kind, row in changes:
            if kind is not ChangeKind.DELETE:
                row.mark_persisted()

        return executed


def _is_nullable(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    return str(value).upper() in ("YES", "TRUE", "1")


def iter_foreign_key_pairs(
    constraint_name: str,
    table_name: str,
    referenced_table: str,
    columns: list[str],
    referenced_columns: list[str],
) -> Iterator[ForeignKeyConstraintRow]:
    """Expand one constraint with column lists into per-pair rows."""
    for column, referenced_column in zip(columns, referenced_columns):
        yield ForeignKeyConstraintRow(
            constraint_name=constraint_name,
            table_name=table_name,
            referenced_table=referenced_table,
            column_name=column,
            referenced_column_name=referenced_column,
        )
