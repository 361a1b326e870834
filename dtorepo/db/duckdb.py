"""DuckDB database adapter."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import duckdb

from dtorepo.core.foreign_keys import ForeignKeyConstraintRow
from dtorepo.db.base import BaseDatabaseAdapter, iter_foreign_key_pairs


class DuckDBAdapter(BaseDatabaseAdapter):
    """DuckDB database adapter.

    The database itself stays attached for the adapter's lifetime;
    ``open()`` and ``close()`` manage a working connection on top of it,
    so closing never discards an in-memory database.
    """

    def __init__(self, path: str = ":memory:"):
        """Initialize DuckDB adapter.

        Args:
            path: Database file path or ":memory:" for in-memory database
        """
        self.path = path
        self._database = duckdb.connect(path)
        self.conn: duckdb.DuckDBPyConnection | None = None
        self.open()

    def open(self) -> None:
        if self.conn is None:
            self.conn = self._database.cursor()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    def dispose(self) -> None:
        self.close()
        self._database.close()

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise duckdb.ConnectionException("Connection is closed; call open() first")
        return self.conn

    def execute(self, sql: str, params: list | tuple | None = None) -> Any:
        """Execute SQL and return the DuckDB connection holding the result."""
        if params is None:
            return self._connection().execute(sql)
        return self._connection().execute(sql, params)

    def executemany(self, sql: str, params: list) -> Any:
        """Execute SQL with multiple parameter sets."""
        return self._connection().executemany(sql, params)

    def fetchone(self, result: Any) -> tuple | None:
        """Fetch one row from result."""
        return result.fetchone()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self._connection()
        conn.begin()
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def get_tables(self) -> list[dict]:
        """Get list of tables in database."""
        result = self.execute(
            """
            SELECT table_name, schema_name as schema
            FROM duckdb_tables()
            WHERE schema_name NOT IN ('information_schema', 'pg_catalog')
            ORDER BY schema_name, table_name
        """
        )
        rows = result.fetchall()
        return [{"table_name": row[0], "schema": row[1]} for row in rows]

    def get_columns(self, table_name: str, schema: str | None = None) -> list[dict]:
        """Get columns for a table."""
        sql = """
            SELECT column_name, data_type, column_default, is_nullable
            FROM duckdb_columns()
            WHERE table_name = ?
        """
        params: list = [table_name]
        if schema:
            sql += " AND schema_name = ?"
            params.append(schema)
        sql += " ORDER BY column_index"
        rows = self.execute(sql, params).fetchall()
        return [
            {"column_name": row[0], "data_type": row[1], "column_default": row[2], "is_nullable": row[3]}
            for row in rows
        ]

    def get_primary_key(self, table_name: str, schema: str | None = None) -> list[str]:
        sql = """
            SELECT constraint_column_names
            FROM duckdb_constraints()
            WHERE table_name = ? AND constraint_type = 'PRIMARY KEY'
        """
        params: list = [table_name]
        if schema:
            sql += " AND schema_name = ?"
            params.append(schema)
        row = self.execute(sql, params).fetchone()
        return list(row[0]) if row else []

    def get_foreign_keys(self) -> list[ForeignKeyConstraintRow]:
        result = self.execute("SELECT * FROM duckdb_constraints() WHERE constraint_type = 'FOREIGN KEY'")
        names = [description[0] for description in result.description]
        rows = []
        for values in result.fetchall():
            info = dict(zip(names, values))
            referenced_table = info.get("referenced_table")
            if not referenced_table:
                continue
            constraint_name = info.get("constraint_name") or (
                f"{info['table_name']}_{info.get('constraint_index', len(rows))}_fkey"
            )
            rows.extend(
                iter_foreign_key_pairs(
                    constraint_name,
                    info["table_name"],
                    referenced_table,
                    list(info["constraint_column_names"]),
                    list(info.get("referenced_column_names") or []),
                )
            )
        return rows

    @property
    def dialect(self) -> str:
        """Get SQLGlot dialect name."""
        return "duckdb"

    @property
    def placeholder(self) -> str:
        return "?"

    @property
    def raw_connection(self) -> Any:
        """Get underlying DuckDB connection."""
        return self.conn

    @classmethod
    def from_url(cls, url: str) -> "DuckDBAdapter":
        """Create adapter from connection URL.

        Args:
            url: Connection URL (e.g., "duckdb:///:memory:" or "duckdb:///path/to/db.duckdb")

        Returns:
            DuckDBAdapter instance
        """
        if not url.startswith("duckdb://"):
            raise ValueError(f"Invalid DuckDB URL: {url}")

        # Remove protocol prefix while preserving leading slash in file paths
        # duckdb:///:memory: -> :memory:
        # duckdb:///tmp/app.db -> /tmp/app.db
        # duckdb:/// -> :memory:
        db_path = url[len("duckdb://") :]

        # Handle :memory: special case (may have leading slash from URI)
        if db_path in ("/:memory:", ":memory:", "", "/"):
            db_path = ":memory:"

        return cls(db_path)
