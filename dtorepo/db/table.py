"""In-memory representation of table schemas and rows."""

import datetime
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

_INTEGER_TYPES = {
    "TINYINT", "SMALLINT", "INTEGER", "INT", "BIGINT", "HUGEINT",
    "UTINYINT", "USMALLINT", "UINTEGER", "UBIGINT", "UHUGEINT",
    "INT1", "INT2", "INT4", "INT8", "SERIAL", "BIGSERIAL", "SMALLSERIAL",
}
_FLOAT_TYPES = {"FLOAT", "FLOAT4", "FLOAT8", "REAL", "DOUBLE", "DOUBLE PRECISION"}
_DECIMAL_TYPES = {"DECIMAL", "NUMERIC"}
_STRING_TYPES = {"VARCHAR", "TEXT", "CHAR", "CHARACTER", "CHARACTER VARYING", "STRING", "BPCHAR", "NAME"}
_BOOLEAN_TYPES = {"BOOLEAN", "BOOL"}
_BINARY_TYPES = {"BLOB", "BYTEA", "BINARY", "VARBINARY"}


def python_type_for(data_type: str) -> Any:
    """Map a SQL column type name to the Python type its values convert to.

    Unknown types map to ``object`` (values pass through unchanged).

    Args:
        data_type: Type name as reported by the database (e.g. ``VARCHAR(20)``, ``integer``)

    Returns:
        A Python type
    """
    base = data_type.split("(")[0].strip().upper()

    if base in _INTEGER_TYPES:
        return int
    if base in _FLOAT_TYPES:
        return float
    if base in _DECIMAL_TYPES:
        return Decimal
    if base in _STRING_TYPES:
        return str
    if base in _BOOLEAN_TYPES:
        return bool
    if base in _BINARY_TYPES:
        return bytes
    if base == "DATE":
        return datetime.date
    if base.startswith("TIMESTAMP") or base == "DATETIME":
        return datetime.datetime
    if base.startswith("TIME"):
        return datetime.time
    if base == "UUID":
        return uuid.UUID
    return object


@dataclass
class Column:
    """A table column and what values written to it convert to."""

    name: str
    data_type: str
    nullable: bool = True
    has_default: bool = False
    primary_key: bool = False

    @property
    def python_type(self) -> Any:
        return python_type_for(self.data_type)


@dataclass
class TableSchema:
    """Columns and primary key of one table."""

    table_name: str
    columns: list[Column]
    primary_key: tuple[str, ...] = ()
    schema: str | None = None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table_name}" if self.schema else self.table_name

    def column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def non_key_columns(self) -> list[Column]:
        return [c for c in self.columns if c.name not in self.primary_key]


class Row:
    """Column values of one table row.

    ``original`` holds the values as last read from or written to the
    database; updates and deletes address the row by its original key.
    """

    __slots__ = ("values", "original")

    def __init__(self, values: dict[str, Any] | None = None, original: dict[str, Any] | None = None):
        self.values: dict[str, Any] = dict(values or {})
        self.original: dict[str, Any] | None = original

    @property
    def is_new(self) -> bool:
        """True if the row has never been read from or written to the database."""
        return self.original is None

    def key_values(self, key_columns: tuple[str, ...]) -> dict[str, Any]:
        source = self.original if self.original is not None else self.values
        return {name: source.get(name) for name in key_columns}

    def mark_persisted(self) -> None:
        self.original = dict(self.values)

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)

    def __getitem__(self, column: str) -> Any:
        return self.values[column]

    def __setitem__(self, column: str, value: Any) -> None:
        self.values[column] = value

    def __repr__(self) -> str:
        return f"Row({self.values!r})"


@dataclass
class RowSet:
    """Schema plus the rows fetched from (or staged for) one table."""

    schema: TableSchema
    rows: list[Row] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return self.schema.column_names

    def new_row(self) -> Row:
        """Create an empty row with every column present and set to None."""
        return Row({name: None for name in self.schema.column_names})

    def add(self, row: Row) -> None:
        self.rows.append(row)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ChangeSet:
    """Rows staged for one batch write, kept in staging order."""

    changes: list[tuple[ChangeKind, Row]] = field(default_factory=list)

    def insert(self, row: Row) -> None:
        self.changes.append((ChangeKind.INSERT, row))

    def update(self, row: Row) -> None:
        self.changes.append((ChangeKind.UPDATE, row))

    def delete(self, row: Row) -> None:
        self.changes.append((ChangeKind.DELETE, row))

    @property
    def inserted(self) -> list[Row]:
        return [row for kind, row in self.changes if kind is ChangeKind.INSERT]

    @property
    def updated(self) -> list[Row]:
        return [row for kind, row in self.changes if kind is ChangeKind.UPDATE]

    @property
    def deleted(self) -> list[Row]:
        return [row for kind, row in self.changes if kind is ChangeKind.DELETE]

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[tuple[ChangeKind, Row]]:
        return iter(self.changes)
