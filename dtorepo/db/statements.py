"""SQL text for the statements the repository issues.

Identifiers are quoted for the target dialect with SQLGlot; values are
always passed as parameters.
"""

from sqlglot import exp

from dtorepo.db.table import TableSchema


def quote_identifier(name: str, dialect: str) -> str:
    """Quote a possibly schema-qualified identifier for a dialect."""
    return ".".join(exp.to_identifier(part, quoted=True).sql(dialect=dialect) for part in name.split("."))


def select_all(schema: TableSchema, dialect: str) -> str:
    columns = ", ".join(quote_identifier(name, dialect) for name in schema.column_names)
    return f"SELECT {columns} FROM {quote_identifier(schema.qualified_name, dialect)}"


def insert_statement(schema: TableSchema, columns: list[str], dialect: str, placeholder: str) -> str:
    table = quote_identifier(schema.qualified_name, dialect)
    if not columns:
        return f"INSERT INTO {table} DEFAULT VALUES"
    column_list = ", ".join(quote_identifier(name, dialect) for name in columns)
    values = ", ".join(placeholder for _ in columns)
    return f"INSERT INTO {table} ({column_list}) VALUES ({values})"


def update_statement(schema: TableSchema, columns: list[str], dialect: str, placeholder: str) -> str:
    table = quote_identifier(schema.qualified_name, dialect)
    assignments = ", ".join(f"{quote_identifier(name, dialect)} = {placeholder}" for name in columns)
    return f"UPDATE {table} SET {assignments} WHERE {_key_predicate(schema, dialect, placeholder)}"


def delete_statement(schema: TableSchema, dialect: str, placeholder: str) -> str:
    table = quote_identifier(schema.qualified_name, dialect)
    return f"DELETE FROM {table} WHERE {_key_predicate(schema, dialect, placeholder)}"


def _key_predicate(schema: TableSchema, dialect: str, placeholder: str) -> str:
    return " AND ".join(f"{quote_identifier(name, dialect)} = {placeholder}" for name in schema.primary_key)
