"""The database collaborator repositories load from and save to.

A ``Database`` owns one adapter (one connection target), the foreign-key
map derived from that target's constraints, and a cached ``TableAccess``
handle per entity type.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from dtorepo.core.foreign_keys import ForeignKeyMap
from dtorepo.db.base import BaseDatabaseAdapter
from dtorepo.db.table import ChangeSet, RowSet, TableSchema
from dtorepo.errors import DatabaseConnectionError, DtoRepoError, FetchError, WriteError

if TYPE_CHECKING:
    from dtorepo.core.entity import Entity

logger = logging.getLogger(__name__)

LOCAL_DB_FILE_EXTENSIONS = (".duckdb", ".ddb", ".db")


def create_adapter(url: str) -> BaseDatabaseAdapter:
    """Create an adapter from a connection URL.

    Args:
        url: ``duckdb:///path``, ``duckdb:///:memory:`` or ``postgres://...``

    Raises:
        ValueError: If the URL scheme is not supported
    """
    if url.startswith("duckdb://"):
        from dtorepo.db.duckdb import DuckDBAdapter

        return DuckDBAdapter.from_url(url)
    if url.startswith(("postgres://", "postgresql://")):
        from dtorepo.db.postgres import PostgreSQLAdapter

        return PostgreSQLAdapter.from_url(url)
    raise ValueError(f"Unsupported connection URL: {url}")


def find_local_database(directory: str | Path) -> Path | None:
    """Find the first file under a directory that looks like a local database.

    Args:
        directory: Directory to search recursively

    Returns:
        Path of the first match (in sorted order), or None
    """
    root = Path(directory)
    if not root.is_dir():
        return None
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in LOCAL_DB_FILE_EXTENSIONS:
            return path
    return None


def _is_open(adapter: BaseDatabaseAdapter) -> bool:
    try:
        return adapter.is_open
    except DtoRepoError:
        raise
    except Exception as e:
        raise DatabaseConnectionError(f"Cannot read connection state: {e}") from e


def _open_adapter(adapter: BaseDatabaseAdapter, purpose: str) -> None:
    try:
        adapter.open()
    except DtoRepoError:
        raise
    except Exception as e:
        raise DatabaseConnectionError(f"Cannot open connection for {purpose}: {e}") from e


def _close_adapter(adapter: BaseDatabaseAdapter, purpose: str) -> None:
    try:
        adapter.close()
    except DtoRepoError:
        raise
    except Exception as e:
        raise DatabaseConnectionError(f"Cannot close connection for {purpose}: {e}") from e


@contextmanager
def _borrow(adapter: BaseDatabaseAdapter, purpose: str) -> Iterator[None]:
    """Open the adapter if needed and leave it as it was found.

    A connection opened here is closed again on exit, whether or not the
    block raised. A close failure while another error propagates is logged
    so the original error is the one raised.
    """
    was_open = _is_open(adapter)
    if not was_open:
        _open_adapter(adapter, purpose)
    try:
        yield
    except BaseException:
        if not was_open:
            try:
                _close_adapter(adapter, purpose)
            except DatabaseConnectionError:
                logger.warning("Could not close connection for %s", purpose, exc_info=True)
        raise
    if not was_open:
        _close_adapter(adapter, purpose)


class TableAccess:
    """Data-access handle for the table behind one entity type.

    Translates driver exceptions into the dtorepo error taxonomy.
    """

    def __init__(self, database: "Database", entity_type: type["Entity"]):
        self.database = database
        self.entity_type = entity_type
        self.table_name = entity_type.table_name()
        self._schema: TableSchema | None = None

    @property
    def adapter(self) -> BaseDatabaseAdapter:
        return self.database.adapter

    @property
    def _purpose(self) -> str:
        return f"table '{self.table_name}'"

    @property
    def is_open(self) -> bool:
        return _is_open(self.adapter)

    def open(self) -> None:
        _open_adapter(self.adapter, self._purpose)

    def close(self) -> None:
        _close_adapter(self.adapter, self._purpose)

    @contextmanager
    def borrowed_connection(self) -> Iterator["TableAccess"]:
        """Open the connection if needed and leave it as it was found."""
        with _borrow(self.adapter, self._purpose):
            yield self

    def fetch_schema(self) -> TableSchema:
        """Column and key metadata for the table, fetched once per handle."""
        if self._schema is None:
            try:
                self._schema = self.adapter.fetch_schema(self.table_name)
            except DtoRepoError:
                raise
            except Exception as e:
                raise FetchError(f"Cannot read schema of table '{self.table_name}': {e}") from e
        return self._schema

    def fetch(self) -> RowSet:
        """Fetch the schema, then every row of the table."""
        schema = self.fetch_schema()
        try:
            return self.adapter.fetch_table(schema)
        except DtoRepoError:
            raise
        except Exception as e:
            raise FetchError(f"Cannot fetch rows of table '{self.table_name}': {e}") from e

    def empty_rowset(self) -> RowSet:
        return RowSet(schema=self.fetch_schema())

    def apply_batch(self, changes: ChangeSet) -> int:
        """Write staged changes in a single transaction.

        Returns:
            Number of statements executed
        """
        schema = self.fetch_schema()
        try:
            return self.adapter.apply_batch(schema, changes)
        except DtoRepoError:
            raise
        except Exception as e:
            raise WriteError(
                f"Batch write to table '{self.table_name}' failed "
                f"({len(changes.inserted)} insert(s), {len(changes.updated)} update(s), "
                f"{len(changes.deleted)} delete(s)): {e}"
            ) from e


class Database:
    """Connection target shared by all repositories.

    Example:
        >>> db = Database.from_url("duckdb:///:memory:")
        >>> items = Repository.get_instance(GameItem).find_all(db)
    """

    def __init__(self, adapter: BaseDatabaseAdapter | None = None, connection_string: str | None = None):
        self._adapter: BaseDatabaseAdapter | None = None
        self.connection_string: str | None = None
        self.generation = 0
        self._access: dict[type, TableAccess] = {}
        self._foreign_keys: ForeignKeyMap | None = None
        if adapter is not None:
            self.use_adapter(adapter, connection_string)

    @classmethod
    def from_url(cls, url: str) -> "Database":
        database = cls()
        database.set_connection(url)
        return database

    @property
    def adapter(self) -> BaseDatabaseAdapter:
        if self._adapter is None:
            raise DatabaseConnectionError("A connection must be set before accessing the database")
        return self._adapter

    @property
    def has_connection(self) -> bool:
        return self._adapter is not None

    def set_connection(self, url: str) -> None:
        """Point the database at a connection URL.

        Does nothing for an empty URL or the URL already in use. Otherwise
        the previous adapter is disposed and cached per-type state dropped.
        """
        if not url:
            return
        if self._adapter is not None and url == self.connection_string:
            return

        try:
            adapter = create_adapter(url)
        except (ValueError, ImportError):
            raise
        except Exception as e:
            logger.exception("Failed to connect to %s", url)
            raise DatabaseConnectionError(f"Cannot connect to {url}: {e}") from e

        self.use_adapter(adapter, url)

    def use_adapter(self, adapter: BaseDatabaseAdapter, connection_string: str | None = None) -> None:
        """Switch to an already-constructed adapter."""
        previous = self._adapter
        if previous is not None and previous is not adapter:
            try:
                previous.dispose()
            except Exception:
                logger.warning("Could not dispose previous connection", exc_info=True)

        self._adapter = adapter
        self.connection_string = connection_string
        self._access.clear()
        self._foreign_keys = None
        self.generation += 1
        logger.info("Database connection set (%s, generation %d)", connection_string or adapter.dialect, self.generation)

    def set_default_connection(self, directory: str | Path = ".") -> bool:
        """Connect to the first local database file found under a directory.

        Returns:
            True if a file was found and connected to
        """
        path = find_local_database(directory)
        if path is None:
            logger.info("No local database file found under %s", directory)
            return False
        self.set_connection(f"duckdb://{path.resolve()}")
        return True

    def access(self, entity_type: type["Entity"]) -> TableAccess:
        """Cached data-access handle for an entity type."""
        handle = self._access.get(entity_type)
        if handle is None:
            handle = TableAccess(self, entity_type)
            self._access[entity_type] = handle
        return handle

    @property
    def foreign_keys(self) -> ForeignKeyMap:
        """Foreign-key map of the current connection, built on first use."""
        if self._foreign_keys is None:
            self._foreign_keys = self._build_foreign_keys()
        return self._foreign_keys

    def refresh_foreign_keys(self) -> ForeignKeyMap:
        self._foreign_keys = None
        return self.foreign_keys

    def _build_foreign_keys(self) -> ForeignKeyMap:
        adapter = self.adapter
        logger.debug("Retrieving foreign key information...")
        try:
            with _borrow(adapter, "foreign key metadata"):
                try:
                    rows = adapter.get_foreign_keys()
                except DtoRepoError:
                    raise
                except Exception as e:
                    raise FetchError(f"Cannot read foreign key metadata: {e}") from e
        except DtoRepoError:
            logger.exception("Failed to read foreign key metadata")
            raise

        foreign_keys = ForeignKeyMap.from_constraint_rows(rows)
        if foreign_keys:
            logger.debug("Foreign key information mapped:\n%s", foreign_keys.describe())
        else:
            logger.debug("No foreign key information found")
        return foreign_keys

    def close(self) -> None:
        """Dispose of the adapter; the database has no connection afterwards."""
        if self._adapter is not None:
            self._adapter.dispose()
            self._adapter = None
            self.connection_string = None
            self._access.clear()
            self._foreign_keys = None

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
