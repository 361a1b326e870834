"""Configuration file format for dtorepo."""

import importlib
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("dtorepo.yaml", "dtorepo.yml", "dtorepo.json")


class DuckDBConnection(BaseModel):
    """DuckDB connection configuration."""

    type: Literal["duckdb"] = "duckdb"
    path: str = Field(..., description="Path to DuckDB database file or :memory:")


class PostgreSQLConnection(BaseModel):
    """PostgreSQL connection configuration."""

    type: Literal["postgres"] = "postgres"
    host: str = Field(..., description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    database: str = Field(..., description="Database name")
    username: str = Field(..., description="Username")
    password: str | None = Field(default=None, description="Password")


Connection = DuckDBConnection | PostgreSQLConnection


class DtoRepoConfig(BaseModel):
    """dtorepo configuration file format.

    Can be saved as dtorepo.yaml or dtorepo.json.

    Example YAML:
        connection:
          type: duckdb
          path: data/game.duckdb
        entity_modules:
          - game.entities

    Example JSON:
        {
          "connection": {
            "type": "postgres",
            "host": "localhost",
            "database": "game",
            "username": "game"
          },
          "schema": "inventory",
          "entity_modules": ["game.entities"]
        }
    """

    connection: Connection | None = Field(default=None, description="Database connection configuration")
    db_schema: str = Field(default="public", alias="schema", description="PostgreSQL schema holding the tables")
    entity_modules: list[str] = Field(
        default_factory=list, description="Modules to import so their entity types are defined"
    )

    model_config = ConfigDict(populate_by_name=True)

    def resolve_paths(self, base_dir: Path | None = None) -> "DtoRepoConfig":
        """Resolve relative paths to absolute paths.

        Args:
            base_dir: Base directory for resolving relative paths (defaults to cwd)

        Returns:
            New config with resolved paths
        """
        base = base_dir or Path.cwd()

        connection = self.connection
        if connection and isinstance(connection, DuckDBConnection) and connection.path != ":memory:":
            db_p = Path(connection.path)
            if not db_p.is_absolute():
                db_p = (base / db_p).resolve()
            connection = DuckDBConnection(type="duckdb", path=str(db_p))

        return self.model_copy(update={"connection": connection})


def load_config(config_path: Path) -> DtoRepoConfig:
    """Load configuration from YAML or JSON file.

    Args:
        config_path: Path to config file (dtorepo.yaml or dtorepo.json)

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    import json

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with open(config_path) as f:
            data = json.load(f)
    else:
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    config = DtoRepoConfig(**(data or {}))

    # Resolve relative paths relative to config file directory
    return config.resolve_paths(config_path.parent)


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find config file by searching up the directory tree.

    Searches for dtorepo.yaml, dtorepo.yml, or dtorepo.json.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        for name in CONFIG_FILE_NAMES:
            config_path = current / name
            if config_path.exists():
                return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def build_connection_string(config: DtoRepoConfig) -> str:
    """Build database connection string from config.

    Args:
        config: dtorepo configuration

    Returns:
        Connection URL for ``Database.from_url``
    """
    if not config.connection:
        return "duckdb:///:memory:"

    if isinstance(config.connection, DuckDBConnection):
        path = config.connection.path
        if path == ":memory:" or not Path(path).is_absolute():
            return f"duckdb:///{path}"
        return f"duckdb://{path}"
    elif isinstance(config.connection, PostgreSQLConnection):
        password_part = f":{config.connection.password}" if config.connection.password else ""
        schema_part = f"?schema={config.db_schema}" if config.db_schema != "public" else ""
        return (
            f"postgres://{config.connection.username}{password_part}@"
            f"{config.connection.host}:{config.connection.port}/{config.connection.database}{schema_part}"
        )
    else:
        raise ValueError(f"Unknown connection type: {type(config.connection)}")


def import_entity_modules(config: DtoRepoConfig) -> list[str]:
    """Import the configured entity modules so their entity types register.

    Returns:
        Names of the modules imported
    """
    imported = []
    for module_name in config.entity_modules:
        logger.debug("Importing entity module %s", module_name)
        importlib.import_module(module_name)
        imported.append(module_name)
    return imported
