"""CLI for inspecting a database through dtorepo repositories."""

import json
import logging
from pathlib import Path

import typer

from dtorepo import __version__
from dtorepo.config import DtoRepoConfig, build_connection_string, find_config, import_entity_modules, load_config


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"dtorepo {__version__}")
        raise typer.Exit()


app = typer.Typer(
    help="dtorepo: load and inspect entities through generic repositories",
    no_args_is_help=True,
)

# Global state for config (set in callback, used in commands)
_loaded_config: DtoRepoConfig | None = None


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True, help="Show version"
    ),
    config: Path = typer.Option(None, "--config", "-c", help="Path to config file (dtorepo.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", help="Log loads, saves and foreign-key mapping"),
):
    """dtorepo CLI.

    You can use a config file (dtorepo.yaml or dtorepo.json) to set default values.
    CLI arguments override config file values.
    """
    global _loaded_config

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    config_path = config if config else find_config()

    _loaded_config = None
    if config_path:
        try:
            _loaded_config = load_config(config_path)
            typer.echo(f"Loaded config from: {config_path}", err=True)
        except Exception as e:
            typer.echo(f"Warning: Failed to load config: {e}", err=True)
            _loaded_config = None


def _open_database(connection: str | None, db: Path | None):
    """Build a Database from args, then config, then a local database file."""
    from dtorepo.db.database import Database

    database = Database()
    try:
        if connection:
            database.set_connection(connection)
        elif db:
            database.set_connection(f"duckdb://{db.absolute()}")
        elif _loaded_config and _loaded_config.connection:
            database.set_connection(build_connection_string(_loaded_config))
        elif not database.set_default_connection(Path.cwd()):
            typer.echo("Error: No database found. Use --connection, --db or a config file", err=True)
            raise typer.Exit(1)
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return database


def _entity_json(entity) -> dict:
    """Scalar properties by property name; object-valued properties as their key."""
    from dtorepo.core.registry import get_registry

    registry = get_registry()
    entity_type = type(entity)
    child_fields = entity_type.child_fields()
    data = entity.model_dump(mode="json", by_alias=True, exclude=set(child_fields))
    for field_name in child_fields:
        child = getattr(entity, field_name)
        key = registry.descriptor(type(child)).key_of(child) if child is not None else None
        data[entity_type.property_name_for(field_name)] = key.as_dict() if key is not None else None
    return data


_connection_option = typer.Option(None, "--connection", help="Database connection string (e.g., postgres://host/db)")
_db_option = typer.Option(None, "--db", help="Path to DuckDB database file (shorthand for duckdb:/// connection)")


@app.command()
def tables(
    connection: str = _connection_option,
    db: Path = _db_option,
):
    """
    List the tables in the database and the entity type each one maps to.

    Examples:
      dtorepo tables --db game.duckdb
    """
    from dtorepo.core.entity import lookup_entity_type
    from dtorepo.naming import type_name_from_table

    database = _open_database(connection, db)
    try:
        if _loaded_config:
            import_entity_modules(_loaded_config)

        table_rows = database.adapter.get_tables()
        if not table_rows:
            typer.echo("No tables found")
            raise typer.Exit(0)

        for table in table_rows:
            type_name = type_name_from_table(table["table_name"])
            marker = "●" if lookup_entity_type(type_name) else "○"
            typer.echo(f"{marker} {table['table_name']} -> {type_name}")
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        database.close()


@app.command("foreign-keys")
def foreign_keys(
    connection: str = _connection_option,
    db: Path = _db_option,
):
    """
    Show the foreign-key map derived from the database constraints.

    Examples:
      dtorepo foreign-keys --db game.duckdb
    """
    database = _open_database(connection, db)
    try:
        foreign_key_map = database.foreign_keys
        if not foreign_key_map:
            typer.echo("No foreign keys found")
            raise typer.Exit(0)
        typer.echo(foreign_key_map.describe())
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        database.close()


@app.command()
def load(
    type_name: str = typer.Argument(..., help="Entity type name (e.g., GameItem)"),
    module: list[str] = typer.Option(None, "--module", "-m", help="Module defining entity types (repeatable)"),
    connection: str = _connection_option,
    db: Path = _db_option,
):
    """
    Load every entity of a type and print it as JSON, one entity per line.

    Object-valued properties are printed as the primary key of the entity they
    resolved to, so mutually referencing types print without recursing.

    Examples:
      dtorepo load GameItem --module game.entities --db game.duckdb
    """
    import importlib

    from dtorepo.core.registry import get_registry

    database = _open_database(connection, db)
    try:
        if _loaded_config:
            import_entity_modules(_loaded_config)
        for module_name in module or []:
            importlib.import_module(module_name)

        repository = get_registry().repository_for(type_name)
        for entity in repository.find_all(database):
            typer.echo(json.dumps(_entity_json(entity), default=str))
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        database.close()


if __name__ == "__main__":
    app()
