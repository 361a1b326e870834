"""Pytest configuration and fixtures."""

import pytest

from dtorepo.db.database import Database
from dtorepo.db.duckdb import DuckDBAdapter
from dtorepo.db.table import Column
from tests.fakes import RecordingAdapter


@pytest.fixture(autouse=True)
def reset_registry():
    """Give every test its own repository registry.

    Repositories cache loaded entities, so sharing them across tests would
    leak state.
    """
    from dtorepo.core.registry import RepositoryRegistry, set_current_registry

    registry = RepositoryRegistry()
    set_current_registry(registry)

    yield registry

    set_current_registry(None)


@pytest.fixture
def duckdb_db():
    """Database over a fresh in-memory DuckDB."""
    db = Database(DuckDBAdapter(), "duckdb:///:memory:")
    yield db
    db.close()


@pytest.fixture
def game_item_type_db(duckdb_db):
    """In-memory DuckDB holding the two-row game_item_type table."""
    adapter = duckdb_db.adapter
    adapter.execute(
        """
        CREATE TABLE game_item_type (
            game_item_type_cd VARCHAR PRIMARY KEY,
            game_item_description VARCHAR,
            can_heal INTEGER,
            body_part_worn_cd VARCHAR
        )
        """
    )
    adapter.execute(
        "INSERT INTO game_item_type VALUES ('CORE', 'core item', 1, NULL), ('SKIN', 'skin item', 0, 'arms')"
    )
    return duckdb_db


@pytest.fixture
def game_db(game_item_type_db):
    """game_item_type plus a game_item table referencing it."""
    adapter = game_item_type_db.adapter
    adapter.execute("CREATE SEQUENCE game_item_seq START 1")
    adapter.execute(
        """
        CREATE TABLE game_item (
            game_item_id INTEGER PRIMARY KEY DEFAULT nextval('game_item_seq'),
            game_item_type_cd VARCHAR REFERENCES game_item_type (game_item_type_cd),
            game_item_name VARCHAR
        )
        """
    )
    adapter.execute(
        "INSERT INTO game_item (game_item_type_cd, game_item_name) "
        "VALUES ('CORE', 'helmet'), ('SKIN', 'gloves'), (NULL, 'rock')"
    )
    return game_item_type_db


@pytest.fixture
def recording_adapter():
    """RecordingAdapter holding game_item_type and game_item with a foreign key between them."""
    adapter = RecordingAdapter()
    adapter.add_table(
        "game_item_type",
        [
            Column("game_item_type_cd", "VARCHAR"),
            Column("game_item_description", "VARCHAR"),
            Column("can_heal", "INTEGER"),
            Column("body_part_worn_cd", "VARCHAR"),
        ],
        primary_key=("game_item_type_cd",),
        rows=[
            {"game_item_type_cd": "CORE", "game_item_description": "core item", "can_heal": 1, "body_part_worn_cd": None},
            {"game_item_type_cd": "SKIN", "game_item_description": "skin item", "can_heal": 0, "body_part_worn_cd": "arms"},
        ],
    )
    adapter.add_table(
        "game_item",
        [
            Column("game_item_id", "INTEGER", nullable=False, has_default=True),
            Column("game_item_type_cd", "VARCHAR"),
            Column("game_item_name", "VARCHAR"),
        ],
        primary_key=("game_item_id",),
        rows=[
            {"game_item_id": 1, "game_item_type_cd": "CORE", "game_item_name": "helmet"},
            {"game_item_id": 2, "game_item_type_cd": "SKIN", "game_item_name": "gloves"},
            {"game_item_id": 3, "game_item_type_cd": None, "game_item_name": "rock"},
        ],
    )
    adapter.add_foreign_key(
        "game_item_type_fkey", "game_item", "game_item_type_cd", "game_item_type", "game_item_type_cd"
    )
    return adapter


@pytest.fixture
def recording_db(recording_adapter):
    """Database over the recording adapter."""
    return Database(recording_adapter)


@pytest.fixture
def crew_adapter():
    """RecordingAdapter holding crew and sailor tables that reference each other."""
    adapter = RecordingAdapter()
    adapter.add_table(
        "crew",
        [Column("crew_id", "INTEGER"), Column("crew_name", "VARCHAR"), Column("sailor_id", "INTEGER")],
        primary_key=("crew_id",),
        rows=[
            {"crew_id": 1, "crew_name": "dawn watch", "sailor_id": 10},
            {"crew_id": 2, "crew_name": "dusk watch", "sailor_id": None},
        ],
    )
    adapter.add_table(
        "sailor",
        [Column("sailor_id", "INTEGER"), Column("sailor_name", "VARCHAR"), Column("crew_id", "INTEGER")],
        primary_key=("sailor_id",),
        rows=[
            {"sailor_id": 10, "sailor_name": "ishmael", "crew_id": 1},
            {"sailor_id": 11, "sailor_name": "queequeg", "crew_id": 2},
        ],
    )
    adapter.add_foreign_key("crew_sailor_fkey", "crew", "sailor_id", "sailor", "sailor_id")
    adapter.add_foreign_key("sailor_crew_fkey", "sailor", "crew_id", "crew", "crew_id")
    return adapter


@pytest.fixture
def crew_db(crew_adapter):
    """Database over the crew/sailor recording adapter."""
    return Database(crew_adapter)
