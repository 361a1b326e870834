"""Tests for Repository against the recording adapter."""

import pytest

from dtorepo import EntityState, FetchError, KeyCollisionError, PrimaryKey, WriteError
from dtorepo.core.repository import Repository
from dtorepo.db.database import Database
from dtorepo.db.table import ChangeKind, Column
from tests.entities import Crew, Employee, GameItem, GameItemType, Sailor
from tests.fakes import RecordingAdapter


def test_get_instance_returns_one_repository_per_type():
    repo = Repository.get_instance(GameItemType)
    assert Repository.get_instance(GameItemType) is repo
    assert Repository.get_instance(GameItem) is not repo


def test_find_all_loads_every_row(recording_db):
    items = Repository.get_instance(GameItemType).find_all(recording_db)

    assert len(items) == 2
    assert [i.game_item_type_cd for i in items] == ["CORE", "SKIN"]
    assert all(i.state is EntityState.UNCHANGED for i in items)
    assert all(i.row is not None for i in items)


def test_find_by_key_returns_the_loaded_entity(recording_db):
    repo = Repository.get_instance(GameItemType)
    for entity in repo.find_all(recording_db):
        assert repo.find_by_key(recording_db, entity.primary_key()) is entity


def test_find_by_key_accepts_property_or_field_names(recording_db):
    repo = Repository.get_instance(GameItemType)
    core = repo.find_by_key(recording_db, {"GameItemTypeCd": "CORE"})

    assert core is not None
    assert core.game_item_description == "core item"
    assert repo.find_by_key(recording_db, {"game_item_type_cd": "CORE"}) is core
    assert repo.find_by_key(recording_db, {"GameItemTypeCd": "NONE"}) is None


def test_find_all_with_same_db_is_a_cache_hit(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    first = repo.find_all(recording_db)
    second = repo.find_all(recording_db)

    assert second is first
    assert recording_adapter.fetches == ["game_item_type"]


def test_find_all_with_other_db_fetches_again(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    first = repo.find_all(recording_db)
    other = Database(recording_adapter)

    second = repo.find_all(other)

    assert second is not first
    assert recording_adapter.fetches == ["game_item_type", "game_item_type"]


def test_reload_and_connection_change_fetch_again(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)
    repo.find_all(recording_db, reload=True)
    recording_db.use_adapter(recording_adapter)
    repo.find_all(recording_db)

    assert recording_adapter.fetches == ["game_item_type"] * 3


def test_find_all_leaves_connection_as_found(recording_db, recording_adapter):
    Repository.get_instance(GameItem).find_all(recording_db)
    assert not recording_adapter.is_open

    recording_adapter.open()
    Repository.get_instance(GameItemType).find_all(recording_db, reload=True)
    assert recording_adapter.is_open


def test_children_are_resolved_through_foreign_keys(recording_db):
    items = Repository.get_instance(GameItem).find_all(recording_db)
    types = Repository.get_instance(GameItemType).find_all(recording_db)

    helmet, gloves, rock = items
    assert helmet.game_item_type is types[0]
    assert gloves.game_item_type is types[1]
    assert rock.game_item_type is None
    assert all(i.state is EntityState.UNCHANGED for i in items)


def test_resolve_children_with_null_local_key_leaves_property_unset(recording_db):
    repo = Repository.get_instance(GameItem)
    item = GameItem(game_item_id=99)

    repo.resolve_children(item, recording_db)

    assert item.game_item_type is None


def test_resolve_children_with_unknown_key_leaves_property_unset(recording_db):
    item = GameItem(game_item_id=99, game_item_type_cd="GONE")
    Repository.get_instance(GameItem).resolve_children(item, recording_db)
    assert item.game_item_type is None


def test_duplicate_keys_fail_the_load(recording_db, recording_adapter):
    recording_adapter.data["game_item_type"].append(dict(recording_adapter.data["game_item_type"][0]))
    repo = Repository.get_instance(GameItemType)

    with pytest.raises(KeyCollisionError):
        repo.find_all(recording_db)
    assert repo.all_items == []
    assert not recording_adapter.is_open


def test_fetch_failure_leaves_cache_untouched(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    items = repo.find_all(recording_db)
    recording_adapter.fail_fetches_for.add("game_item_type")

    with pytest.raises(FetchError):
        repo.find_all(recording_db, reload=True)

    assert repo.all_items is items
    assert not recording_adapter.is_open


def test_missing_table_is_a_fetch_error(recording_adapter):
    recording_adapter.schemas.pop("game_item_type")
    with pytest.raises(FetchError, match="game_item_type"):
        Repository.get_instance(GameItemType).find_all(Database(recording_adapter))


def test_create_new_is_added_and_cached(recording_db):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)

    new_type = repo.create_new()

    assert new_type.state is EntityState.ADDED
    assert any(item is new_type for item in repo.all_items)


def test_unsaved_added_entities_survive_reload(recording_db):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)
    new_type = repo.create_new()

    items = repo.find_all(recording_db, reload=True)

    assert len(items) == 3
    assert items[-1] is new_type


def test_save_all_inserts_added_entities(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)
    new_type = repo.create_new()
    new_type.game_item_type_cd = "HEAD"
    new_type.game_item_description = "head item"

    items = repo.save_all(recording_db)

    assert recording_adapter.batches == [
        (
            "game_item_type",
            [
                (
                    ChangeKind.INSERT,
                    {
                        "game_item_type_cd": "HEAD",
                        "game_item_description": "head item",
                        "can_heal": 0,
                        "body_part_worn_cd": None,
                    },
                )
            ],
        )
    ]
    head = repo.find_by_key(recording_db, {"GameItemTypeCd": "HEAD"})
    assert head is not None
    assert head in items
    assert head.state is EntityState.UNCHANGED


def test_save_all_picks_up_generated_keys(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItem)
    repo.find_all(recording_db)
    item = repo.create_new()
    item.game_item_name = "boots"

    repo.save_all(recording_db)

    saved = [i for i in repo.all_items if i.game_item_name == "boots"]
    assert len(saved) == 1
    assert saved[0].game_item_id == 101
    assert saved[0].state is EntityState.UNCHANGED


def test_save_all_updates_modified_entities(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    core = repo.find_by_key(recording_db, {"GameItemTypeCd": "CORE"})
    core.body_part_worn_cd = "toes"
    assert core.state is EntityState.MODIFIED

    repo.save_all(recording_db)

    table_name, changes = recording_adapter.batches[0]
    assert table_name == "game_item_type"
    assert [kind for kind, _ in changes] == [ChangeKind.UPDATE]
    reloaded = repo.find_by_key(recording_db, {"GameItemTypeCd": "CORE"})
    assert reloaded.body_part_worn_cd == "toes"
    assert reloaded.state is EntityState.UNCHANGED


def test_save_all_deletes_deleted_entities(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItem)
    rock = repo.find_by_key(recording_db, {"GameItemId": 3})

    repo.delete(rock)
    assert rock.state is EntityState.DELETED
    repo.save_all(recording_db)

    repo.invalidate()
    assert repo.find_by_key(recording_db, {"GameItemId": 3}) is None
    assert len(repo.find_all(recording_db)) == 2


def test_delete_untracked_entity_is_ignored(recording_db):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)
    stranger = GameItemType(game_item_type_cd="X")
    stranger.mark(EntityState.UNCHANGED)

    repo.delete(stranger)

    assert stranger.state is EntityState.UNCHANGED


def test_deleting_an_added_entity_writes_nothing(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    repo.find_all(recording_db)
    draft = repo.create_new()
    repo.delete(draft)

    repo.save_all(recording_db)

    assert recording_adapter.batches == []
    assert all(item is not draft for item in repo.all_items)


def test_batch_keeps_cache_order(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItem)
    helmet, gloves, rock = repo.find_all(recording_db)
    gloves.game_item_name = "mittens"
    first = repo.create_new()
    first.game_item_name = "first"
    repo.delete(rock)
    second = repo.create_new()
    second.game_item_name = "second"

    repo.save_all(recording_db)

    _, changes = recording_adapter.batches[-1]
    assert [(kind, values["game_item_name"]) for kind, values in changes] == [
        (ChangeKind.UPDATE, "mittens"),
        (ChangeKind.DELETE, "rock"),
        (ChangeKind.INSERT, "first"),
        (ChangeKind.INSERT, "second"),
    ]


def test_save_all_saves_children_first_and_once(recording_db, recording_adapter):
    items = Repository.get_instance(GameItem).find_all(recording_db)
    core = items[0].game_item_type
    core.can_heal = 0
    items[0].game_item_name = "visor"
    items[1].game_item_name = "mitts"

    Repository.get_instance(GameItem).save_all(recording_db)

    assert recording_adapter.written_tables() == ["game_item_type", "game_item"]


def test_save_all_on_idle_repository_is_a_no_op(recording_db, recording_adapter):
    assert Repository.get_instance(GameItemType).save_all(recording_db) == []
    assert recording_adapter.fetches == []
    assert recording_adapter.opens == 0


def test_write_failure_keeps_cache(recording_db, recording_adapter):
    repo = Repository.get_instance(GameItemType)
    items = repo.find_all(recording_db)
    items[0].body_part_worn_cd = "toes"
    recording_adapter.fail_writes_for.add("game_item_type")

    with pytest.raises(WriteError, match="game_item_type"):
        repo.save_all(recording_db)

    assert repo.all_items is items
    assert items[0].state is EntityState.MODIFIED
    assert not recording_adapter.is_open


def test_entity_for_row(recording_db):
    repo = Repository.get_instance(GameItemType)
    core, skin = repo.find_all(recording_db)

    assert repo.entity_for_row(core.row) is core
    assert repo.entity_for_row(skin.row) is skin


def test_primary_key_is_bound_from_schema(recording_db):
    Repository.get_instance(GameItemType).find_all(recording_db)
    core = Repository.get_instance(GameItemType).all_items[0]
    assert core.primary_key() == PrimaryKey({"GameItemTypeCd": "CORE"})


@pytest.fixture
def employee_db():
    adapter = RecordingAdapter()
    adapter.add_table(
        "employee",
        [Column("employee_id", "INTEGER"), Column("employee_name", "VARCHAR"), Column("manager_id", "INTEGER")],
        primary_key=("employee_id",),
        rows=[
            {"employee_id": 1, "employee_name": "ada", "manager_id": None},
            {"employee_id": 2, "employee_name": "bob", "manager_id": 1},
            {"employee_id": 3, "employee_name": "cy", "manager_id": 2},
        ],
    )
    adapter.add_foreign_key("employee_manager_fkey", "employee", "manager_id", "employee", "employee_id")
    return Database(adapter)


def test_self_referencing_type_resolves_from_the_load_in_progress(employee_db):
    ada, bob, cy = Repository.get_instance(Employee).find_all(employee_db)

    assert ada.manager is None
    assert bob.manager is ada
    assert cy.manager is bob


def test_self_referencing_type_saves_once(employee_db):
    repo = Repository.get_instance(Employee)
    ada, bob, cy = repo.find_all(employee_db)
    cy.employee_name = "cyrus"

    repo.save_all(employee_db)

    assert employee_db.adapter.written_tables() == ["employee"]


def test_mutually_referencing_types_resolve_into_a_cycle(crew_db, crew_adapter):
    dawn, dusk = Repository.get_instance(Crew).find_all(crew_db)
    ishmael, queequeg = Repository.get_instance(Sailor).all_items

    assert dawn.sailor is ishmael
    assert ishmael.crew is dawn
    assert queequeg.crew is dusk
    assert dusk.sailor is None
    assert all(e.state is EntityState.UNCHANGED for e in (dawn, dusk, ishmael, queequeg))
    assert crew_adapter.fetches == ["crew", "sailor"]
    assert not crew_adapter.is_open


def test_mutually_referencing_types_save_each_table_once(crew_db, crew_adapter):
    dawn, _ = Repository.get_instance(Crew).find_all(crew_db)
    dawn.crew_name = "morning watch"
    dawn.sailor.sailor_name = "ishmael of nantucket"

    Repository.get_instance(Crew).save_all(crew_db)

    assert crew_adapter.written_tables() == ["sailor", "crew"]
    assert crew_adapter.data["crew"][0]["crew_name"] == "morning watch"
    assert crew_adapter.data["sailor"][0]["sailor_name"] == "ishmael of nantucket"
    assert not crew_adapter.is_open


def test_discovered_primary_key_follows_the_loaded_table(crew_db, crew_adapter):
    Repository.get_instance(Sailor).find_all(crew_db)
    assert Sailor.key_field_names() == ("sailor_id",)

    other = RecordingAdapter()
    other.add_table(
        "sailor",
        [Column("sailor_id", "INTEGER"), Column("sailor_name", "VARCHAR"), Column("crew_id", "INTEGER")],
        primary_key=("sailor_name",),
        rows=[{"sailor_id": 10, "sailor_name": "ishmael", "crew_id": None}],
    )
    (ishmael,) = Repository.get_instance(Sailor).find_all(Database(other))

    assert Sailor.key_field_names() == ("sailor_name",)
    assert ishmael.primary_key() == PrimaryKey({"SailorName": "ishmael"})


def test_declared_primary_key_is_not_rebound():
    class Harbor(GameItemType):
        __primary_key__ = ("GameItemDescription",)

    Harbor.bind_primary_key(("game_item_type_cd",))

    assert Harbor.key_field_names() == ("game_item_description",)


def test_load_failure_outside_the_error_taxonomy_is_logged(recording_db, caplog):
    class Dock(GameItemType):
        __primary_key__ = ("NoSuchProperty",)
        __table_name__ = "game_item_type"

    with pytest.raises(ValueError, match="NoSuchProperty"):
        Repository.get_instance(Dock).find_all(recording_db)

    assert "Failed to load Dock" in caplog.text
