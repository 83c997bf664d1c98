"""
Tests for worldstore/storage.py -- EntityStore CRUD.

Validates:
    - create / add / get / exists round-trip of every column
    - update refreshes modified_at and reports missing ids
    - type-specific fields type mismatch is rejected without writing
    - delete removes the row, cleans connections, nulls forked_from
    - list / count filters and paging
    - reads wait for another thread's open transaction
"""

import threading
import time
from datetime import datetime, timedelta, timezone

from worldstore.errors import NotFoundError, StorageOperationError, ValidationError
from worldstore.models.entity import Connection, Entity
from worldstore.models.entity_type import EntityType
from worldstore.models.type_specific_fields import TypeSpecificFields
from worldstore.result import Fail, Ok
from worldstore.search import SearchQuery
from worldstore.storage import EntityFilter


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _character(store, name="Aria Vell", **values):
    return store.create(EntityType.CHARACTER, name, world_id="w1", **values).unwrap()


def _raw(store, entity_id, column):
    row = store.database.connection.execute(
        f"SELECT {column} FROM entities WHERE id = ?", (entity_id,)
    ).fetchone()
    return row[0]


# ---------------------------------------------------------------------------
# Create / get
# ---------------------------------------------------------------------------

class TestCreate:
    """Creating and reading back entities."""

    def test_create_assigns_id_and_timestamps(self, store):
        entity = _character(store)
        assert entity.id.startswith("aria-vell-")
        assert entity.created_at == entity.modified_at
        assert entity.created_at.tzinfo is not None
        assert entity.type_specific_fields == TypeSpecificFields.create_empty(EntityType.CHARACTER)

    def test_get_round_trip(self, store):
        fields = TypeSpecificFields(EntityType.CHARACTER, {"appearance": "Scarred", "motivation": "Gold"})
        created = _character(
            store,
            description="A smuggler",
            secrets="Works for the crown",
            tags=["rogue", "ally"],
            campaign_id="c1",
            type_specific_fields=fields,
        )
        loaded = store.get(created.id).unwrap()
        assert loaded.name == "Aria Vell"
        assert loaded.type is EntityType.CHARACTER
        assert loaded.description == "A smuggler"
        assert loaded.secrets == "Works for the crown"
        assert loaded.tags == ["rogue", "ally"]
        assert loaded.world_id == "w1"
        assert loaded.campaign_id == "c1"
        assert loaded.type_specific_fields == fields
        assert loaded.created_at == created.created_at
        assert loaded.modified_at == created.modified_at

    def test_session_columns(self, store):
        when = datetime(2025, 3, 1, 19, 30, tzinfo=timezone.utc)
        session = store.create(
            "session", "Session 4", world_id="w1",
            summary="The heist", notes="Bring dice", session_date=when, duration=180,
        ).unwrap()
        loaded = store.get(session.id).unwrap()
        assert loaded.summary == "The heist"
        assert loaded.notes == "Bring dice"
        assert loaded.session_date == when
        assert loaded.duration == 180

    def test_columns_of_other_types_are_not_stored(self, store):
        entity = _character(store, content="stray", summary="stray", duration=30)
        loaded = store.get(entity.id).unwrap()
        assert loaded.content is None
        assert loaded.summary is None
        assert loaded.duration is None

    def test_empty_fields_stored_as_null(self, store):
        entity = _character(store)
        assert _raw(store, entity.id, "type_specific_fields") is None
        loaded = store.get(entity.id).unwrap()
        assert loaded.type_specific_fields is not None
        assert loaded.type_specific_fields.is_empty()

    def test_get_missing_is_ok_none(self, store):
        assert store.get("nope") == Ok(None)

    def test_exists(self, store):
        entity = _character(store)
        assert store.exists(entity.id) == Ok(True)
        assert store.exists("nope") == Ok(False)

    def test_duplicate_id_is_storage_error(self, store):
        entity = _character(store)
        result = store.add(entity)
        assert isinstance(result, Fail)
        assert isinstance(result.error, StorageOperationError)

    def test_blank_name_is_validation_error(self, store):
        result = store.create("note", "   ", world_id="w1")
        assert isinstance(result, Fail)
        assert isinstance(result.error, ValidationError)

    def test_unknown_type_is_validation_error(self, store):
        result = store.create("dragon", "Smaug", world_id="w1")
        assert isinstance(result, Fail)
        assert isinstance(result.error, ValidationError)


# ---------------------------------------------------------------------------
# Type mismatch
# ---------------------------------------------------------------------------

class TestTypeMismatch:
    """Fields for one type may not be attached to an entity of another."""

    def test_create_rejects_mismatch(self, store):
        wrong = TypeSpecificFields(EntityType.FACTION, {"ideology": "Order"})
        result = store.create("character", "Aria", world_id="w1", type_specific_fields=wrong)
        assert isinstance(result, Fail)
        assert isinstance(result.error, ValidationError)
        assert store.count().unwrap() == 0

    def test_update_rejects_mismatch_without_writing(self, store):
        entity = _character(store, description="original")
        wrong = TypeSpecificFields(EntityType.LOCATION, {"atmosphere": "Grim"})
        result = store.update(entity.model_copy(update={
            "description": "changed", "type_specific_fields": wrong,
        }))
        assert isinstance(result, Fail)
        assert isinstance(result.error, ValidationError)
        assert store.get(entity.id).unwrap().description == "original"

    def test_update_rejects_changed_type(self, store):
        note = store.create("note", "Ledger", world_id="w1", content="debts").unwrap()
        retyped = note.model_copy(update={
            "type": EntityType.CHARACTER,
            "type_specific_fields": TypeSpecificFields(EntityType.CHARACTER, {"appearance": "Tall"}),
        })
        result = store.update(retyped)
        assert isinstance(result, Fail)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "type"

        loaded = store.get(note.id).unwrap()
        assert loaded.type is EntityType.NOTE
        assert loaded.content == "debts"
        assert loaded.modified_at == note.modified_at


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdate:
    """update() semantics."""

    def test_update_persists_and_refreshes_modified_at(self, store):
        entity = _character(store)
        time.sleep(0.002)
        fields = entity.fields_or_empty().set("personality", "Wry").unwrap()
        updated = store.update(entity.model_copy(update={
            "description": "Now a captain",
            "type_specific_fields": fields,
        })).unwrap()
        assert updated.modified_at > entity.modified_at
        assert updated.created_at == entity.created_at

        loaded = store.get(entity.id).unwrap()
        assert loaded.description == "Now a captain"
        assert loaded.type_specific_fields.get("personality") == "Wry"
        assert loaded.modified_at == updated.modified_at

    def test_update_refreshes_even_without_changes(self, store):
        entity = _character(store)
        time.sleep(0.002)
        updated = store.update(entity).unwrap()
        assert updated.modified_at > entity.modified_at

    def test_update_missing_is_not_found(self, store):
        ghost = Entity.new("note", "Ghost", world_id="w1")
        result = store.update(ghost)
        assert isinstance(result, Fail)
        assert isinstance(result.error, NotFoundError)
        assert store.exists(ghost.id) == Ok(False)

    def test_clearing_fields_stores_null(self, store):
        fields = TypeSpecificFields(EntityType.CHARACTER, {"appearance": "Tall"})
        entity = _character(store, type_specific_fields=fields)
        assert _raw(store, entity.id, "type_specific_fields") == '{"appearance":"Tall"}'
        cleared = fields.set("appearance", None).unwrap()
        store.update(entity.model_copy(update={"type_specific_fields": cleared})).unwrap()
        assert _raw(store, entity.id, "type_specific_fields") is None

    def test_returned_entity_does_not_share_lists(self, store):
        other = _character(store, "Bram")
        entity = _character(
            store, tags=["rogue"],
            connections=[Connection(id=other.id, name=other.name, type=other.type)],
        )
        updated = store.update(entity).unwrap()
        assert updated.tags is not entity.tags
        assert updated.connections is not entity.connections

        entity.tags.append("traitor")
        entity.connections.clear()
        assert updated.tags == ["rogue"]
        assert updated.connection_ids() == [other.id]


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDelete:
    """delete() and reference cleanup."""

    def test_delete_removes_entity(self, store):
        entity = _character(store)
        assert store.delete(entity.id) == Ok(None)
        assert store.get(entity.id) == Ok(None)

    def test_delete_missing_is_not_found(self, store):
        result = store.delete("nope")
        assert isinstance(result, Fail)
        assert isinstance(result.error, NotFoundError)

    def test_delete_strips_connections(self, store):
        a = _character(store, "Aria")
        c = _character(store, "Corin")
        b = store.create(
            "location", "Harbor", world_id="w1",
            connections=[
                Connection(id=a.id, name=a.name, type=a.type),
                Connection(id=c.id, name=c.name, type=c.type),
            ],
        ).unwrap()

        store.delete(a.id).unwrap()

        assert store.get(a.id) == Ok(None)
        loaded = store.get(b.id).unwrap()
        assert loaded.connection_ids() == [c.id]
        assert loaded.modified_at == b.modified_at

    def test_delete_leaves_ids_that_merely_contain_the_deleted_id(self, store):
        short = Entity.new("character", "Ash", world_id="w1").model_copy(update={"id": "ash"})
        longer = Entity.new("character", "Ashen", world_id="w1").model_copy(update={"id": "ash-2"})
        store.add(short).unwrap()
        store.add(longer).unwrap()
        holder = _character(store, "Bram")
        store.add_connection(holder.id, short).unwrap()
        store.add_connection(holder.id, longer).unwrap()

        store.delete("ash").unwrap()

        assert store.get(holder.id).unwrap().connection_ids() == ["ash-2"]

    def test_delete_nulls_forked_from(self, store):
        original = _character(store, "Aria")
        fork = _character(store, "Aria (alt)", forked_from=original.id)
        store.delete(original.id).unwrap()
        loaded = store.get(fork.id).unwrap()
        assert loaded is not None
        assert loaded.forked_from is None

    def test_delete_removes_from_search(self, store):
        entity = _character(store, "Zephyrine")
        assert store.search_text("zephyrine").unwrap().total == 1
        store.delete(entity.id).unwrap()
        assert store.search_text("zephyrine").unwrap().total == 0


class TestConnections:
    """add_connection()."""

    def test_add_connection(self, store):
        a = _character(store, "Aria")
        b = _character(store, "Bram")
        updated = store.add_connection(a.id, b).unwrap()
        assert updated.connections == [Connection(id=b.id, name="Bram", type=EntityType.CHARACTER)]
        assert store.get(a.id).unwrap().connection_ids() == [b.id]

    def test_add_connection_twice_is_noop(self, store):
        a = _character(store, "Aria")
        b = _character(store, "Bram")
        store.add_connection(a.id, b).unwrap()
        assert store.add_connection(a.id, b).unwrap().connection_ids() == [b.id]

    def test_add_connection_missing_source(self, store):
        b = _character(store, "Bram")
        result = store.add_connection("nope", b)
        assert isinstance(result, Fail)
        assert isinstance(result.error, NotFoundError)


# ---------------------------------------------------------------------------
# List / count
# ---------------------------------------------------------------------------

class TestList:
    """list() and count() with filters."""

    def _populate(self, store):
        store.create("character", "Aria", world_id="w1", tags=["ally", "rogue"]).unwrap()
        store.create("character", "Bram", world_id="w1", campaign_id="c1", tags=["ally"]).unwrap()
        store.create("location", "Harbor", world_id="w1", campaign_id="c1").unwrap()
        store.create("note", "Rumors", world_id="w2", content="Whispers").unwrap()

    def test_count_all(self, store):
        self._populate(store)
        assert store.count().unwrap() == 4

    def test_filter_by_world(self, store):
        self._populate(store)
        page = store.list(EntityFilter(world_id="w2")).unwrap()
        assert [e.name for e in page.items] == ["Rumors"]

    def test_filter_by_type(self, store):
        self._populate(store)
        names = {e.name for e in store.list(EntityFilter(types=(EntityType.CHARACTER,))).unwrap().items}
        assert names == {"Aria", "Bram"}

    def test_filter_by_tags_requires_all(self, store):
        self._populate(store)
        assert store.count(EntityFilter(tags=("ally",))).unwrap() == 2
        page = store.list(EntityFilter(tags=("ally", "rogue"))).unwrap()
        assert [e.name for e in page.items] == ["Aria"]

    def test_filter_by_campaign(self, store):
        self._populate(store)
        in_campaign = {e.name for e in store.list(EntityFilter(campaign_id="c1")).unwrap().items}
        assert in_campaign == {"Bram", "Harbor"}
        world_level = {e.name for e in store.list(EntityFilter(world_id="w1", campaign_id=None)).unwrap().items}
        assert world_level == {"Aria"}

    def test_exclude_forked(self, store):
        original = _character(store, "Aria")
        _character(store, "Aria (alt)", forked_from=original.id)
        assert store.count().unwrap() == 2
        assert store.count(EntityFilter(include_forked=False)).unwrap() == 1

    def test_most_recently_modified_first(self, store):
        first = _character(store, "First")
        time.sleep(0.002)
        _character(store, "Second")
        time.sleep(0.002)
        store.update(first).unwrap()
        names = [e.name for e in store.list().unwrap().items]
        assert names == ["First", "Second"]

    def test_paging(self, store):
        for i in range(5):
            store.create("note", f"Note {i}", world_id="w1").unwrap()
        page = store.list(limit=2, offset=0).unwrap()
        assert len(page.items) == 2
        assert page.total == 5
        assert page.has_more
        last = store.list(limit=2, offset=4).unwrap()
        assert len(last.items) == 1
        assert not last.has_more

    def test_mixed_offsets_order_by_instant(self, store):
        later_local = datetime(2025, 1, 1, 11, 0, tzinfo=timezone(timedelta(hours=5)))
        newest_utc = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
        older = Entity.new("note", "Storm", world_id="w1").model_copy(
            update={"created_at": later_local, "modified_at": later_local})
        newest = Entity.new("note", "Storm", world_id="w1").model_copy(
            update={"created_at": newest_utc, "modified_at": newest_utc})
        store.add(older).unwrap()
        store.add(newest).unwrap()

        assert [e.id for e in store.list(limit=1).unwrap().items] == [newest.id]
        assert store.search(SearchQuery(text="storm", limit=1)).unwrap().ids == [newest.id]
        assert store.get(older.id).unwrap().modified_at == later_local


class TestConcurrentReads:
    """Reads from one thread while another holds a transaction."""

    def test_read_does_not_see_uncommitted_delete(self, store):
        hero = _character(store, "Hero")
        deleted = threading.Event()

        def writer():
            try:
                with store.database.transaction() as conn:
                    conn.execute("DELETE FROM entities WHERE id = ?", (hero.id,))
                    deleted.set()
                    time.sleep(0.1)
                    raise RuntimeError("abort")
            except RuntimeError:
                pass

        thread = threading.Thread(target=writer)
        thread.start()
        assert deleted.wait(timeout=5)
        loaded = store.get(hero.id).unwrap()
        thread.join(timeout=5)

        assert loaded is not None
        assert loaded.name == "Hero"
        assert store.database.connection.in_transaction is False
