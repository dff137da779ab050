"""Tests for the SQLite local datastore and its queue bookkeeping."""

import pytest

from macrosync.errors import UnknownTableError
from macrosync.storage import SQLiteStore, validate_table_name
from macrosync.types import SYNC_CONFIRMED, SYNC_PENDING, SyncAction


class TestSchema:
    def test_reopen_existing_database(self, tmp_path):
        path = tmp_path / "db.sqlite"
        first = SQLiteStore(path)
        first.record_create("foods", {"id": "f1", "name": "Oats"})
        second = SQLiteStore(path)
        assert second.get("foods", "f1")["name"] == "Oats"

    def test_table_name_allowlist(self):
        assert validate_table_name("foods") == "foods"
        assert validate_table_name("settings") == "settings"
        with pytest.raises(ValueError):
            validate_table_name("foods; DROP TABLE foods")


class TestLocalMutations:
    def test_create_enqueues_atomically(self, store):
        row = store.record_create("foods", {"id": "f1", "name": "Oats", "user_id": "local-user"})
        assert row["synced"] == SYNC_PENDING
        assert row["created_at"] and row["updated_at"]

        entries = store.queue_entries()
        assert len(entries) == 1
        assert entries[0].action is SyncAction.CREATE
        assert entries[0].record_id == "f1"
        assert entries[0].payload["name"] == "Oats"

    def test_create_assigns_id(self, store):
        row = store.record_create("goals", {"calories": 2000})
        assert row["id"]
        assert store.get("goals", row["id"])["calories"] == 2000

    def test_create_unknown_table(self, store):
        with pytest.raises(UnknownTableError):
            store.record_create("recipes", {"id": "r1"})
        assert store.pending_count() == 0

    def test_update_merges_and_enqueues(self, store):
        store.record_create("foods", {"id": "f1", "name": "Oats", "calories": 100})
        updated = store.record_update("foods", "f1", {"calories": 150})
        assert updated["name"] == "Oats"
        assert updated["calories"] == 150
        actions = [e.action for e in store.queue_entries()]
        assert actions == [SyncAction.CREATE, SyncAction.UPDATE]

    def test_update_missing_record(self, store):
        assert store.record_update("foods", "missing", {"name": "x"}) is None
        assert store.pending_count() == 0

    def test_delete_enqueues_id_only(self, store):
        store.record_create("foods", {"id": "f1"})
        assert store.record_delete("foods", "f1") is True
        assert store.get("foods", "f1") is None
        delete = store.queue_entries()[-1]
        assert delete.action is SyncAction.DELETE
        assert delete.payload == {"id": "f1"}

    def test_delete_missing_record(self, store):
        assert store.record_delete("foods", "nope") is False
        assert store.pending_count() == 0


class TestSystemOwnedRows:
    def test_global_exercise_changes_stay_local(self, store):
        """Exercises without an owner are edited and deleted locally only."""
        store.apply_remote_rows("workout_exercises_def", [{"id": "squat", "user_id": None}])

        updated = store.record_update("workout_exercises_def", "squat", {"notes": "low bar"})
        assert updated["notes"] == "low bar"
        assert store.get("workout_exercises_def", "squat")["synced"] == SYNC_CONFIRMED

        assert store.record_delete("workout_exercises_def", "squat") is True
        assert store.get("workout_exercises_def", "squat") is None
        assert store.queue_entries() == []

    def test_owned_exercise_changes_are_queued(self, store):
        store.apply_remote_rows("workout_exercises_def", [{"id": "curl", "user_id": "u123"}])

        store.record_update("workout_exercises_def", "curl", {"notes": "slow"})
        store.record_delete("workout_exercises_def", "curl")

        actions = [e.action for e in store.queue_entries()]
        assert actions == [SyncAction.UPDATE, SyncAction.DELETE]

    def test_other_tables_queue_ownerless_rows(self, store):
        store.apply_remote_rows("foods", [{"id": "f1", "user_id": None}])
        store.record_update("foods", "f1", {"name": "Rice"})
        assert store.pending_count() == 1


class TestRemoteRows:
    def test_apply_marks_synced_and_skips_queue(self, store):
        applied = store.apply_remote_rows(
            "foods", [{"id": "f1", "name": "Rice"}, {"name": "no id"}]
        )
        assert applied == 1
        assert store.get("foods", "f1")["synced"] == SYNC_CONFIRMED
        assert store.pending_count() == 0

    def test_remote_row_overwrites_local(self, store):
        store.record_create("foods", {"id": "f1", "name": "Local"})
        store.apply_remote_rows("foods", [{"id": "f1", "name": "Remote"}])
        record = store.get("foods", "f1")
        assert record["name"] == "Remote"
        assert record["synced"] == SYNC_CONFIRMED

    def test_ids_by_synced(self, store):
        store.apply_remote_rows("foods", [{"id": "b"}, {"id": "a"}])
        store.record_create("foods", {"id": "c"})
        assert store.ids_by_synced("foods", SYNC_CONFIRMED) == ["a", "b"]
        assert store.ids_by_synced("foods", SYNC_PENDING) == ["c"]

    def test_delete_with_dependents(self, store):
        """Confirmed ingredients of a removed food go with it; pending ones stay."""
        store.apply_remote_rows("foods", [{"id": "f1"}, {"id": "f2"}])
        store.apply_remote_rows(
            "food_ingredients",
            [
                {"id": "i1", "parent_food_id": "f1"},
                {"id": "i2", "parent_food_id": "f2"},
            ],
        )
        store.record_create("food_ingredients", {"id": "i3", "parent_food_id": "f1"})

        assert store.delete_with_dependents("foods", ["f1"]) == 1
        assert store.get("foods", "f1") is None
        assert store.get("foods", "f2") is not None
        assert store.get("food_ingredients", "i1") is None
        assert store.get("food_ingredients", "i2") is not None
        assert store.get("food_ingredients", "i3") is not None

    def test_delete_with_dependents_covers_ingredient_references(self, store):
        """A food used as an ingredient takes the confirmed ingredient row with it."""
        store.apply_remote_rows("foods", [{"id": "recipe"}, {"id": "egg"}])
        store.apply_remote_rows(
            "food_ingredients",
            [{"id": "i1", "parent_food_id": "recipe", "child_food_id": "egg"}],
        )

        assert store.delete_with_dependents("foods", ["egg"]) == 1
        assert store.get("food_ingredients", "i1") is None
        assert store.get("foods", "recipe") is not None

    def test_delete_with_dependents_empty(self, store):
        assert store.delete_with_dependents("foods", []) == 0


class TestQueueBookkeeping:
    def test_complete_marks_synced(self, store):
        store.record_create("foods", {"id": "f1"})
        entry = store.queue_entries()[0]
        store.complete_entry(entry)
        assert store.pending_count() == 0
        assert store.get("foods", "f1")["synced"] == SYNC_CONFIRMED

    def test_complete_keeps_pending_while_other_entries_remain(self, store):
        store.record_create("foods", {"id": "f1"})
        store.record_update("foods", "f1", {"name": "later edit"})
        create = store.queue_entries()[0]
        store.complete_entry(create)
        assert store.pending_count() == 1
        assert store.get("foods", "f1")["synced"] == SYNC_PENDING

    def test_complete_without_marking(self, store):
        store.record_create("foods", {"id": "f1"})
        store.complete_entry(store.queue_entries()[0], mark_synced=False)
        assert store.get("foods", "f1")["synced"] == SYNC_PENDING

    def test_discard_removes_row_and_all_entries(self, store):
        store.record_create("workout_log_entries", {"id": "e1", "workout_id": "null"})
        store.record_update("workout_log_entries", "e1", {"reps": 5})
        store.record_create("workout_log_entries", {"id": "e2", "workout_id": "w1"})

        store.discard_entry(store.queue_entries()[0])
        assert store.get("workout_log_entries", "e1") is None
        assert [e.record_id for e in store.queue_entries()] == ["e2"]

    def test_record_failure(self, store):
        store.record_create("foods", {"id": "f1"})
        entry = store.queue_entries()[0]
        assert store.record_queue_failure(entry, "boom") == 1
        assert store.record_queue_failure(entry, "x" * 1000) == 2
        stored = store.queue_entries()[0]
        assert stored.attempt_count == 2
        assert len(stored.last_error) == 500
        assert stored.last_attempt_at is not None

    def test_queue_fifo_order(self, store):
        store.enqueue("foods", SyncAction.CREATE, {"id": "late"}, enqueued_at=2000)
        store.enqueue("foods", SyncAction.CREATE, {"id": "early"}, enqueued_at=1000)
        assert [e.record_id for e in store.queue_entries()] == ["early", "late"]

    def test_queue_status(self, store):
        store.record_create("foods", {"id": "f1"})
        store.record_create("logs", {"id": "l1"})
        store.record_delete("logs", "l1")
        store.record_queue_failure(store.queue_entries()[0], "boom")

        status = store.queue_status()
        assert status["pending"] == 3
        assert status["failing"] == 1
        assert status["by_table"] == {"foods": 1, "logs": 2}
        assert status["by_action"] == {"create": 2, "delete": 1}


class TestSettings:
    def test_missing_setting(self, store):
        assert store.get_setting() is None

    def test_save_and_overwrite(self, store):
        store.save_setting({"meals": [{"id": "m1", "name": "Breakfast"}]})
        store.save_setting({"meals": []})
        assert store.get_setting() == {"meals": []}
