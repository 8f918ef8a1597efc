"""Tests for snapshot capture, restore and retention."""

from __future__ import annotations

import json
import os
import sqlite3
import threading

import pytest

from schema_rewind.dialects import SQLiteDialect
from schema_rewind.exceptions import SnapshotError, SnapshotNotFoundError
from schema_rewind.snapshot import SnapshotStore
from tests.helpers import count_rows, index_names, table_names


@pytest.fixture
def store(tmp_path, dialect, database) -> SnapshotStore:
    return SnapshotStore(
        dialect=dialect,
        database=database,
        storage_path=str(tmp_path / "snapshots"),
        system_table_prefixes=["sqlite_", "schema_version_", "schema_rewind_"],
    )


class _FailingDialect(SQLiteDialect):
    """SQLite dialect that fails export or restore for chosen tables."""

    def __init__(self, fail_export=(), fail_restore=()) -> None:
        super().__init__()
        self.fail_export = set(fail_export)
        self.fail_restore = set(fail_restore)

    def export_table(self, conn, table):
        if table in self.fail_export:
            raise sqlite3.OperationalError(f"disk I/O error reading {table}")
        return super().export_table(conn, table)

    def restore_table(self, conn, structure, rows):
        if structure.name in self.fail_restore:
            conn.execute(f'DELETE FROM "{structure.name}"')
            raise sqlite3.IntegrityError(f"constraint failed restoring {structure.name}")
        return super().restore_table(conn, structure, rows)


class _SlowDialect(SQLiteDialect):
    """SQLite dialect whose export of one table waits until released."""

    def __init__(self, slow_table: str) -> None:
        super().__init__()
        self.slow_table = slow_table
        self.release = threading.Event()

    def export_table(self, conn, table):
        if table == self.slow_table:
            self.release.wait(timeout=10)
        return super().export_table(conn, table)


class _TrackedStore(SnapshotStore):
    """Snapshot store that signals when every table capture has returned."""

    def __init__(self, *args, expected: int, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._remaining = expected
        self._count_lock = threading.Lock()
        self.all_returned = threading.Event()

    def _capture_table(self, *args, **kwargs):
        try:
            return super()._capture_table(*args, **kwargs)
        finally:
            with self._count_lock:
                self._remaining -= 1
                if self._remaining == 0:
                    self.all_returned.set()


def _execute(database: str, *statements: str) -> None:
    conn = sqlite3.connect(database)
    try:
        for statement in statements:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


class TestSnapshotCapture:
    """Tests for creating snapshots."""

    def test_captures_user_tables_only(self, store):
        snapshot_id = store.create(label="manual", database_version="1.0.2")
        snapshot = store.get(snapshot_id)
        assert sorted(snapshot.table_names) == ["orders", "users"]
        assert snapshot.total_rows == 5
        assert snapshot.database_version == "1.0.2"
        assert not snapshot.degraded

    def test_layout_on_disk(self, store):
        snapshot_id = store.create(label="layout")
        directory = os.path.join(store.storage_path, snapshot_id)
        assert sorted(os.listdir(directory)) == [
            "metadata.json",
            "orders.rows.json",
            "orders.structure.json",
            "users.rows.json",
            "users.structure.json",
        ]
        with open(os.path.join(directory, "metadata.json")) as f:
            metadata = json.load(f)
        assert metadata["snapshot_id"] == snapshot_id
        assert [t["table"] for t in metadata["tables"]] == ["orders", "users"]

    def test_snapshot_id_embeds_label(self, store):
        snapshot_id = store.create(label="rb 42/x")
        assert snapshot_id.startswith("rb_42_x_")

    def test_parallel_capture(self, tmp_path, dialect, database):
        store = SnapshotStore(
            dialect=dialect,
            database=database,
            storage_path=str(tmp_path / "parallel"),
            system_table_prefixes=["sqlite_", "schema_version_"],
            parallel_threshold=0,
            max_workers=2,
        )
        snapshot = store.get(store.create(label="parallel"))
        assert snapshot.table_names == ["orders", "users"]
        assert snapshot.total_rows == 5

    def test_empty_database(self, tmp_path, dialect):
        store = SnapshotStore(
            dialect=dialect,
            database=str(tmp_path / "blank.db"),
            storage_path=str(tmp_path / "blank"),
        )
        snapshot = store.get(store.create())
        assert snapshot.tables == []


class TestSnapshotRestore:
    """Tests for restoring snapshots."""

    def test_restore_reverts_row_changes(self, store, database):
        snapshot_id = store.create(label="rows")
        _execute(
            database,
            "DELETE FROM orders",
            "INSERT INTO users (id, name) VALUES (4, 'barbara')",
        )
        report = store.restore(snapshot_id)
        assert report.success
        assert report.restored_tables == {"orders": 2, "users": 3}
        assert count_rows(database, "orders") == 2
        assert count_rows(database, "users") == 3

    def test_restore_recreates_dropped_table_and_indexes(self, store, database):
        snapshot_id = store.create(label="drop")
        _execute(database, "DROP INDEX idx_users_name", "DROP TABLE users")
        report = store.restore(snapshot_id)
        assert report.success
        assert "users" in table_names(database)
        assert "idx_users_name" in index_names(database)
        assert count_rows(database, "users") == 3

    def test_restore_recreates_changed_structure(self, store, database):
        snapshot_id = store.create(label="alter")
        _execute(database, "ALTER TABLE users ADD COLUMN email TEXT")
        store.restore(snapshot_id)
        conn = sqlite3.connect(database)
        try:
            columns = [row[1] for row in conn.execute("PRAGMA table_info(users)")]
        finally:
            conn.close()
        assert columns == ["id", "name"]

    def test_restore_twice_yields_same_counts(self, store, database):
        snapshot_id = store.create(label="twice")
        _execute(database, "DELETE FROM orders")
        first = store.restore(snapshot_id)
        second = store.restore(snapshot_id)
        assert first.restored_tables == second.restored_tables
        assert count_rows(database, "orders") == 2

    def test_blob_values_survive(self, tmp_path, dialect):
        database = str(tmp_path / "blobs.db")
        _execute(
            database,
            "CREATE TABLE files (id INTEGER PRIMARY KEY, payload BLOB)",
            "INSERT INTO files (id, payload) VALUES (1, x'00ff10')",
        )
        store = SnapshotStore(dialect, database, storage_path=str(tmp_path / "b"))
        snapshot_id = store.create(label="blobs")
        _execute(database, "UPDATE files SET payload = NULL")
        store.restore(snapshot_id)
        conn = sqlite3.connect(database)
        try:
            payload = conn.execute("SELECT payload FROM files").fetchone()[0]
        finally:
            conn.close()
        assert payload == b"\x00\xff\x10"

    def test_restore_unknown_snapshot(self, store):
        with pytest.raises(SnapshotNotFoundError):
            store.restore("does_not_exist")


class TestSnapshotRetention:
    """Tests for listing, deleting and cleaning up snapshots."""

    def test_list_newest_first(self, store):
        first = store.create(label="first")
        second = store.create(label="second")
        ids = [s.snapshot_id for s in store.list()]
        assert set(ids) == {first, second}
        created = [s.created_at for s in store.list()]
        assert created == sorted(created, reverse=True)

    def test_delete(self, store):
        snapshot_id = store.create()
        assert store.delete(snapshot_id) is True
        assert not store.exists(snapshot_id)
        assert store.delete(snapshot_id) is False

    def test_cleanup_skips_retained(self, store):
        keep = store.create(label="keep")
        drop = store.create(label="drop")
        store.retain(keep)
        deleted = store.cleanup(retention_days=0)
        assert deleted == [drop]
        assert store.exists(keep)

    def test_cleanup_keeps_recent(self, store):
        snapshot_id = store.create()
        assert store.cleanup(retention_days=7) == []
        assert store.exists(snapshot_id)

    def test_manifest_reload_from_disk(self, tmp_path, dialect, database, store):
        snapshot_id = store.create(label="reload")
        fresh = SnapshotStore(dialect, database, storage_path=store.storage_path)
        assert fresh.get(snapshot_id).total_rows == 5


class TestSnapshotFileNames:
    """Tests for table file naming inside a snapshot."""

    def test_colliding_table_names_keep_separate_files(self, tmp_path, dialect):
        database = str(tmp_path / "collide.db")
        _execute(
            database,
            'CREATE TABLE "a b" (id INTEGER PRIMARY KEY)',
            "CREATE TABLE a_b (id INTEGER PRIMARY KEY)",
            'INSERT INTO "a b" (id) VALUES (1)',
            "INSERT INTO a_b (id) VALUES (1), (2), (3)",
        )
        store = SnapshotStore(dialect, database, storage_path=str(tmp_path / "s"))
        snapshot_id = store.create(label="collide")
        snapshot = store.get(snapshot_id)

        files = [c.rows_file for c in snapshot.tables]
        assert len(set(files)) == 2

        _execute(database, 'DELETE FROM "a b"', "DELETE FROM a_b")
        report = store.restore(snapshot_id)
        assert report.success
        assert report.restored_tables == {"a b": 1, "a_b": 3}
        assert count_rows(database, "a_b") == 3

    def test_case_only_difference_gets_suffix(self, tmp_path, dialect):
        database = str(tmp_path / "case.db")
        _execute(
            database,
            'CREATE TABLE "Items" (id INTEGER PRIMARY KEY)',
            'CREATE TABLE "items_" (id INTEGER PRIMARY KEY)',
            'CREATE TABLE "ITEMS?" (id INTEGER PRIMARY KEY)',
        )
        store = SnapshotStore(dialect, database, storage_path=str(tmp_path / "s"))
        snapshot = store.get(store.create(label="case"))
        lowered = [c.rows_file.lower() for c in snapshot.tables]
        assert len(set(lowered)) == 3


class TestPartialSnapshots:
    """Tests for captures and restores where some tables fail."""

    def test_failed_table_degrades_snapshot(self, tmp_path, database):
        store = SnapshotStore(
            _FailingDialect(fail_export={"orders"}),
            database,
            storage_path=str(tmp_path / "s"),
            system_table_prefixes=["sqlite_", "schema_version_", "schema_rewind_"],
        )
        snapshot = store.get(store.create(label="partial"))
        assert snapshot.degraded
        assert list(snapshot.failed_tables) == ["orders"]
        assert "disk I/O error" in snapshot.failed_tables["orders"]
        assert snapshot.table_names == ["users"]

        report = store.restore(snapshot.snapshot_id)
        assert report.success
        assert report.skipped_tables == ["orders"]
        assert report.restored_tables == {"users": 3}

    def test_every_table_failing_raises_and_leaves_nothing(self, tmp_path, database):
        storage = tmp_path / "s"
        store = SnapshotStore(
            _FailingDialect(fail_export={"orders", "users"}),
            database,
            storage_path=str(storage),
            system_table_prefixes=["sqlite_", "schema_version_", "schema_rewind_"],
        )
        with pytest.raises(SnapshotError) as exc_info:
            store.create(label="doomed")
        assert set(exc_info.value.details["failed_tables"]) == {"orders", "users"}
        assert os.listdir(storage) == []
        assert store.list() == []

    def test_restore_continues_past_failed_table(self, tmp_path, store, database):
        snapshot_id = store.create(label="restore")
        _execute(
            database,
            "DELETE FROM orders",
            "INSERT INTO users (id, name) VALUES (4, 'barbara')",
        )
        failing = SnapshotStore(
            _FailingDialect(fail_restore={"users"}),
            database,
            storage_path=store.storage_path,
        )
        report = failing.restore(snapshot_id)

        assert not report.success
        assert report.restored_tables == {"orders": 2}
        assert "constraint failed" in report.failed_tables["users"]
        assert "1 failed" in report.summary()
        assert count_rows(database, "orders") == 2
        # The failed table's transaction was rolled back
        assert count_rows(database, "users") == 4


class TestCaptureTimeout:
    """Tests for parallel captures that outlive the capture timeout."""

    def test_timed_out_table_writes_no_files(self, tmp_path, database):
        dialect = _SlowDialect(slow_table="orders")
        store = _TrackedStore(
            dialect,
            database,
            storage_path=str(tmp_path / "s"),
            system_table_prefixes=["sqlite_", "schema_version_", "schema_rewind_"],
            parallel_threshold=0,
            max_workers=2,
            capture_timeout_seconds=1.0,
            expected=2,
        )
        try:
            snapshot_id = store.create(label="slow")
        finally:
            dialect.release.set()
        assert store.all_returned.wait(timeout=10)

        snapshot = store.get(snapshot_id)
        assert snapshot.table_names == ["users"]
        assert "timed out" in snapshot.failed_tables["orders"]
        directory = os.path.join(store.storage_path, snapshot_id)
        assert sorted(os.listdir(directory)) == [
            "metadata.json",
            "users.rows.json",
            "users.structure.json",
        ]


class TestSnapshotIds:
    """Tests for snapshot ids that do not name a snapshot directory."""

    @pytest.mark.parametrize("snapshot_id", ["..", ".", "", "../snapshots", "a/b", "x.y"])
    def test_delete_refuses_malformed_ids(self, tmp_path, store, snapshot_id):
        keep = store.create(label="keep")
        sibling = tmp_path / "sibling.txt"
        sibling.write_text("still here")

        assert store.delete(snapshot_id) is False
        assert sibling.read_text() == "still here"
        assert os.path.isdir(store.storage_path)
        assert store.exists(keep)

    @pytest.mark.parametrize("snapshot_id", ["..", ".", "../outside"])
    def test_get_and_restore_reject_malformed_ids(self, store, snapshot_id):
        with pytest.raises(SnapshotNotFoundError):
            store.get(snapshot_id)
        with pytest.raises(SnapshotNotFoundError):
            store.restore(snapshot_id)

    def test_delete_requires_manifest(self, store):
        stray = os.path.join(store.storage_path, "not_a_snapshot")
        os.makedirs(stray)
        assert store.delete("not_a_snapshot") is False
        assert os.path.isdir(stray)

    def test_symlinked_directory_is_not_followed(self, tmp_path, store):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "metadata.json").write_text("{}")
        os.symlink(outside, os.path.join(store.storage_path, "linked"))

        assert store.delete("linked") is False
        assert (outside / "metadata.json").exists()

    def test_generated_ids_drop_dots_from_labels(self, store):
        snapshot_id = store.create(label="v1.0.2")
        assert snapshot_id.startswith("v1_0_2_")
        assert store.exists(snapshot_id)
