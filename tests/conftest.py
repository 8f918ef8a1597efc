"""Shared fixtures for schema-rewind tests."""

from __future__ import annotations

import sqlite3

import pytest

from schema_rewind import RollbackOrchestrator, StaticEnvironmentClassifier
from schema_rewind.config import load_config_from_dict
from schema_rewind.dialects import SQLiteDialect
from schema_rewind.migrations import VersionLedger
from tests.helpers import QUIET_HOURS, write_undo_script


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def database(tmp_path, dialect) -> str:
    """
    A SQLite database migrated to 1.0.2:

    - 1.0.0 creates ``users``
    - 1.0.1 creates ``orders`` (foreign key to users)
    - 1.0.2 adds the ``idx_users_name`` index
    """
    path = str(tmp_path / "app.db")
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
        INSERT INTO users (id, name) VALUES (1, 'ada'), (2, 'grace'), (3, 'linus');
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id),
            total REAL NOT NULL
        );
        INSERT INTO orders (id, user_id, total) VALUES (1, 1, 9.5), (2, 2, 12.0);
        CREATE INDEX idx_users_name ON users(name);
        """
    )
    conn.close()

    ledger = VersionLedger(dialect, path)
    ledger.ensure_schema()
    ledger.record("1.0.0", "create users table")
    ledger.record("1.0.1", "add orders table")
    ledger.record("1.0.2", "add users name index")
    return path


@pytest.fixture
def undo_dir(tmp_path) -> str:
    """Undo scripts directory holding a script for 1.0.2 only."""
    d = tmp_path / "undo"
    d.mkdir()
    write_undo_script(
        str(d),
        "U1.0.2__drop_users_name_index_undo.sql",
        "-- Undo 1.0.2\nDROP INDEX IF EXISTS idx_users_name;\n",
    )
    return str(d)


@pytest.fixture
def orders_undo(undo_dir) -> str:
    """Add the undo script for 1.0.1, which drops the orders table."""
    return write_undo_script(
        undo_dir,
        "U1.0.1__drop_orders_table.sql",
        "/* Undo 1.0.1 */\nDROP TABLE orders;\n",
    )


@pytest.fixture
def make_config(tmp_path, database, undo_dir):
    """Build a config for the test database; keyword args override sections."""

    def _make(**sections: dict):
        data = {
            "database": {"path": database},
            "rollback": {"undo_script_dirs": [undo_dir]},
            "snapshot": {"storage_path": str(tmp_path / "snapshots")},
            "safety": {"restricted_windows": []},
            "audit": {"exporters": []},
        }
        for section, values in sections.items():
            data.setdefault(section, {}).update(values)
        return load_config_from_dict(data)

    return _make


@pytest.fixture
def make_orchestrator(make_config):
    """Build an orchestrator for the test database with a fixed environment."""

    def _make(production: bool = False, clock=None, **sections: dict) -> RollbackOrchestrator:
        orchestrator = RollbackOrchestrator(
            config=make_config(**sections),
            classifier=StaticEnvironmentClassifier(production=production),
            clock=clock or (lambda: QUIET_HOURS),
        )
        # Keep test output clean
        orchestrator.audit.clear_exporters()
        return orchestrator

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> RollbackOrchestrator:
    return make_orchestrator()


@pytest.fixture
def ledger(database, dialect) -> VersionLedger:
    return VersionLedger(dialect, database)
