"""
SQLite Dialect Adapter
~~~~~~~~~~~~~~~~~~~~~~

Dialect adapter for SQLite databases using the standard library driver.

Connections are opened with ``isolation_level=None`` so that every
transaction boundary is explicit. File databases are switched to WAL
journaling so ledger and audit readers are not blocked by a running
rollback.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from typing import Any

from schema_rewind.dialects.base import (
    DialectAdapter,
    LockRow,
    SessionActivity,
    TableStructure,
)
from schema_rewind.exceptions import DialectError

__all__ = ["SQLiteDialect", "quote_identifier"]

logger = logging.getLogger(__name__)

_PROGRESS_STEPS = 1000


def quote_identifier(name: str) -> str:
    """Quote an SQL identifier for SQLite."""
    return '"' + name.replace('"', '""') + '"'


class SQLiteDialect(DialectAdapter):
    """
    Dialect adapter for SQLite.

    SQLite has no session catalog. Session activity is inferred from the
    database write lock: a probe connection that cannot begin an immediate
    transaction means another connection holds an open write transaction.
    The active connection count is not observable and is reported as 1.
    """

    @property
    def name(self) -> str:
        return "sqlite"

    # ── Connections & Transactions ───────────────────────────────

    def connect(self, database: str, timeout: float = 5.0) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                database,
                timeout=timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            if database != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            raise DialectError(f"Cannot open SQLite database {database}: {exc}") from exc
        return conn

    def begin(self, conn: sqlite3.Connection) -> None:
        conn.execute("BEGIN IMMEDIATE")

    def commit(self, conn: sqlite3.Connection) -> None:
        conn.execute("COMMIT")

    def rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def in_transaction(self, conn: sqlite3.Connection) -> bool:
        return conn.in_transaction

    def set_foreign_keys(self, conn: sqlite3.Connection, enabled: bool) -> None:
        conn.execute(f"PRAGMA foreign_keys={'ON' if enabled else 'OFF'}")

    def database_identity(self, database: str) -> str:
        if database == ":memory:":
            return database
        return os.path.abspath(database)

    @property
    def storage_errors(self) -> tuple[type[Exception], ...]:
        return (sqlite3.Error,)

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name)

    # ── Introspection ────────────────────────────────────────────

    def list_tables(self, conn: sqlite3.Connection) -> list[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [row[0] for row in rows]

    def describe_table(self, conn: sqlite3.Connection, table: str) -> TableStructure:
        quoted = quote_identifier(table)
        columns = [
            {
                "name": row["name"],
                "type": row["type"],
                "notnull": bool(row["notnull"]),
                "default": row["dflt_value"],
                "pk": row["pk"],
            }
            for row in conn.execute(f"PRAGMA table_info({quoted})").fetchall()
        ]
        if not columns:
            raise DialectError(f"Table does not exist: {table}")

        primary_keys = [
            c["name"] for c in sorted(columns, key=lambda c: c["pk"]) if c["pk"]
        ]
        foreign_keys = [
            {
                "column": row["from"],
                "ref_table": row["table"],
                "ref_column": row["to"],
            }
            for row in conn.execute(f"PRAGMA foreign_key_list({quoted})").fetchall()
        ]
        ddl_row = conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        ).fetchone()
        indexes = [
            row[0]
            for row in conn.execute(
                "SELECT sql FROM sqlite_master "
                "WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL "
                "ORDER BY name",
                (table,),
            ).fetchall()
        ]
        return TableStructure(
            name=table,
            columns=columns,
            primary_keys=primary_keys,
            foreign_keys=foreign_keys,
            ddl=ddl_row[0] if ddl_row else "",
            indexes=indexes,
        )

    def foreign_key_violations(self, conn: sqlite3.Connection) -> list[dict[str, Any]]:
        return [
            {
                "table": row[0],
                "rowid": row[1],
                "parent": row[2],
                "fkid": row[3],
            }
            for row in conn.execute("PRAGMA foreign_key_check").fetchall()
        ]

    # ── Export & Restore ─────────────────────────────────────────

    def export_table(self, conn: sqlite3.Connection, table: str) -> list[dict[str, Any]]:
        cursor = conn.execute(f"SELECT * FROM {quote_identifier(table)}")
        names = [d[0] for d in cursor.description]
        return [dict(zip(names, row)) for row in cursor.fetchall()]

    def restore_table(
        self,
        conn: sqlite3.Connection,
        structure: TableStructure,
        rows: list[dict[str, Any]],
    ) -> int:
        quoted = quote_identifier(structure.name)
        existing = [
            row["name"]
            for row in conn.execute(f"PRAGMA table_info({quoted})").fetchall()
        ]

        if existing and existing != structure.column_names:
            logger.info(
                "Structure of %s changed since capture; recreating from DDL",
                structure.name,
            )
            conn.execute(f"DROP TABLE {quoted}")
            existing = []

        if not existing:
            if not structure.ddl:
                raise DialectError(f"No DDL captured for table {structure.name}")
            conn.execute(structure.ddl)
            for index_sql in structure.indexes:
                conn.execute(index_sql)

        conn.execute(f"DELETE FROM {quoted}")
        if not rows:
            return 0

        columns = structure.column_names
        column_list = ", ".join(quote_identifier(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        conn.executemany(
            f"INSERT INTO {quoted} ({column_list}) VALUES ({placeholders})",
            [tuple(row.get(c) for c in columns) for row in rows],
        )
        return len(rows)

    # ── Locking ──────────────────────────────────────────────────

    def ensure_lock_table(self, conn: sqlite3.Connection, table: str) -> None:
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(table)} ("
            "lock_key TEXT PRIMARY KEY, "
            "locked_at TEXT, "
            "locked_by TEXT)"
        )

    def try_lock(
        self,
        conn: sqlite3.Connection,
        table: str,
        key: str,
        holder: str,
        now: str,
    ) -> bool:
        quoted = quote_identifier(table)
        conn.execute(
            f"INSERT OR IGNORE INTO {quoted} (lock_key, locked_at, locked_by) "
            "VALUES (?, NULL, NULL)",
            (key,),
        )
        cursor = conn.execute(
            f"UPDATE {quoted} SET locked_at = ?, locked_by = ? "
            "WHERE lock_key = ? AND locked_at IS NULL",
            (now, holder, key),
        )
        return cursor.rowcount == 1

    def take_over_lock(
        self,
        conn: sqlite3.Connection,
        table: str,
        key: str,
        holder: str,
        now: str,
        expected_locked_at: str,
    ) -> bool:
        cursor = conn.execute(
            f"UPDATE {quote_identifier(table)} SET locked_at = ?, locked_by = ? "
            "WHERE lock_key = ? AND locked_at = ?",
            (now, holder, key, expected_locked_at),
        )
        return cursor.rowcount == 1

    def read_lock(self, conn: sqlite3.Connection, table: str, key: str) -> LockRow | None:
        row = conn.execute(
            f"SELECT locked_at, locked_by FROM {quote_identifier(table)} "
            "WHERE lock_key = ?",
            (key,),
        ).fetchone()
        if row is None or row["locked_at"] is None:
            return None
        return LockRow(holder=row["locked_by"] or "", locked_at=row["locked_at"])

    def release_lock(
        self,
        conn: sqlite3.Connection,
        table: str,
        key: str,
        holder: str,
    ) -> None:
        conn.execute(
            f"UPDATE {quote_identifier(table)} SET locked_at = NULL, locked_by = NULL "
            "WHERE lock_key = ? AND locked_by = ?",
            (key, holder),
        )

    # ── Sessions & Deadlines ─────────────────────────────────────

    def session_activity(self, database: str, threshold_seconds: float) -> SessionActivity:
        if database == ":memory:":
            return SessionActivity(active_connections=1)

        probe = sqlite3.connect(database, timeout=0, isolation_level=None)
        try:
            probe.execute("BEGIN IMMEDIATE")
            probe.execute("ROLLBACK")
        except sqlite3.OperationalError as exc:
            if "locked" not in str(exc) and "busy" not in str(exc):
                raise
            return SessionActivity(
                active_connections=2,
                long_running_sessions=1,
                details=["another connection holds an open write transaction"],
            )
        finally:
            probe.close()
        return SessionActivity(active_connections=1)

    def set_deadline(self, conn: sqlite3.Connection, deadline: float | None) -> None:
        if deadline is None:
            conn.set_progress_handler(None, 0)
            return

        def _check() -> int:
            return 1 if time.monotonic() > deadline else 0

        conn.set_progress_handler(_check, _PROGRESS_STEPS)

    def is_interrupt(self, exc: BaseException) -> bool:
        return isinstance(exc, sqlite3.OperationalError) and "interrupted" in str(exc)
