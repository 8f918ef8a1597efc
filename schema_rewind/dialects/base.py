"""
Base Dialect Adapter
~~~~~~~~~~~~~~~~~~~~

Abstract base class for database dialect adapters. An adapter is selected
once from configuration and provides every piece of dialect-specific SQL
the rollback engine needs: transactions, table introspection, row export
and restore, lock-table syntax and session introspection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

__all__ = ["DialectAdapter", "TableStructure", "SessionActivity", "LockRow"]


@dataclass
class TableStructure:
    """
    Captured structure of one table.

    Attributes:
        name: Table name.
        columns: Column descriptors (name, type, notnull, default, pk).
        primary_keys: Primary key column names in key order.
        foreign_keys: Foreign key descriptors (column, ref_table, ref_column).
        ddl: The CREATE statement that recreates the table.
        indexes: CREATE statements for the table's explicit indexes.
    """

    name: str
    columns: list[dict[str, Any]] = field(default_factory=list)
    primary_keys: list[str] = field(default_factory=list)
    foreign_keys: list[dict[str, Any]] = field(default_factory=list)
    ddl: str = ""
    indexes: list[str] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [c["name"] for c in self.columns]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": self.columns,
            "primary_keys": self.primary_keys,
            "foreign_keys": self.foreign_keys,
            "ddl": self.ddl,
            "indexes": self.indexes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableStructure:
        return cls(
            name=data["name"],
            columns=list(data.get("columns", [])),
            primary_keys=list(data.get("primary_keys", [])),
            foreign_keys=list(data.get("foreign_keys", [])),
            ddl=data.get("ddl", ""),
            indexes=list(data.get("indexes", [])),
        )


@dataclass
class SessionActivity:
    """What the adapter could observe about other sessions."""

    active_connections: int = 0
    long_running_sessions: int = 0
    details: list[str] = field(default_factory=list)


@dataclass
class LockRow:
    """Current holder of the rollback lock."""

    holder: str
    locked_at: str


class DialectAdapter(ABC):
    """
    Abstract base class for dialect adapters.

    Each adapter is responsible for:
    1. Opening connections with explicit transaction control
    2. Introspecting, exporting and restoring tables
    3. Providing the rollback lock syntax
    4. Reporting session activity for the safety guard

    Subclasses must implement every abstract method.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Dialect name used in configuration, e.g. 'sqlite'."""
        ...

    # ── Connections & Transactions ───────────────────────────────

    @abstractmethod
    def connect(self, database: str, timeout: float = 5.0) -> Any:
        """Open a connection in manual transaction mode."""
        ...

    @abstractmethod
    def begin(self, conn: Any) -> None:
        """Begin a write transaction."""
        ...

    @abstractmethod
    def commit(self, conn: Any) -> None: ...

    @abstractmethod
    def rollback(self, conn: Any) -> None: ...

    @abstractmethod
    def in_transaction(self, conn: Any) -> bool: ...

    @abstractmethod
    def set_foreign_keys(self, conn: Any, enabled: bool) -> None:
        """Toggle foreign key enforcement. Must be called outside a transaction."""
        ...

    def database_identity(self, database: str) -> str:
        """Key identifying the database in the lock table."""
        return database

    @property
    @abstractmethod
    def storage_errors(self) -> tuple[type[Exception], ...]:
        """
        Driver exception types raised by failed statements.

        Callers outside the adapter catch these instead of importing the
        driver, e.g. ``except (*dialect.storage_errors, DialectError)``.
        """
        ...

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote a table or column name for use in SQL text."""
        ...

    # ── Introspection ────────────────────────────────────────────

    @abstractmethod
    def list_tables(self, conn: Any) -> list[str]:
        """Return all user tables, sorted by name."""
        ...

    @abstractmethod
    def describe_table(self, conn: Any, table: str) -> TableStructure:
        """Return the structure of ``table``."""
        ...

    @abstractmethod
    def foreign_key_violations(self, conn: Any) -> list[dict[str, Any]]:
        """Return every foreign key violation in the database."""
        ...

    # ── Export & Restore ─────────────────────────────────────────

    @abstractmethod
    def export_table(self, conn: Any, table: str) -> list[dict[str, Any]]:
        """Return every row of ``table`` as a column-name mapping."""
        ...

    @abstractmethod
    def restore_table(
        self,
        conn: Any,
        structure: TableStructure,
        rows: list[dict[str, Any]],
    ) -> int:
        """
        Replace the contents of a table with ``rows``.

        Recreates the table from its DDL if it is missing or its columns
        no longer match. Runs inside the caller's transaction.

        Returns:
            The number of rows written.
        """
        ...

    # ── Locking ──────────────────────────────────────────────────

    @abstractmethod
    def ensure_lock_table(self, conn: Any, table: str) -> None: ...

    @abstractmethod
    def try_lock(self, conn: Any, table: str, key: str, holder: str, now: str) -> bool:
        """Atomically claim a free lock row. Returns True on success."""
        ...

    @abstractmethod
    def take_over_lock(
        self,
        conn: Any,
        table: str,
        key: str,
        holder: str,
        now: str,
        expected_locked_at: str,
    ) -> bool:
        """Atomically claim a lock row still stamped ``expected_locked_at``."""
        ...

    @abstractmethod
    def read_lock(self, conn: Any, table: str, key: str) -> LockRow | None:
        """Return the current holder, or None if the lock is free."""
        ...

    @abstractmethod
    def release_lock(self, conn: Any, table: str, key: str, holder: str) -> None: ...

    # ── Sessions & Deadlines ─────────────────────────────────────

    @abstractmethod
    def session_activity(self, database: str, threshold_seconds: float) -> SessionActivity:
        """Observe other sessions on the database."""
        ...

    @abstractmethod
    def set_deadline(self, conn: Any, deadline: float | None) -> None:
        """
        Interrupt statements on ``conn`` once ``time.monotonic()`` passes
        ``deadline``. None clears the deadline.
        """
        ...

    @abstractmethod
    def is_interrupt(self, exc: BaseException) -> bool:
        """Return True if ``exc`` was caused by a deadline interrupt."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
