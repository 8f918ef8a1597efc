"""
Version Ledger
~~~~~~~~~~~~~~

Append-only record of applied migrations. The ledger is the source of
truth for the current schema version and for the versions that lie
between the current version and a rollback target.

Ordering is by ``installed_rank``, never by comparing version strings.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from schema_rewind.core.models import MigrationVersion
from schema_rewind.dialects.base import DialectAdapter
from schema_rewind.exceptions import (
    DialectError,
    LedgerUnavailableError,
    ValidationError,
)

__all__ = ["VersionLedger"]

logger = logging.getLogger(__name__)

_COLUMNS = "installed_rank, version, description, success, installed_on"


class VersionLedger:
    """
    Reads and maintains the ``schema_version_history`` table.

    Every method accepts an optional connection. When one is given the
    call runs on it (and inside whatever transaction it holds); otherwise
    a short-lived connection is opened and closed.

    Any storage error raises LedgerUnavailableError.
    """

    def __init__(
        self,
        dialect: DialectAdapter,
        database: str,
        table: str = "schema_version_history",
    ) -> None:
        self._dialect = dialect
        self._database = database
        self._table = dialect.quote_identifier(table)
        self.table_name = table

    @contextmanager
    def _connection(self, conn: Any | None) -> Iterator[Any]:
        if conn is not None:
            try:
                yield conn
            except (*self._dialect.storage_errors, DialectError) as exc:
                raise LedgerUnavailableError(f"Version ledger unavailable: {exc}") from exc
            return

        try:
            own = self._dialect.connect(self._database)
        except DialectError as exc:
            raise LedgerUnavailableError(f"Version ledger unavailable: {exc}") from exc
        try:
            yield own
        except (*self._dialect.storage_errors, DialectError) as exc:
            raise LedgerUnavailableError(f"Version ledger unavailable: {exc}") from exc
        finally:
            own.close()

    @staticmethod
    def _to_version(row: Any) -> MigrationVersion:
        installed_on = row[4]
        return MigrationVersion(
            installed_rank=int(row[0]),
            version=row[1],
            description=row[2] or "",
            success=bool(row[3]),
            installed_on=datetime.fromisoformat(installed_on) if installed_on else None,
        )

    def ensure_schema(self, conn: Any | None = None) -> None:
        """Create the ledger table if it does not exist."""
        with self._connection(conn) as c:
            c.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "installed_rank INTEGER PRIMARY KEY, "
                "version TEXT NOT NULL, "
                "description TEXT NOT NULL DEFAULT '', "
                "success INTEGER NOT NULL DEFAULT 1, "
                "installed_on TEXT)"
            )

    def record(
        self,
        version: str,
        description: str = "",
        success: bool = True,
        conn: Any | None = None,
    ) -> MigrationVersion:
        """
        Append a ledger entry with the next installed rank.

        Used by forward migration runners and by tests to seed history.

        Returns:
            The recorded MigrationVersion.
        """
        installed_on = datetime.now(UTC)
        with self._connection(conn) as c:
            row = c.execute(
                f"SELECT COALESCE(MAX(installed_rank), 0) + 1 FROM {self._table}"
            ).fetchone()
            rank = int(row[0])
            c.execute(
                f"INSERT INTO {self._table} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (rank, version, description, 1 if success else 0, installed_on.isoformat()),
            )
        logger.debug("Recorded ledger entry %s (rank %d, success=%s)", version, rank, success)
        return MigrationVersion(
            version=version,
            installed_rank=rank,
            description=description,
            success=success,
            installed_on=installed_on,
        )

    def current_version(self, conn: Any | None = None) -> MigrationVersion | None:
        """Return the highest-rank successful entry, or None on an empty ledger."""
        with self._connection(conn) as c:
            row = c.execute(
                f"SELECT {_COLUMNS} FROM {self._table} "
                "WHERE success = 1 ORDER BY installed_rank DESC LIMIT 1"
            ).fetchone()
        return self._to_version(row) if row else None

    def get(self, version: str, conn: Any | None = None) -> MigrationVersion | None:
        """Return the latest entry recorded for ``version``, or None."""
        with self._connection(conn) as c:
            row = c.execute(
                f"SELECT {_COLUMNS} FROM {self._table} "
                "WHERE version = ? ORDER BY installed_rank DESC LIMIT 1",
                (version,),
            ).fetchone()
        return self._to_version(row) if row else None

    def exists(self, version: str, conn: Any | None = None) -> bool:
        return self.get(version, conn) is not None

    def versions_above(
        self,
        target: str,
        conn: Any | None = None,
    ) -> list[MigrationVersion]:
        """
        Return successful entries ranked above ``target``, newest first.

        Raises:
            ValidationError: If ``target`` is not in the ledger.
        """
        with self._connection(conn) as c:
            anchor = self.get(target, c)
            if anchor is None:
                raise ValidationError(f"Version {target} is not in the ledger")
            rows = c.execute(
                f"SELECT {_COLUMNS} FROM {self._table} "
                "WHERE success = 1 AND installed_rank > ? "
                "ORDER BY installed_rank DESC",
                (anchor.installed_rank,),
            ).fetchall()
        return [self._to_version(row) for row in rows]

    def history(self, limit: int | None = None, conn: Any | None = None) -> list[MigrationVersion]:
        """Return ledger entries in application order."""
        sql = f"SELECT {_COLUMNS} FROM {self._table} ORDER BY installed_rank DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._connection(conn) as c:
            rows = c.execute(sql, params).fetchall()
        return [self._to_version(row) for row in reversed(rows)]

    def retire(self, target: str, conn: Any) -> int:
        """
        Remove every entry ranked above ``target``.

        Runs on the caller's connection so that it commits or rolls back
        together with the undo scripts.

        Returns:
            The number of entries removed.
        """
        with self._connection(conn) as c:
            anchor = self.get(target, c)
            if anchor is None:
                raise ValidationError(f"Version {target} is not in the ledger")
            cursor = c.execute(
                f"DELETE FROM {self._table} WHERE installed_rank > ?",
                (anchor.installed_rank,),
            )
        logger.info("Retired %d ledger entries above %s", cursor.rowcount, target)
        return cursor.rowcount
