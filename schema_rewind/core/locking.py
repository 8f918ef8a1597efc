"""
Rollback Lock
~~~~~~~~~~~~~

Database-scoped mutual exclusion for rollbacks. The lock is a row in a
lock table keyed by database identity and claimed with an atomic
conditional UPDATE, so it holds across processes and hosts.

A second attempt fails fast. A lock older than ``stale_after_seconds``
is assumed abandoned and is taken over with a warning.
"""

from __future__ import annotations

import logging
import socket
import threading
import uuid
from datetime import UTC, datetime

from schema_rewind.dialects.base import DialectAdapter, LockRow
from schema_rewind.exceptions import ConcurrentRollbackInProgressError, DialectError

__all__ = ["RollbackLock"]

logger = logging.getLogger(__name__)


class RollbackLock:
    """
    Args:
        dialect: Adapter providing the lock-table syntax.
        database: Connection target of the locked database.
        table: Name of the lock table.
        stale_after_seconds: Age after which a held lock may be taken over.
        busy_timeout: Seconds to wait for the database write lock itself.
    """

    def __init__(
        self,
        dialect: DialectAdapter,
        database: str,
        table: str = "schema_rewind_lock",
        stale_after_seconds: float = 3600,
        busy_timeout: float = 1.0,
    ) -> None:
        self._dialect = dialect
        self._database = database
        self._table = table
        self._key = dialect.database_identity(database)
        self._stale_after = stale_after_seconds
        self._busy_timeout = busy_timeout
        self._holder: str | None = None
        self._sync_lock = threading.RLock()

    @property
    def holder(self) -> str | None:
        """Holder id while this instance owns the lock."""
        return self._holder

    def _new_holder_id(self) -> str:
        return f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"

    def current_holder(self) -> LockRow | None:
        """Return whoever holds the lock right now, or None."""
        conn = self._dialect.connect(self._database, timeout=self._busy_timeout)
        try:
            self._dialect.ensure_lock_table(conn, self._table)
            return self._dialect.read_lock(conn, self._table, self._key)
        finally:
            conn.close()

    def check_available(self) -> None:
        """
        Fail fast if another attempt holds a live lock, without claiming it.

        A stale lock counts as available; ``acquire`` takes it over.

        Raises:
            ConcurrentRollbackInProgressError: If a live lock is held.
        """
        try:
            current = self.current_holder()
        except (*self._dialect.storage_errors, DialectError) as exc:
            raise ConcurrentRollbackInProgressError(
                database=self._key,
                holder="(database busy)",
                details={"error": str(exc)},
            ) from exc
        if current is None or current.holder == self._holder:
            return
        if self._age(current) > self._stale_after:
            return
        raise ConcurrentRollbackInProgressError(
            database=self._key,
            holder=current.holder,
            acquired_at=current.locked_at,
        )

    def acquire(self) -> str:
        """
        Claim the lock.

        Returns:
            The holder id recorded in the lock row.

        Raises:
            ConcurrentRollbackInProgressError: If another attempt holds it.
        """
        with self._sync_lock:
            if self._holder is not None:
                raise ConcurrentRollbackInProgressError(
                    database=self._key,
                    holder=self._holder,
                    acquired_at="(this process)",
                )

            holder = self._new_holder_id()
            now = datetime.now(UTC).isoformat()
            conn = self._dialect.connect(self._database, timeout=self._busy_timeout)
            try:
                self._dialect.ensure_lock_table(conn, self._table)
                current = self._dialect.read_lock(conn, self._table, self._key)
                if current is None:
                    acquired = self._dialect.try_lock(conn, self._table, self._key, holder, now)
                else:
                    acquired = self._take_over_if_stale(conn, current, holder, now)
                if not acquired:
                    current = self._dialect.read_lock(conn, self._table, self._key)
            except (*self._dialect.storage_errors, DialectError) as exc:
                # The database write lock is held by another writer, which
                # for a rollback target means another rollback is executing.
                raise ConcurrentRollbackInProgressError(
                    database=self._key,
                    holder="(database busy)",
                    details={"error": str(exc)},
                ) from exc
            finally:
                conn.close()

            if not acquired:
                raise ConcurrentRollbackInProgressError(
                    database=self._key,
                    holder=current.holder if current else "",
                    acquired_at=current.locked_at if current else "",
                )

            self._holder = holder
            logger.debug("Rollback lock for %s acquired by %s", self._key, holder)
            return holder

    @staticmethod
    def _age(current: LockRow) -> float:
        try:
            locked_at = datetime.fromisoformat(current.locked_at)
        except ValueError:
            logger.warning("Unparseable lock timestamp %r; treating as stale", current.locked_at)
            return float("inf")
        return (datetime.now(UTC) - locked_at).total_seconds()

    def _take_over_if_stale(
        self,
        conn: object,
        current: LockRow,
        holder: str,
        now: str,
    ) -> bool:
        age = self._age(current)
        if age <= self._stale_after:
            return False

        logger.warning(
            "Taking over stale rollback lock for %s from %s (held %.0fs)",
            self._key,
            current.holder,
            age,
        )
        return self._dialect.take_over_lock(
            conn, self._table, self._key, holder, now, current.locked_at
        )

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        with self._sync_lock:
            if self._holder is None:
                return
            holder = self._holder
            conn = self._dialect.connect(self._database, timeout=max(self._busy_timeout, 5.0))
            try:
                self._dialect.release_lock(conn, self._table, self._key, holder)
            finally:
                conn.close()
                self._holder = None
            logger.debug("Rollback lock for %s released by %s", self._key, holder)

    def __enter__(self) -> RollbackLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
