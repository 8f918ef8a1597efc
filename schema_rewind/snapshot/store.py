"""
Snapshot Store
~~~~~~~~~~~~~~

Captures and restores per-table copies of the database on disk, with an
in-memory cache of snapshot manifests.

Layout::

    <storage_path>/<snapshot_id>/metadata.json
    <storage_path>/<snapshot_id>/<table>.rows.json
    <storage_path>/<snapshot_id>/<table>.structure.json

Table file names are the table name with unsafe characters replaced. When
two tables map to the same name (``a b`` and ``a_b``), later ones get a
``-2``, ``-3`` suffix; the manifest records the file names actually used.

Snapshot ids are limited to letters, digits, ``_`` and ``-``, so an id can
never name anything outside the storage directory.

Consistency across tables is best effort: each table is read on its own
connection, so concurrent writers can land between two tables.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import shutil
import threading
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime, timedelta
from typing import Any

from schema_rewind.dialects.base import DialectAdapter, TableStructure
from schema_rewind.exceptions import SnapshotError, SnapshotNotFoundError
from schema_rewind.snapshot.models import RestoreReport, Snapshot, TableCapture

__all__ = ["SnapshotStore"]

logger = logging.getLogger(__name__)

_METADATA_FILE = "metadata.json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_SNAPSHOT_ID = re.compile(r"[A-Za-z0-9_-]+")


def _safe_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name) or "_"


def _file_bases(tables: list[str]) -> dict[str, str]:
    """Map each table to a file base name unique within one snapshot."""
    bases: dict[str, str] = {}
    taken: set[str] = set()
    for table in tables:
        base = _safe_name(table)
        candidate, n = base, 1
        # Compared case-insensitively for case-insensitive filesystems
        while candidate.lower() in taken:
            n += 1
            candidate = f"{base}-{n}"
        taken.add(candidate.lower())
        bases[table] = candidate
    return bases


def _encode_value(value: Any) -> Any:
    if isinstance(value, bytes | bytearray | memoryview):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and "__bytes__" in value:
        return base64.b64decode(value["__bytes__"])
    return value


def _write_json(path: str, data: Any) -> int:
    """Write JSON atomically and return the byte count."""
    tmp_path = f"{path}.tmp"
    payload = json.dumps(data, default=str).encode("utf-8")
    with open(tmp_path, "wb") as f:
        f.write(payload)
    os.replace(tmp_path, path)
    return len(payload)


def _read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class SnapshotStore:
    """
    Manages snapshot capture, restore and retention.

    Uses the filesystem for durable storage and an in-memory OrderedDict
    as a write-through cache of manifests.

    Args:
        dialect: Adapter used for introspection, export and restore.
        database: Connection target of the database.
        storage_path: Directory holding snapshot directories.
        system_table_prefixes: Tables with these prefixes are never captured.
        excluded_tables: Additional tables that are never captured.
        parallel_threshold: Above this many tables, capture runs in parallel.
        max_workers: Upper bound on parallel capture threads.
        capture_timeout_seconds: Upper bound on a parallel capture.
        max_cached: Manifests kept in the in-memory cache.
    """

    def __init__(
        self,
        dialect: DialectAdapter,
        database: str,
        storage_path: str = "./snapshots",
        system_table_prefixes: list[str] | None = None,
        excluded_tables: list[str] | None = None,
        parallel_threshold: int = 10,
        max_workers: int = 4,
        capture_timeout_seconds: float = 300,
        max_cached: int = 100,
    ) -> None:
        self._dialect = dialect
        self._database = database
        self._storage_path = storage_path
        self._prefixes = tuple(system_table_prefixes or ["sqlite_"])
        self._excluded = set(excluded_tables or [])
        self._parallel_threshold = parallel_threshold
        self._max_workers = max_workers
        self._capture_timeout = capture_timeout_seconds
        self._max_cached = max_cached
        self._cache: OrderedDict[str, Snapshot] = OrderedDict()
        self._sync_lock = threading.RLock()

        os.makedirs(self._storage_path, exist_ok=True)

    @property
    def storage_path(self) -> str:
        return self._storage_path

    # ── Helpers ──────────────────────────────────────────────────

    def _snapshot_dir(self, snapshot_id: str) -> str:
        """
        Return the directory of ``snapshot_id``.

        Raises:
            SnapshotNotFoundError: If the id is malformed or resolves to a
                path outside the storage directory.
        """
        if not _SNAPSHOT_ID.fullmatch(snapshot_id):
            raise SnapshotNotFoundError(f"Invalid snapshot id: {snapshot_id!r}")
        directory = os.path.join(self._storage_path, snapshot_id)
        parent = os.path.dirname(os.path.realpath(directory))
        if parent != os.path.realpath(self._storage_path):
            raise SnapshotNotFoundError(
                f"Snapshot {snapshot_id} resolves outside {self._storage_path}"
            )
        return directory

    def _is_system_table(self, table: str) -> bool:
        return table in self._excluded or table.startswith(self._prefixes)

    def _cache_put(self, snapshot: Snapshot) -> None:
        with self._sync_lock:
            self._cache[snapshot.snapshot_id] = snapshot
            self._cache.move_to_end(snapshot.snapshot_id)
            while len(self._cache) > self._max_cached:
                self._cache.popitem(last=False)

    def _write_manifest(self, snapshot: Snapshot) -> None:
        _write_json(
            os.path.join(self._snapshot_dir(snapshot.snapshot_id), _METADATA_FILE),
            snapshot.to_dict(),
        )
        self._cache_put(snapshot)

    def user_tables(self) -> list[str]:
        """Return the tables a snapshot would capture."""
        conn = self._dialect.connect(self._database)
        try:
            return [t for t in self._dialect.list_tables(conn) if not self._is_system_table(t)]
        finally:
            conn.close()

    # ── Capture ──────────────────────────────────────────────────

    def _capture_table(
        self,
        table: str,
        base: str,
        directory: str,
        abandoned: threading.Event | None = None,
    ) -> TableCapture:
        """
        Capture one table on its own connection.

        ``abandoned`` is set once the caller has stopped waiting for this
        capture; a worker that finishes reading after that writes nothing.
        """
        conn = self._dialect.connect(self._database)
        try:
            structure = self._dialect.describe_table(conn, table)
            rows = self._dialect.export_table(conn, table)
        finally:
            conn.close()

        if abandoned is not None and abandoned.is_set():
            raise SnapshotError(f"Capture of table {table} was abandoned")

        rows_file = f"{base}.rows.json"
        structure_file = f"{base}.structure.json"
        byte_count = _write_json(
            os.path.join(directory, rows_file),
            [{k: _encode_value(v) for k, v in row.items()} for row in rows],
        )
        _write_json(os.path.join(directory, structure_file), structure.to_dict())
        logger.debug("Captured table %s (%d rows, %d bytes)", table, len(rows), byte_count)
        return TableCapture(
            table=table,
            row_count=len(rows),
            byte_count=byte_count,
            rows_file=rows_file,
            structure_file=structure_file,
        )

    def _capture_sequential(
        self,
        tables: list[str],
        directory: str,
    ) -> tuple[list[TableCapture], dict[str, str]]:
        captured: list[TableCapture] = []
        failed: dict[str, str] = {}
        bases = _file_bases(tables)
        for table in tables:
            try:
                captured.append(self._capture_table(table, bases[table], directory))
            except Exception as exc:
                logger.warning("Failed to capture table %s: %s", table, exc)
                failed[table] = str(exc)
        return captured, failed

    def _capture_parallel(
        self,
        tables: list[str],
        directory: str,
    ) -> tuple[list[TableCapture], dict[str, str]]:
        """
        Capture tables on a worker pool, waiting at most the capture timeout.

        Tables still running at the timeout are reported as failed. Their
        workers cannot be interrupted mid-read, so they are flagged as
        abandoned and discard their rows instead of writing files.
        """
        captured: list[TableCapture] = []
        failed: dict[str, str] = {}
        bases = _file_bases(tables)
        abandoned = threading.Event()
        workers = max(1, min(self._max_workers, len(tables)))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot")
        try:
            futures: dict[Future[TableCapture], str] = {
                pool.submit(self._capture_table, table, bases[table], directory, abandoned): table
                for table in tables
            }
            done, not_done = wait(futures, timeout=self._capture_timeout)
            for future in done:
                table = futures[future]
                try:
                    captured.append(future.result())
                except Exception as exc:
                    logger.warning("Failed to capture table %s: %s", table, exc)
                    failed[table] = str(exc)
            for future in not_done:
                future.cancel()
                table = futures[future]
                logger.warning(
                    "Capture of table %s did not finish within %ss",
                    table,
                    self._capture_timeout,
                )
                failed[table] = f"capture timed out after {self._capture_timeout}s"
        finally:
            abandoned.set()
            pool.shutdown(wait=False, cancel_futures=True)

        captured.sort(key=lambda c: tables.index(c.table))
        return captured, failed

    def create(self, label: str = "manual", database_version: str | None = None) -> str:
        """
        Capture every non-system table's rows and structure.

        Args:
            label: Label embedded in the snapshot id, e.g. a rollback id.
            database_version: Ledger version at capture time.

        Returns:
            The new snapshot id.

        Raises:
            SnapshotError: If tables exist but none could be captured.
        """
        created_at = datetime.now(UTC)
        snapshot_id = (
            f"{_UNSAFE_ID_CHARS.sub('_', label)}_{created_at:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"
        )
        directory = self._snapshot_dir(snapshot_id)

        try:
            tables = self.user_tables()
            os.makedirs(directory, exist_ok=False)
        except Exception as exc:
            raise SnapshotError(f"Cannot start snapshot {snapshot_id}: {exc}") from exc

        if len(tables) > self._parallel_threshold:
            logger.info("Capturing %d tables in parallel for %s", len(tables), snapshot_id)
            captured, failed = self._capture_parallel(tables, directory)
        else:
            captured, failed = self._capture_sequential(tables, directory)

        if tables and not captured:
            shutil.rmtree(directory, ignore_errors=True)
            raise SnapshotError(
                f"Snapshot {snapshot_id} failed: no table could be captured",
                details={"failed_tables": failed},
            )

        snapshot = Snapshot(
            snapshot_id=snapshot_id,
            label=label,
            created_at=created_at,
            database_version=database_version,
            tables=captured,
            failed_tables=failed,
        )
        try:
            self._write_manifest(snapshot)
        except OSError as exc:
            shutil.rmtree(directory, ignore_errors=True)
            raise SnapshotError(f"Cannot write snapshot manifest: {exc}") from exc

        if snapshot.degraded:
            logger.warning(
                "Snapshot %s is degraded: %d of %d tables failed",
                snapshot_id,
                len(failed),
                len(tables),
            )
        logger.info(
            "Created snapshot %s (%d tables, %d rows)",
            snapshot_id,
            len(captured),
            snapshot.total_rows,
        )
        return snapshot_id

    # ── Restore ──────────────────────────────────────────────────

    def _load_table(
        self,
        snapshot_id: str,
        capture: TableCapture,
    ) -> tuple[TableStructure, list[dict[str, Any]]]:
        directory = self._snapshot_dir(snapshot_id)
        for name in (capture.structure_file, capture.rows_file):
            if os.path.basename(name) != name:
                raise SnapshotError(f"Snapshot {snapshot_id} names a file outside it: {name}")
        structure = TableStructure.from_dict(
            _read_json(os.path.join(directory, capture.structure_file))
        )
        rows = [
            {k: _decode_value(v) for k, v in row.items()}
            for row in _read_json(os.path.join(directory, capture.rows_file))
        ]
        return structure, rows

    def restore(self, snapshot_id: str) -> RestoreReport:
        """
        Clear and repopulate every captured table, one table at a time.

        Each table is restored in its own transaction with foreign key
        enforcement off. A failure on one table is logged and reported;
        tables already restored stay restored.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
        """
        snapshot = self.get(snapshot_id)
        report = RestoreReport(
            snapshot_id=snapshot_id,
            skipped_tables=sorted(snapshot.failed_tables),
        )

        conn = self._dialect.connect(self._database)
        try:
            self._dialect.set_foreign_keys(conn, False)
            for capture in snapshot.tables:
                try:
                    structure, rows = self._load_table(snapshot_id, capture)
                    self._dialect.begin(conn)
                    count = self._dialect.restore_table(conn, structure, rows)
                    self._dialect.commit(conn)
                except Exception as exc:
                    self._dialect.rollback(conn)
                    logger.error("Failed to restore table %s: %s", capture.table, exc)
                    report.failed_tables[capture.table] = str(exc)
                    continue
                report.restored_tables[capture.table] = count
                logger.debug("Restored table %s (%d rows)", capture.table, count)
        finally:
            conn.close()

        logger.info("Restore of snapshot %s: %s", snapshot_id, report.summary())
        return report

    # ── Lookup & Retention ───────────────────────────────────────

    def get(self, snapshot_id: str) -> Snapshot:
        """
        Return the manifest for ``snapshot_id``.

        Raises:
            SnapshotNotFoundError: If no such snapshot exists.
        """
        with self._sync_lock:
            if snapshot_id in self._cache:
                return self._cache[snapshot_id]

        path = os.path.join(self._snapshot_dir(snapshot_id), _METADATA_FILE)
        if not os.path.isfile(path):
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        try:
            snapshot = Snapshot.from_dict(_read_json(path))
        except (OSError, ValueError, KeyError) as exc:
            raise SnapshotError(f"Corrupt snapshot manifest {path}: {exc}") from exc
        self._cache_put(snapshot)
        return snapshot

    def exists(self, snapshot_id: str) -> bool:
        try:
            self.get(snapshot_id)
        except SnapshotNotFoundError:
            return False
        return True

    def list(self) -> list[Snapshot]:
        """Return every readable snapshot, newest first."""
        snapshots: list[Snapshot] = []
        for entry in sorted(os.listdir(self._storage_path)):
            if not os.path.isfile(os.path.join(self._storage_path, entry, _METADATA_FILE)):
                continue
            try:
                snapshots.append(self.get(entry))
            except SnapshotError as exc:
                logger.warning("Skipping unreadable snapshot %s: %s", entry, exc)
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return snapshots

    def delete(self, snapshot_id: str) -> bool:
        """Delete a snapshot. Returns False if it did not exist."""
        with self._sync_lock:
            self._cache.pop(snapshot_id, None)
        try:
            directory = self._snapshot_dir(snapshot_id)
        except SnapshotNotFoundError as exc:
            logger.warning("Refusing to delete snapshot: %s", exc)
            return False
        # Only a real directory holding a manifest is a snapshot
        if os.path.islink(directory) or not os.path.isfile(
            os.path.join(directory, _METADATA_FILE)
        ):
            return False
        shutil.rmtree(directory)
        logger.info("Deleted snapshot %s", snapshot_id)
        return True

    def retain(self, snapshot_id: str) -> Snapshot:
        """Promote a snapshot to long-term retention."""
        snapshot = self.get(snapshot_id)
        snapshot.retained = True
        self._write_manifest(snapshot)
        logger.info("Snapshot %s promoted to long-term retention", snapshot_id)
        return snapshot

    def cleanup(self, retention_days: int = 7) -> list[str]:
        """
        Delete unretained snapshots older than ``retention_days``.

        Returns:
            The ids of deleted snapshots.
        """
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        deleted: list[str] = []
        for snapshot in self.list():
            if snapshot.retained or snapshot.created_at >= cutoff:
                continue
            if self.delete(snapshot.snapshot_id):
                deleted.append(snapshot.snapshot_id)
        logger.info("Snapshot cleanup removed %d snapshot(s)", len(deleted))
        return deleted
