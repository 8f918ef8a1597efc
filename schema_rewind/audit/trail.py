"""
Audit Trail
~~~~~~~~~~~

Durable log of every rollback attempt, stored in an audit table inside
the target database and forwarded to configured exporters.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any

from schema_rewind.core.models import AuditEntry, AuditFilter, RollbackMetrics
from schema_rewind.core.verdict import ErrorKind, ResultType, RollbackType
from schema_rewind.dialects.base import DialectAdapter
from schema_rewind.exceptions import AuditLogError, DialectError

__all__ = ["AuditTrail"]

logger = logging.getLogger(__name__)

_COLUMNS = (
    "entry_id",
    "rollback_id",
    "version",
    "from_version",
    "status",
    "reason",
    "requested_by",
    "approved_by",
    "ticket_number",
    "rollback_type",
    "snapshot_id",
    "error_kind",
    "error_message",
    "details",
    "duration_ms",
    "performed_at",
)


def _entry_to_row(entry: AuditEntry) -> tuple:
    details = {
        "executed_steps": list(entry.executed_steps),
        "warnings": list(entry.warnings),
        "dry_run": entry.dry_run,
        "production_approved": entry.production_approved,
        "emergency_rollback": entry.emergency_rollback,
        "force_data_loss": entry.force_data_loss,
        "skip_validation": entry.skip_validation,
        "recovery_attempted": entry.recovery_attempted,
        "recovery_succeeded": entry.recovery_succeeded,
    }
    return (
        entry.entry_id,
        entry.rollback_id,
        entry.target_version,
        entry.from_version,
        entry.status.value,
        entry.reason,
        entry.requested_by,
        entry.approved_by,
        entry.ticket_number,
        entry.rollback_type.value,
        entry.snapshot_id,
        entry.error_kind.value if entry.error_kind else None,
        entry.error_message,
        json.dumps(details),
        entry.duration_ms,
        entry.timestamp.isoformat(),
    )


def _row_to_entry(row: Any) -> AuditEntry:
    data = dict(zip(_COLUMNS, row))
    details = json.loads(data["details"] or "{}")
    return AuditEntry(
        entry_id=data["entry_id"],
        rollback_id=data["rollback_id"],
        target_version=data["version"],
        from_version=data["from_version"],
        status=ResultType(data["status"]),
        reason=data["reason"] or "",
        requested_by=data["requested_by"] or "",
        approved_by=data["approved_by"],
        ticket_number=data["ticket_number"],
        rollback_type=RollbackType(data["rollback_type"]),
        snapshot_id=data["snapshot_id"],
        error_kind=ErrorKind(data["error_kind"]) if data["error_kind"] else None,
        error_message=data["error_message"],
        executed_steps=tuple(details.get("executed_steps", [])),
        warnings=tuple(details.get("warnings", [])),
        dry_run=bool(details.get("dry_run", False)),
        production_approved=bool(details.get("production_approved", False)),
        emergency_rollback=bool(details.get("emergency_rollback", False)),
        force_data_loss=bool(details.get("force_data_loss", False)),
        skip_validation=bool(details.get("skip_validation", False)),
        recovery_attempted=bool(details.get("recovery_attempted", False)),
        recovery_succeeded=details.get("recovery_succeeded"),
        duration_ms=int(data["duration_ms"] or 0),
        timestamp=datetime.fromisoformat(data["performed_at"]),
    )


class AuditTrail:
    """
    SQLite-backed audit trail with filtering and export support.

    Every rollback attempt gets exactly one entry, whatever its outcome.
    Entries are never updated. Exporter failures are logged and never
    propagate; storage failures raise AuditLogError.
    """

    def __init__(
        self,
        dialect: DialectAdapter,
        database: str,
        table_name: str = "schema_rewind_audit",
    ) -> None:
        self._dialect = dialect
        self._database = database
        self._table = dialect.quote_identifier(table_name)
        self.table_name = table_name
        self._sync_lock = threading.RLock()
        self._exporters: list[Any] = []
        self._schema_ready = False

    def add_exporter(self, exporter: Any) -> None:
        """Add an exporter to receive audit entries."""
        self._exporters.append(exporter)

    def clear_exporters(self) -> None:
        self._exporters.clear()

    @property
    def exporters(self) -> list[Any]:
        return list(self._exporters)

    def _execute(self, sql: str, params: tuple = ()) -> list[Any]:
        try:
            conn = self._dialect.connect(self._database)
        except DialectError as exc:
            raise AuditLogError(f"Audit trail unavailable: {exc}") from exc
        try:
            if not self._schema_ready:
                self._create_table(conn)
            return conn.execute(sql, params).fetchall()
        except self._dialect.storage_errors as exc:
            raise AuditLogError(f"Audit trail unavailable: {exc}") from exc
        finally:
            conn.close()

    def _create_table(self, conn: Any) -> None:
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "entry_id TEXT PRIMARY KEY, "
            "rollback_id TEXT NOT NULL, "
            "version TEXT NOT NULL, "
            "from_version TEXT, "
            "status TEXT NOT NULL, "
            "reason TEXT, "
            "requested_by TEXT, "
            "approved_by TEXT, "
            "ticket_number TEXT, "
            "rollback_type TEXT NOT NULL, "
            "snapshot_id TEXT, "
            "error_kind TEXT, "
            "error_message TEXT, "
            "details TEXT, "
            "duration_ms INTEGER, "
            "performed_at TEXT NOT NULL)"
        )
        self._schema_ready = True

    def ensure_schema(self) -> None:
        """Create the audit table if it does not exist."""
        self._execute("SELECT 1")

    def write(self, entry: AuditEntry) -> None:
        """
        Persist an entry and forward it to exporters.

        Raises:
            AuditLogError: If the entry cannot be stored.
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._sync_lock:
            self._execute(
                f"INSERT INTO {self._table} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                _entry_to_row(entry),
            )
        logger.info(
            "Audited rollback %s to %s: %s",
            entry.rollback_id,
            entry.target_version,
            entry.status.value,
        )

        for exporter in self._exporters:
            try:
                exporter.export(entry)
            except Exception as exc:
                logger.error(
                    "Exporter %s failed: %s",
                    type(exporter).__name__,
                    exc,
                )

    def query(self, filters: AuditFilter | None = None) -> list[AuditEntry]:
        """
        Query the audit trail, newest first.

        Args:
            filters: Optional filter criteria.

        Returns:
            Matching audit entries.
        """
        filters = filters or AuditFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if filters.rollback_id:
            clauses.append("rollback_id = ?")
            params.append(filters.rollback_id)
        if filters.target_version:
            clauses.append("version = ?")
            params.append(filters.target_version)
        if filters.status:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.requested_by:
            clauses.append("requested_by = ?")
            params.append(filters.requested_by)
        if filters.from_time:
            clauses.append("performed_at >= ?")
            params.append(filters.from_time.isoformat())
        if filters.to_time:
            clauses.append("performed_at <= ?")
            params.append(filters.to_time.isoformat())

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._execute(
            f"SELECT {', '.join(_COLUMNS)} FROM {self._table}{where} "
            "ORDER BY performed_at DESC LIMIT ?",
            (*params, filters.limit),
        )
        return [_row_to_entry(row) for row in rows]

    def get(self, rollback_id: str) -> AuditEntry | None:
        entries = self.query(AuditFilter(rollback_id=rollback_id, limit=1))
        return entries[0] if entries else None

    def count(self) -> int:
        rows = self._execute(f"SELECT COUNT(*) FROM {self._table}")
        return int(rows[0][0])

    def get_metrics(self) -> RollbackMetrics:
        """Compute aggregate metrics from the audit trail."""
        metrics = RollbackMetrics()
        entries = self.query(AuditFilter(limit=-1))
        if not entries:
            return metrics

        metrics.total_attempts = len(entries)
        total_duration = 0
        for entry in entries:
            total_duration += entry.duration_ms
            if entry.status is ResultType.SUCCESS:
                metrics.successful_rollbacks += 1
            elif entry.status is ResultType.DRY_RUN_SUCCESS:
                metrics.dry_runs += 1
            else:
                metrics.failed_rollbacks += 1

            if entry.error_kind is not None:
                kind = entry.error_kind.value
                metrics.failures_by_kind[kind] = metrics.failures_by_kind.get(kind, 0) + 1
            if entry.recovery_attempted:
                metrics.recoveries_attempted += 1
                if entry.recovery_succeeded:
                    metrics.recoveries_succeeded += 1

            metrics.attempts_by_target[entry.target_version] = (
                metrics.attempts_by_target.get(entry.target_version, 0) + 1
            )

        metrics.avg_duration_ms = total_duration / len(entries)
        return metrics
