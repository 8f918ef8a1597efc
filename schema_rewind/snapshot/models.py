"""
Snapshot Models
~~~~~~~~~~~~~~~

Manifest types for on-disk snapshots and the report produced by a restore.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

__all__ = ["Snapshot", "TableCapture", "RestoreReport"]


@dataclass
class TableCapture:
    """
    One table captured in a snapshot.

    Attributes:
        table: Table name.
        row_count: Rows captured.
        byte_count: Size of the rows file on disk.
        rows_file: File name of the row data, relative to the snapshot dir.
        structure_file: File name of the structure, relative to the snapshot dir.
    """

    table: str
    row_count: int
    byte_count: int
    rows_file: str
    structure_file: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "row_count": self.row_count,
            "byte_count": self.byte_count,
            "rows_file": self.rows_file,
            "structure_file": self.structure_file,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableCapture:
        return cls(
            table=data["table"],
            row_count=int(data.get("row_count", 0)),
            byte_count=int(data.get("byte_count", 0)),
            rows_file=data["rows_file"],
            structure_file=data["structure_file"],
        )


@dataclass
class Snapshot:
    """
    Captured copy of the database's user tables.

    Attributes:
        snapshot_id: Unique identifier, also the directory name.
        label: Caller-supplied label, e.g. a rollback id.
        created_at: When capture started.
        database_version: Ledger version at capture time.
        tables: Tables captured successfully.
        failed_tables: Tables whose capture failed, with the error.
        retained: Promoted to long-term retention; cleanup skips it.
    """

    snapshot_id: str
    label: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    database_version: str | None = None
    tables: list[TableCapture] = field(default_factory=list)
    failed_tables: dict[str, str] = field(default_factory=dict)
    retained: bool = False

    @property
    def degraded(self) -> bool:
        """True if any table failed to capture."""
        return bool(self.failed_tables)

    @property
    def table_names(self) -> list[str]:
        return [t.table for t in self.tables]

    @property
    def total_rows(self) -> int:
        return sum(t.row_count for t in self.tables)

    @property
    def total_bytes(self) -> int:
        return sum(t.byte_count for t in self.tables)

    def get_table(self, table: str) -> TableCapture | None:
        for capture in self.tables:
            if capture.table == table:
                return capture
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the metadata.json layout."""
        return {
            "snapshot_id": self.snapshot_id,
            "label": self.label,
            "created_at": self.created_at.isoformat(),
            "database_version": self.database_version,
            "tables": [t.to_dict() for t in self.tables],
            "failed_tables": dict(self.failed_tables),
            "degraded": self.degraded,
            "retained": self.retained,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            snapshot_id=data["snapshot_id"],
            label=data.get("label", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            database_version=data.get("database_version"),
            tables=[TableCapture.from_dict(t) for t in data.get("tables", [])],
            failed_tables=dict(data.get("failed_tables", {})),
            retained=bool(data.get("retained", False)),
        )


@dataclass
class RestoreReport:
    """
    Outcome of restoring a snapshot, table by table.

    A failure on one table does not undo tables already restored.
    """

    snapshot_id: str
    restored_tables: dict[str, int] = field(default_factory=dict)
    failed_tables: dict[str, str] = field(default_factory=dict)
    skipped_tables: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed_tables

    def summary(self) -> str:
        text = f"restored {len(self.restored_tables)} table(s)"
        if self.failed_tables:
            text += f", {len(self.failed_tables)} failed: " + ", ".join(
                f"{t} ({e})" for t, e in self.failed_tables.items()
            )
        if self.skipped_tables:
            text += f", skipped {', '.join(self.skipped_tables)} (not captured)"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "success": self.success,
            "restored_tables": dict(self.restored_tables),
            "failed_tables": dict(self.failed_tables),
            "skipped_tables": list(self.skipped_tables),
        }
