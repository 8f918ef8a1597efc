"""schema-rewind snapshots: on-disk table captures used for recovery."""

from schema_rewind.snapshot.models import RestoreReport, Snapshot, TableCapture
from schema_rewind.snapshot.store import SnapshotStore

__all__ = ["SnapshotStore", "Snapshot", "TableCapture", "RestoreReport"]
