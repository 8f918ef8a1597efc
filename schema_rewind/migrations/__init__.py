"""schema-rewind migrations: version ledger, undo scripts, and rollback planning."""

from schema_rewind.migrations.ledger import VersionLedger
from schema_rewind.migrations.planner import RollbackPlanner
from schema_rewind.migrations.undo_scripts import (
    UndoScriptResolver,
    parse_undo_script,
    split_statements,
)

__all__ = [
    "VersionLedger",
    "RollbackPlanner",
    "UndoScriptResolver",
    "parse_undo_script",
    "split_statements",
]
