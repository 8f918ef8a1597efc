"""schema-rewind core module: data models, status enums, and the rollback engine."""

from schema_rewind.core.models import (
    AuditEntry,
    CheckResult,
    MigrationVersion,
    RollbackPlan,
    RollbackRequest,
    RollbackResult,
    SafetyReport,
)
from schema_rewind.core.verdict import (
    CheckStatus,
    ErrorKind,
    ResultType,
    RollbackState,
    RollbackType,
)

__all__ = [
    "CheckStatus",
    "ErrorKind",
    "ResultType",
    "RollbackState",
    "RollbackType",
    "MigrationVersion",
    "RollbackPlan",
    "RollbackRequest",
    "RollbackResult",
    "CheckResult",
    "SafetyReport",
    "AuditEntry",
]
