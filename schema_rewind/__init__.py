"""
schema-rewind — Guarded rollback of SQL schema migrations.

schema-rewind undoes applied migrations back to a target version, with
the safety rails a production database needs:

- Undo scripts resolved per version, failing closed when one is missing
- Pre-flight safety checks with explicit override flags
- Table snapshots taken before every real rollback
- Single-transaction execution with a timeout
- Post-execution verification and snapshot recovery
- A database-scoped lock against concurrent rollbacks
- An audit entry for every attempt, whatever its outcome

Quick Start::

    from schema_rewind import RollbackOrchestrator, RollbackRequest

    rewind = RollbackOrchestrator.from_config("schema_rewind.yaml")
    result = rewind.submit(
        RollbackRequest(target_version="1.0.1", reason="bad index", dry_run=True)
    )
    print(result.result_type, result.executed_steps)
"""

from schema_rewind.core.models import (
    AuditEntry,
    AuditFilter,
    CheckResult,
    MigrationVersion,
    PreflightReport,
    RollbackMetrics,
    RollbackPlan,
    RollbackRequest,
    RollbackResult,
    SafetyReport,
)
from schema_rewind.core.orchestrator import RollbackOrchestrator
from schema_rewind.core.verdict import (
    CheckStatus,
    ErrorKind,
    ResultType,
    RollbackState,
    RollbackType,
)
from schema_rewind.dialects.base import DialectAdapter
from schema_rewind.safety.base import BaseSafetyCheck
from schema_rewind.safety.environment import (
    DeploymentSignalClassifier,
    EnvironmentClassifier,
    StaticEnvironmentClassifier,
)

__version__ = "0.1.0"
__license__ = "Apache-2.0"

__all__ = [
    # Main class
    "RollbackOrchestrator",
    # Enums
    "CheckStatus",
    "ErrorKind",
    "ResultType",
    "RollbackState",
    "RollbackType",
    # Data models
    "AuditEntry",
    "AuditFilter",
    "CheckResult",
    "MigrationVersion",
    "PreflightReport",
    "RollbackMetrics",
    "RollbackPlan",
    "RollbackRequest",
    "RollbackResult",
    "SafetyReport",
    # Extension bases
    "BaseSafetyCheck",
    "DialectAdapter",
    "EnvironmentClassifier",
    "DeploymentSignalClassifier",
    "StaticEnvironmentClassifier",
    # Metadata
    "__version__",
]
