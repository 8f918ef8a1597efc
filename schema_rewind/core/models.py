"""
schema-rewind Data Models
~~~~~~~~~~~~~~~~~~~~~~~~~

Defines the core dataclasses that flow through the rollback protocol:
RollbackRequest (input), RollbackResult (output), and supporting types
for plans, safety reports, execution outcomes and audit records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from schema_rewind.core.verdict import (
    CheckStatus,
    ErrorKind,
    ResultType,
    RollbackState,
    RollbackType,
)

__all__ = [
    "MigrationVersion",
    "UndoScript",
    "RollbackOperation",
    "RollbackPlan",
    "RollbackRequest",
    "CheckResult",
    "SafetyReport",
    "ExecutionResult",
    "PreflightReport",
    "RollbackResult",
    "AuditEntry",
    "AuditFilter",
    "RollbackMetrics",
]


@dataclass(frozen=True)
class MigrationVersion:
    """
    One entry of the version ledger.

    Attributes:
        version: Version identifier, e.g. "1.0.3".
        installed_rank: Monotonic application order.
        description: Human-readable migration description.
        success: Whether the forward migration succeeded.
        installed_on: When the migration was applied.
    """

    version: str
    installed_rank: int
    description: str = ""
    success: bool = True
    installed_on: datetime | None = None


@dataclass(frozen=True)
class UndoScript:
    """
    A parsed, hand-authored undo script.

    Attributes:
        version: The migration version this script reverses.
        statements: Normalized statements, in execution order.
        source: Where the script was loaded from.
        description: Description parsed from the file name, if any.
    """

    version: str
    statements: tuple[str, ...]
    source: str = ""
    description: str = ""

    @property
    def is_empty(self) -> bool:
        """An empty script is an explicit no-op."""
        return not self.statements


@dataclass(frozen=True)
class RollbackOperation:
    """Undo of exactly one migration version."""

    version: MigrationVersion
    script: UndoScript | None = None
    noop_reason: str | None = None

    @property
    def statements(self) -> tuple[str, ...]:
        return self.script.statements if self.script else ()

    def describe(self) -> str:
        """Human-readable step description used in results and audit."""
        label = f"Undo {self.version.version}"
        if self.version.description:
            label += f" ({self.version.description})"
        if self.script is None:
            return f"{label}: no-op ({self.noop_reason or 'no undo script'})"
        count = len(self.script.statements)
        noun = "statement" if count == 1 else "statements"
        return f"{label}: {count} {noun}"


@dataclass(frozen=True)
class RollbackPlan:
    """Ordered undo operations, newest version first."""

    current_version: MigrationVersion
    target_version: MigrationVersion
    operations: tuple[RollbackOperation, ...] = ()

    @property
    def versions(self) -> list[str]:
        return [op.version.version for op in self.operations]

    def describe(self) -> list[str]:
        return [op.describe() for op in self.operations]

    def __len__(self) -> int:
        return len(self.operations)


@dataclass(frozen=True)
class RollbackRequest:
    """
    A request to roll the schema back to ``target_version``.

    Immutable once submitted to the orchestrator.

    Attributes:
        target_version: The version to roll back to.
        dry_run: Simulate the plan without mutating anything.
        reason: Why the rollback is needed (audited).
        production_approved: Explicit approval for production databases.
        emergency_rollback: Bypass timing windows and concurrent-activity checks.
        force_data_loss: Downgrade predicted data loss from block to warning.
        skip_validation: Skip the safety guard entirely.
        timeout_minutes: Execution timeout; None uses the configured default.
        create_snapshot: Take a recovery snapshot before executing.
        requested_by: Identity of the requester.
        approved_by: Identity of the approver.
        ticket_number: Change-management ticket reference.
        rollback_type: Operator-declared kind of rollback.
    """

    target_version: str
    dry_run: bool = False
    reason: str = ""
    production_approved: bool = False
    emergency_rollback: bool = False
    force_data_loss: bool = False
    skip_validation: bool = False
    timeout_minutes: float | None = None
    create_snapshot: bool = True
    requested_by: str = ""
    approved_by: str | None = None
    ticket_number: str | None = None
    rollback_type: RollbackType = RollbackType.STANDARD

    def has_override(self, flag: str | None) -> bool:
        """Return True if the named override flag is set on this request."""
        if not flag:
            return False
        return bool(getattr(self, flag, False))


@dataclass(frozen=True)
class CheckResult:
    """
    The output of a single safety check.

    Attributes:
        status: PASS, WARN or BLOCK.
        reason: Human-readable explanation.
        check_name: Name of the check that produced this result.
        override_flag: Request flag that downgrades a BLOCK to WARN.
        overridden: True if the BLOCK was downgraded by its override flag.
        metadata: Arbitrary metadata.
    """

    status: CheckStatus
    reason: str
    check_name: str = ""
    override_flag: str | None = None
    overridden: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "check_name": self.check_name,
            "override_flag": self.override_flag,
            "overridden": self.overridden,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class SafetyReport:
    """Structured outcome of every safety check for one request."""

    results: tuple[CheckResult, ...] = ()
    is_production: bool = False
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def blocking(self) -> list[CheckResult]:
        return [r for r in self.results if r.status is CheckStatus.BLOCK]

    @property
    def warnings(self) -> list[CheckResult]:
        return [r for r in self.results if r.status is CheckStatus.WARN]

    @property
    def blocked(self) -> bool:
        return bool(self.blocking)

    def get(self, check_name: str) -> CheckResult | None:
        for result in self.results:
            if result.check_name == check_name:
                return result
        return None

    def summary(self) -> str:
        if self.blocked:
            return "; ".join(f"{r.check_name}: {r.reason}" for r in self.blocking)
        return f"{len(self.results)} checks passed ({len(self.warnings)} warnings)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocked": self.blocked,
            "is_production": self.is_production,
            "evaluated_at": self.evaluated_at.isoformat(),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ExecutionResult:
    """
    The result of running (or simulating) a rollback plan.

    Attributes:
        success: Whether every operation completed.
        executed_steps: Descriptions of operations that completed.
        error_kind: EXECUTION or TIMEOUT on failure.
        error_message: Human-readable failure description.
        failed_version: Version whose undo failed, if any.
        failed_statement: Statement that failed, if any.
        statements_executed: Count of statements that ran.
        duration_ms: Wall-clock time in milliseconds.
    """

    success: bool
    executed_steps: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    failed_version: str | None = None
    failed_statement: str | None = None
    statements_executed: int = 0
    duration_ms: int = 0


@dataclass
class PreflightReport:
    """Read-only outcome of validating a request without running it."""

    target_version: str
    plan: RollbackPlan | None = None
    safety_report: SafetyReport | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.errors or self.plan is None:
            return False
        return self.safety_report is None or not self.safety_report.blocked

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_version": self.target_version,
            "ok": self.ok,
            "errors": list(self.errors),
            "current_version": (
                self.plan.current_version.version if self.plan else None
            ),
            "planned_steps": self.plan.describe() if self.plan else [],
            "safety_report": (
                self.safety_report.to_dict() if self.safety_report else None
            ),
        }


@dataclass
class RollbackResult:
    """
    Outcome record for one rollback attempt.

    Every terminal outcome carries a ``result_type``, an ``error_message``
    when applicable, and the ``rollback_id`` needed to cross-reference the
    audit trail.
    """

    success: bool
    rollback_id: str
    target_version: str
    result_type: ResultType
    snapshot_id: str | None = None
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    executed_steps: list[str] = field(default_factory=list)
    duration_ms: int = 0
    from_version: str | None = None
    warnings: list[str] = field(default_factory=list)
    safety_report: SafetyReport | None = None
    recovery_attempted: bool = False
    recovery_succeeded: bool | None = None
    states: list[RollbackState] = field(default_factory=list)

    @classmethod
    def succeeded(
        cls,
        rollback_id: str,
        target_version: str,
        snapshot_id: str | None,
        executed_steps: list[str],
    ) -> RollbackResult:
        return cls(
            success=True,
            rollback_id=rollback_id,
            target_version=target_version,
            result_type=ResultType.SUCCESS,
            snapshot_id=snapshot_id,
            executed_steps=list(executed_steps),
        )

    @classmethod
    def failed(
        cls,
        rollback_id: str,
        target_version: str,
        error_kind: ErrorKind,
        error_message: str,
        snapshot_id: str | None = None,
    ) -> RollbackResult:
        return cls(
            success=False,
            rollback_id=rollback_id,
            target_version=target_version,
            result_type=ResultType.FAILURE,
            snapshot_id=snapshot_id,
            error_kind=error_kind,
            error_message=error_message,
        )

    @classmethod
    def dry_run_succeeded(
        cls,
        rollback_id: str,
        target_version: str,
        planned_steps: list[str],
    ) -> RollbackResult:
        return cls(
            success=True,
            rollback_id=rollback_id,
            target_version=target_version,
            result_type=ResultType.DRY_RUN_SUCCESS,
            executed_steps=list(planned_steps),
        )

    @property
    def final_state(self) -> RollbackState | None:
        return self.states[-1] if self.states else None

    def reached(self, state: RollbackState) -> bool:
        """Return True if the attempt passed through ``state``."""
        return state in self.states

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "success": self.success,
            "rollback_id": self.rollback_id,
            "target_version": self.target_version,
            "from_version": self.from_version,
            "result_type": self.result_type.value,
            "snapshot_id": self.snapshot_id,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "executed_steps": list(self.executed_steps),
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
            "recovery_attempted": self.recovery_attempted,
            "recovery_succeeded": self.recovery_succeeded,
            "safety_report": (
                self.safety_report.to_dict() if self.safety_report else None
            ),
            "states": [s.value for s in self.states],
        }


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable audit record written once for every rollback attempt.

    Stored in the audit trail and forwarded to all configured exporters.
    """

    rollback_id: str
    target_version: str
    status: ResultType
    reason: str = ""
    requested_by: str = ""
    approved_by: str | None = None
    ticket_number: str | None = None
    rollback_type: RollbackType = RollbackType.STANDARD
    from_version: str | None = None
    snapshot_id: str | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    executed_steps: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    dry_run: bool = False
    production_approved: bool = False
    emergency_rollback: bool = False
    force_data_loss: bool = False
    skip_validation: bool = False
    recovery_attempted: bool = False
    recovery_succeeded: bool | None = None
    duration_ms: int = 0
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_result(cls, result: RollbackResult, request: RollbackRequest) -> AuditEntry:
        """Build the audit record for a terminal result."""
        return cls(
            rollback_id=result.rollback_id,
            target_version=result.target_version,
            status=result.result_type,
            reason=request.reason,
            requested_by=request.requested_by,
            approved_by=request.approved_by,
            ticket_number=request.ticket_number,
            rollback_type=request.rollback_type,
            from_version=result.from_version,
            snapshot_id=result.snapshot_id,
            error_kind=result.error_kind,
            error_message=result.error_message,
            executed_steps=tuple(result.executed_steps),
            warnings=tuple(result.warnings),
            dry_run=request.dry_run,
            production_approved=request.production_approved,
            emergency_rollback=request.emergency_rollback,
            force_data_loss=request.force_data_loss,
            skip_validation=request.skip_validation,
            recovery_attempted=result.recovery_attempted,
            recovery_succeeded=result.recovery_succeeded,
            duration_ms=result.duration_ms,
        )

    def summary(self) -> str:
        """One-line operator summary of the attempt."""
        outcome = self.status.value
        if self.error_kind is not None:
            outcome += f" [{self.error_kind.value}]"
        line = (
            f"rollback {self.rollback_id}: {self.from_version or '?'} -> "
            f"{self.target_version} {outcome} in {self.duration_ms}ms"
        )
        if self.requested_by:
            line += f" by {self.requested_by}"
        if self.snapshot_id:
            line += f" (snapshot {self.snapshot_id})"
        if self.error_message:
            line += f": {self.error_message}"
        return line

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "entry_id": self.entry_id,
            "rollback_id": self.rollback_id,
            "target_version": self.target_version,
            "from_version": self.from_version,
            "status": self.status.value,
            "reason": self.reason,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "ticket_number": self.ticket_number,
            "rollback_type": self.rollback_type.value,
            "snapshot_id": self.snapshot_id,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "executed_steps": list(self.executed_steps),
            "warnings": list(self.warnings),
            "dry_run": self.dry_run,
            "production_approved": self.production_approved,
            "emergency_rollback": self.emergency_rollback,
            "force_data_loss": self.force_data_loss,
            "skip_validation": self.skip_validation,
            "recovery_attempted": self.recovery_attempted,
            "recovery_succeeded": self.recovery_succeeded,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AuditFilter:
    """Filter criteria for querying the audit trail."""

    rollback_id: str | None = None
    target_version: str | None = None
    status: ResultType | None = None
    requested_by: str | None = None
    from_time: datetime | None = None
    to_time: datetime | None = None
    limit: int = 100


@dataclass
class RollbackMetrics:
    """Prometheus-style metrics snapshot over the audit trail."""

    total_attempts: int = 0
    successful_rollbacks: int = 0
    failed_rollbacks: int = 0
    dry_runs: int = 0
    recoveries_attempted: int = 0
    recoveries_succeeded: int = 0
    avg_duration_ms: float = 0.0
    failures_by_kind: dict[str, int] = field(default_factory=dict)
    attempts_by_target: dict[str, int] = field(default_factory=dict)

    def to_prometheus(self) -> str:
        """Render as Prometheus text exposition format."""
        lines: list[str] = [
            f"schema_rewind_total_attempts {self.total_attempts}",
            f"schema_rewind_successful_rollbacks {self.successful_rollbacks}",
            f"schema_rewind_failed_rollbacks {self.failed_rollbacks}",
            f"schema_rewind_dry_runs {self.dry_runs}",
            f"schema_rewind_recoveries_attempted {self.recoveries_attempted}",
            f"schema_rewind_recoveries_succeeded {self.recoveries_succeeded}",
            f"schema_rewind_avg_duration_ms {self.avg_duration_ms}",
        ]
        for kind, count in self.failures_by_kind.items():
            lines.append(f'schema_rewind_failures_by_kind{{kind="{kind}"}} {count}')
        for target, count in self.attempts_by_target.items():
            lines.append(
                f'schema_rewind_attempts_by_target{{target_version="{target}"}} {count}'
            )
        return "\n".join(lines) + "\n"
