"""
schema-rewind Custom Exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

All custom exception classes for schema-rewind, organized by domain.
Every distinct failure mode has its own exception type.

Exceptions are raised inside components. The orchestrator converts them
into a :class:`~schema_rewind.core.models.RollbackResult` carrying an
:class:`~schema_rewind.core.verdict.ErrorKind`, so callers of ``submit()``
never see a bare traceback.

**Structured Error Messages**

Blocking exceptions provide three structured fields:
- ``what_happened``: Clear plain-English description
- ``check_triggered``: Name of the safety check or subsystem
- ``how_to_fix``: Concrete, actionable steps
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from schema_rewind.core.models import SafetyReport

__all__ = [
    # Base
    "SchemaRewindError",
    # Config
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Validation
    "ValidationError",
    "UndoScriptMissingError",
    "UndoScriptError",
    # Safety
    "SafetyBlockedError",
    # Ledger
    "LedgerUnavailableError",
    # Snapshot
    "SnapshotError",
    "SnapshotNotFoundError",
    # Execution
    "VerificationError",
    # Locking
    "ConcurrentRollbackInProgressError",
    # Dialect
    "DialectError",
    "DialectNotFoundError",
    # Audit
    "AuditLogError",
]


# ── Formatting Helper ────────────────────────────────────────────────────────

_SEPARATOR = "─" * 52


def _format_structured_error(
    title: str,
    what_happened: str,
    check_triggered: str,
    how_to_fix: str,
) -> str:
    """Build a rich, structured error message."""
    lines = [
        f"  {title}",
        f"  {_SEPARATOR}",
        "  What happened:",
        *[f"    {line}" for line in what_happened.strip().splitlines()],
        "",
        "  Check triggered:",
        f"    {check_triggered}",
        "",
        "  How to fix:",
        *[f"    {line}" for line in how_to_fix.strip().splitlines()],
    ]
    return "\n".join(lines)


# ── Base Exception ───────────────────────────────────────────────────────────


class SchemaRewindError(Exception):
    """Base exception for all schema-rewind errors."""

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Config Exceptions ────────────────────────────────────────────────────────


class ConfigError(SchemaRewindError):
    """Base exception for configuration-related errors."""


class ConfigFileNotFoundError(ConfigError):
    """Raised when a configuration file cannot be found at the specified path."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values fail validation."""


# ── Validation Exceptions ────────────────────────────────────────────────────


class ValidationError(SchemaRewindError):
    """
    Raised when a rollback request is invalid: unknown target version,
    target not below the current version, or an unbuildable plan.

    Never retried.
    """


class UndoScriptMissingError(ValidationError):
    """Raised when a version has no undo script and is not whitelisted as no-op."""

    def __init__(self, version: str, details: dict | None = None) -> None:
        self.version = version
        super().__init__(
            f"No undo script found for version {version} "
            f"and it is not listed in rollback.noop_versions",
            details,
        )


class UndoScriptError(ValidationError):
    """Raised when an undo script file cannot be read or parsed."""


# ── Safety Exceptions ────────────────────────────────────────────────────────


class SafetyBlockedError(SchemaRewindError):
    """
    Raised when the safety guard vetoes a rollback.

    Carries the full SafetyReport so the caller can decide to override
    and resubmit.

    Structured fields:
    - ``what_happened``: which checks blocked and why
    - ``check_triggered``: names of the blocking checks
    - ``how_to_fix``: which override flags apply
    """

    def __init__(
        self,
        message: str = "Rollback blocked by safety guard",
        report: SafetyReport | None = None,
        details: dict | None = None,
        what_happened: str = "",
        check_triggered: str = "",
        how_to_fix: str = "",
    ) -> None:
        self.report = report
        blocking = report.blocking if report is not None else []
        self.what_happened = what_happened or "\n".join(
            f"{r.check_name}: {r.reason}" for r in blocking
        ) or message
        self.check_triggered = check_triggered or ", ".join(
            r.check_name for r in blocking
        )
        overrides = sorted({r.override_flag for r in blocking if r.override_flag})
        self.how_to_fix = how_to_fix or (
            "1. Resolve the condition reported above and resubmit\n"
            + (
                f"2. Resubmit with the override flag(s): {', '.join(overrides)}\n"
                if overrides
                else "2. This check has no override flag; only skip_validation bypasses it\n"
            )
            + "3. Run `schema-rewind validate` to preview the full safety report"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"SafetyBlockedError: {self.args[0]}",
            what_happened=self.what_happened,
            check_triggered=self.check_triggered or "(unknown)",
            how_to_fix=self.how_to_fix,
        )


# ── Ledger Exceptions ────────────────────────────────────────────────────────


class LedgerUnavailableError(SchemaRewindError):
    """
    Raised when the version ledger cannot be read or written.

    Fatal: the ledger itself is untrustworthy, so no recovery is attempted.
    """


# ── Snapshot Exceptions ──────────────────────────────────────────────────────


class SnapshotError(SchemaRewindError):
    """Raised when snapshot capture or restore fails."""


class SnapshotNotFoundError(SnapshotError):
    """Raised when a snapshot id has no directory or manifest."""


# ── Execution Exceptions ─────────────────────────────────────────────────────


class VerificationError(SchemaRewindError):
    """Raised when post-execution verification fails."""


# ── Locking Exceptions ───────────────────────────────────────────────────────


class ConcurrentRollbackInProgressError(SchemaRewindError):
    """
    Raised when another rollback holds the database-scoped lock.

    Structured fields:
    - ``what_happened``: who holds the lock and since when
    - ``check_triggered``: the rollback lock
    - ``how_to_fix``: how to wait or clear a stale lock
    """

    def __init__(
        self,
        message: str = "Another rollback is in progress",
        database: str = "",
        holder: str = "",
        acquired_at: str = "",
        details: dict | None = None,
    ) -> None:
        self.database = database
        self.holder = holder
        self.acquired_at = acquired_at
        self.what_happened = (
            f'Rollback lock for database "{database}" is held by '
            f"{holder or '(unknown)'} since {acquired_at or '(unknown)'}."
        )
        self.check_triggered = "rollback_lock"
        self.how_to_fix = (
            "1. Wait for the running rollback to finish and resubmit\n"
            "2. Check `schema-rewind status` for the current lock holder\n"
            "3. A lock older than lock.stale_after_seconds is taken over automatically"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"ConcurrentRollbackInProgressError: {self.args[0]}",
            what_happened=self.what_happened,
            check_triggered=self.check_triggered,
            how_to_fix=self.how_to_fix,
        )


# ── Dialect Exceptions ───────────────────────────────────────────────────────


class DialectError(SchemaRewindError):
    """Base exception for database dialect errors."""


class DialectNotFoundError(DialectError):
    """Raised when no dialect adapter is registered under a name."""


# ── Audit Exceptions ─────────────────────────────────────────────────────────


class AuditLogError(SchemaRewindError):
    """Raised when writing to or reading from the audit trail fails."""
