"""
schema-rewind Status Enums
~~~~~~~~~~~~~~~~~~~~~~~~~~

Core enums that define safety check outcomes, rollback result types,
error kinds, and the orchestrator's state machine.
"""

from enum import StrEnum

__all__ = [
    "CheckStatus",
    "ResultType",
    "ErrorKind",
    "RollbackState",
    "RollbackType",
]


class CheckStatus(StrEnum):
    """
    Outcome of a single safety check.

    - PASS: No risk observed.
    - WARN: Risk observed; the rollback may proceed and the warning is audited.
    - BLOCK: The rollback must not proceed unless the check's override is set.
    """

    PASS = "PASS"
    WARN = "WARN"
    BLOCK = "BLOCK"

    def is_blocking(self) -> bool:
        """Return True if this status stops the rollback."""
        return self is CheckStatus.BLOCK

    def severity(self) -> int:
        """Return an ordering key; higher is more severe."""
        return {
            CheckStatus.PASS: 0,
            CheckStatus.WARN: 1,
            CheckStatus.BLOCK: 2,
        }[self]


class ResultType(StrEnum):
    """Classification of a terminal rollback outcome."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    DRY_RUN_SUCCESS = "DRY_RUN_SUCCESS"


class ErrorKind(StrEnum):
    """
    Failure taxonomy carried on every failed RollbackResult.

    VALIDATION and SAFETY_BLOCKED are reported before any snapshot or
    mutation. EXECUTION, TIMEOUT and VERIFICATION trigger recovery.
    LEDGER_UNAVAILABLE is fatal and skips recovery.
    """

    VALIDATION = "VALIDATION"
    SAFETY_BLOCKED = "SAFETY_BLOCKED"
    SNAPSHOT = "SNAPSHOT"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    VERIFICATION = "VERIFICATION"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    CONCURRENT_ROLLBACK = "CONCURRENT_ROLLBACK"
    CANCELLED = "CANCELLED"

    def triggers_recovery(self) -> bool:
        """Return True if this failure restores the attempt's snapshot."""
        return self in (ErrorKind.EXECUTION, ErrorKind.TIMEOUT, ErrorKind.VERIFICATION)


class RollbackState(StrEnum):
    """States of the rollback orchestrator."""

    RECEIVED = "RECEIVED"
    VALIDATING = "VALIDATING"
    SNAPSHOT_PENDING = "SNAPSHOT_PENDING"
    DRY_RUN = "DRY_RUN"
    EXECUTING = "EXECUTING"
    VERIFYING = "VERIFYING"
    COMMITTED = "COMMITTED"
    RECOVERY_ATTEMPTED = "RECOVERY_ATTEMPTED"
    AUDITED = "AUDITED"


class RollbackType(StrEnum):
    """Operator-declared kind of rollback, recorded in the audit trail."""

    STANDARD = "STANDARD"
    EMERGENCY = "EMERGENCY"
    HOTFIX = "HOTFIX"
