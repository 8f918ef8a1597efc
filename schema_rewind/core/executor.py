"""
Rollback Executor
~~~~~~~~~~~~~~~~~

Applies the undo statements of a rollback plan to the live schema,
bounded by a timeout.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from schema_rewind.core.models import ExecutionResult, RollbackPlan
from schema_rewind.core.verdict import ErrorKind
from schema_rewind.dialects.base import DialectAdapter

__all__ = ["RollbackExecutor"]

logger = logging.getLogger(__name__)


class RollbackExecutor:
    """
    Runs plan operations in order, statements sequentially.

    Responsibilities:
    - Execute every undo statement on the caller's connection
    - Abort on the first failure; later operations are not attempted
    - Enforce the timeout between statements and inside long statements
    - Build an ExecutionResult

    ``execute`` runs inside a transaction the caller owns and never
    commits. ``simulate`` opens its own transaction and always rolls back.
    """

    def __init__(self, dialect: DialectAdapter, timeout_seconds: float = 1800.0) -> None:
        self._dialect = dialect
        self._timeout = timeout_seconds

    def execute(
        self,
        plan: RollbackPlan,
        conn: Any,
        timeout_seconds: float | None = None,
    ) -> ExecutionResult:
        """
        Execute ``plan`` on ``conn`` inside the caller's transaction.

        Args:
            plan: The rollback plan.
            conn: Connection with an open transaction.
            timeout_seconds: Overrides the default timeout.

        Returns:
            ExecutionResult; failures carry EXECUTION or TIMEOUT.
        """
        return self._run(plan, conn, timeout_seconds)

    def simulate(
        self,
        plan: RollbackPlan,
        conn: Any,
        timeout_seconds: float | None = None,
    ) -> ExecutionResult:
        """Run ``plan`` in a transaction that is always rolled back."""
        self._dialect.begin(conn)
        try:
            result = self._run(plan, conn, timeout_seconds)
        finally:
            self._dialect.rollback(conn)
        logger.info(
            "Simulated rollback to %s: %s",
            plan.target_version.version,
            "ok" if result.success else result.error_message,
        )
        return result

    def _run(
        self,
        plan: RollbackPlan,
        conn: Any,
        timeout_seconds: float | None,
    ) -> ExecutionResult:
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        start = time.perf_counter()
        deadline = time.monotonic() + timeout
        result = ExecutionResult(success=True)

        def _fail(
            kind: ErrorKind,
            message: str,
            version: str,
            statement: str | None,
        ) -> ExecutionResult:
            result.success = False
            result.error_kind = kind
            result.error_message = message
            result.failed_version = version
            result.failed_statement = statement
            result.duration_ms = int((time.perf_counter() - start) * 1000)
            logger.error("Undo of %s failed: %s", version, message)
            return result

        self._dialect.set_deadline(conn, deadline)
        try:
            for op in plan.operations:
                version = op.version.version
                for statement in op.statements:
                    if time.monotonic() > deadline:
                        return _fail(
                            ErrorKind.TIMEOUT,
                            f"Rollback timed out after {timeout:g}s before: {statement}",
                            version,
                            statement,
                        )
                    try:
                        conn.execute(statement)
                    except Exception as exc:
                        if self._dialect.is_interrupt(exc):
                            return _fail(
                                ErrorKind.TIMEOUT,
                                f"Rollback timed out after {timeout:g}s during: {statement}",
                                version,
                                statement,
                            )
                        return _fail(
                            ErrorKind.EXECUTION,
                            f"Undo of {version} failed on statement {statement!r}: {exc}",
                            version,
                            statement,
                        )
                    result.statements_executed += 1
                result.executed_steps.append(op.describe())
                logger.debug("Completed %s", op.describe())
        finally:
            self._dialect.set_deadline(conn, None)

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        return result
