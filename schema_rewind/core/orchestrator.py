"""
Rollback Orchestrator
~~~~~~~~~~~~~~~~~~~~~

The primary entry point for schema-rewind. Assembles the ledger, undo
script resolver, safety guard, snapshot store, executor and audit trail,
and runs every rollback through one protocol:

    RECEIVED -> VALIDATING -> SNAPSHOT_PENDING -> (DRY_RUN | EXECUTING)
    -> VERIFYING -> (COMMITTED | RECOVERY_ATTEMPTED) -> AUDITED

``submit()`` never raises for a rollback failure. Every outcome is a
RollbackResult carrying an ErrorKind, and every outcome is audited.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from schema_rewind.audit.exporters.stdout_exporter import StdoutExporter
from schema_rewind.audit.exporters.webhook_exporter import WebhookExporter
from schema_rewind.audit.trail import AuditTrail
from schema_rewind.config.loader import load_config, load_config_from_dict
from schema_rewind.config.schema import RewindConfig
from schema_rewind.core.executor import RollbackExecutor
from schema_rewind.core.locking import RollbackLock
from schema_rewind.core.models import (
    AuditEntry,
    AuditFilter,
    PreflightReport,
    RollbackPlan,
    RollbackRequest,
    RollbackResult,
)
from schema_rewind.core.verdict import ErrorKind, RollbackState
from schema_rewind.dialects.base import SessionActivity
from schema_rewind.dialects.registry import DialectRegistry, default_registry
from schema_rewind.exceptions import (
    AuditLogError,
    ConcurrentRollbackInProgressError,
    LedgerUnavailableError,
    SafetyBlockedError,
    SnapshotError,
    ValidationError,
    VerificationError,
)
from schema_rewind.migrations.ledger import VersionLedger
from schema_rewind.migrations.planner import RollbackPlanner
from schema_rewind.migrations.undo_scripts import UndoScriptResolver
from schema_rewind.safety.concurrent_activity import ConcurrentActivityCheck
from schema_rewind.safety.connection_load import ConnectionLoadCheck
from schema_rewind.safety.data_loss import DataLossCheck
from schema_rewind.safety.environment import (
    DeploymentSignalClassifier,
    EnvironmentCheck,
    EnvironmentClassifier,
)
from schema_rewind.safety.guard import SafetyGuard
from schema_rewind.safety.integrity import IntegrityVerifier
from schema_rewind.safety.protected_tables import ProtectedTablesCheck
from schema_rewind.safety.timing_window import TimingWindowCheck
from schema_rewind.snapshot.models import RestoreReport
from schema_rewind.snapshot.store import SnapshotStore

__all__ = ["RollbackOrchestrator"]

logger = logging.getLogger(__name__)


class RollbackOrchestrator:
    """
    Composes the rollback components into the end-to-end protocol.

    Args:
        config: Validated configuration. Defaults to the built-in defaults.
        classifier: Environment classifier. Defaults to deployment signals.
        clock: Local-time clock used by timing windows.
        dialects: Registry the configured dialect is resolved from.
        executor: Plan executor. Defaults to RollbackExecutor.
        snapshot_store: Snapshot store. Defaults to one built from config.
    """

    def __init__(
        self,
        config: RewindConfig | None = None,
        classifier: EnvironmentClassifier | None = None,
        clock: Callable[[], datetime] | None = None,
        dialects: DialectRegistry | None = None,
        executor: RollbackExecutor | None = None,
        snapshot_store: SnapshotStore | None = None,
    ) -> None:
        self._config = config or load_config_from_dict({})
        db_cfg = self._config.database
        self._database = db_cfg.path

        # ── Subsystems ────────────────────────────────────────────
        self._dialect = (dialects or default_registry()).get(db_cfg.dialect)
        self._ledger = VersionLedger(self._dialect, self._database, db_cfg.ledger_table)
        self._resolver = UndoScriptResolver(
            script_dirs=self._config.rollback.undo_script_dirs,
            noop_versions=self._config.rollback.noop_versions,
            strict=self._config.rollback.strict_undo_coverage,
        )
        self._planner = RollbackPlanner(self._ledger, self._resolver)
        self._classifier = classifier or DeploymentSignalClassifier(
            database=self._database,
            hostname=self._config.safety.hostname,
            markers=self._config.safety.production_markers,
            profile_env_var=self._config.safety.profile_env_var,
        )
        self.guard = SafetyGuard(
            classifier=self._classifier,
            activity_source=self._observe_sessions,
            clock=clock,
        )
        self._integrity = IntegrityVerifier(
            self._dialect, critical_tables=self._config.safety.critical_tables
        )
        self._executor = executor or RollbackExecutor(self._dialect)
        self._snapshots = snapshot_store or SnapshotStore(
            dialect=self._dialect,
            database=self._database,
            storage_path=self._config.snapshot.storage_path,
            system_table_prefixes=db_cfg.system_table_prefixes,
            excluded_tables=[
                db_cfg.ledger_table,
                self._config.audit.table_name,
                self._config.lock.table_name,
            ],
            parallel_threshold=self._config.snapshot.parallel_threshold,
            max_workers=self._config.snapshot.max_workers,
            capture_timeout_seconds=self._config.snapshot.capture_timeout_seconds,
        )
        self._audit = AuditTrail(
            self._dialect, self._database, self._config.audit.table_name
        )

        # ── Initialize ────────────────────────────────────────────
        self._setup_safety_checks()
        self._setup_exporters()

    # ── Properties ─────────────────────────────────────────────────

    @property
    def version(self) -> str:
        """Return the schema-rewind version string."""
        from schema_rewind import __version__

        return __version__

    @property
    def config(self) -> RewindConfig:
        return self._config

    @property
    def ledger(self) -> VersionLedger:
        return self._ledger

    @property
    def snapshots(self) -> SnapshotStore:
        return self._snapshots

    @property
    def audit(self) -> AuditTrail:
        return self._audit

    @property
    def resolver(self) -> UndoScriptResolver:
        return self._resolver

    # ── Class Methods (constructors) ──────────────────────────────

    @classmethod
    def from_config(cls, path: str, **kwargs: Any) -> RollbackOrchestrator:
        """
        Create an orchestrator from a YAML config file.

        Args:
            path: Path to schema_rewind.yaml.

        Returns:
            Configured RollbackOrchestrator instance.
        """
        return cls(config=load_config(path), **kwargs)

    @classmethod
    def default(cls, **kwargs: Any) -> RollbackOrchestrator:
        """Create an orchestrator with the default configuration."""
        return cls(config=load_config_from_dict({}), **kwargs)

    # ── Setup Methods ─────────────────────────────────────────────

    def _setup_safety_checks(self) -> None:
        """Initialize the default safety checks."""
        safety = self._config.safety
        toggles = safety.checks

        if toggles.protected_tables.enabled:
            self.guard.add(ProtectedTablesCheck(safety.protected_tables))
        if toggles.environment.enabled:
            self.guard.add(EnvironmentCheck())
        if toggles.data_loss.enabled:
            self.guard.add(DataLossCheck(keywords=safety.data_loss_keywords))
        if toggles.timing_window.enabled:
            self.guard.add(
                TimingWindowCheck(
                    windows=safety.restricted_windows,
                    production_only=safety.windows_production_only,
                )
            )
        if toggles.concurrent_activity.enabled:
            self.guard.add(
                ConcurrentActivityCheck(
                    max_long_running_sessions=safety.max_long_running_sessions,
                    threshold_seconds=safety.long_running_threshold_seconds,
                )
            )
        if toggles.connection_load.enabled:
            self.guard.add(ConnectionLoadCheck(safety.max_active_connections))

    def _setup_exporters(self) -> None:
        """Configure audit exporters from config."""
        for exporter_name in self._config.audit.exporters:
            if exporter_name == "stdout":
                self._audit.add_exporter(StdoutExporter())
            elif exporter_name == "stdout_text":
                self._audit.add_exporter(StdoutExporter(fmt="text"))
            elif exporter_name == "webhook":
                if self._config.audit.webhook_url:
                    self._audit.add_exporter(
                        WebhookExporter(
                            self._config.audit.webhook_url,
                            failures_only=self._config.audit.webhook_failures_only,
                        )
                    )
                else:
                    logger.warning("Webhook exporter configured without audit.webhook_url")
            else:
                logger.warning("Unknown audit exporter: %s", exporter_name)

    def _observe_sessions(self) -> SessionActivity:
        return self._dialect.session_activity(
            self._database, self._config.safety.long_running_threshold_seconds
        )

    def _new_lock(self) -> RollbackLock:
        return RollbackLock(
            self._dialect,
            self._database,
            table=self._config.lock.table_name,
            stale_after_seconds=self._config.lock.stale_after_seconds,
        )

    def _timeout_seconds(self, request: RollbackRequest) -> float:
        minutes = request.timeout_minutes
        if minutes is None:
            minutes = self._config.rollback.timeout_minutes
        return float(minutes) * 60.0

    # ── Primary API: Submit ───────────────────────────────────────

    def submit(
        self,
        request: RollbackRequest,
        cancel_event: threading.Event | None = None,
    ) -> RollbackResult:
        """
        Run a rollback request through the full protocol.

        Args:
            request: The rollback request.
            cancel_event: Set to cancel the attempt. Honoured only
                before execution starts.

        Returns:
            RollbackResult describing the terminal outcome.
        """
        start = time.perf_counter()
        rollback_id = str(uuid.uuid4())
        states: list[RollbackState] = [RollbackState.RECEIVED]
        lock = self._new_lock()

        logger.info(
            "Rollback %s received: target=%s dry_run=%s requested_by=%s",
            rollback_id,
            request.target_version,
            request.dry_run,
            request.requested_by or "(unknown)",
        )

        try:
            try:
                result = self._process(request, rollback_id, states, lock, cancel_event)
            except Exception as exc:
                logger.exception("Rollback %s failed unexpectedly", rollback_id)
                result = RollbackResult.failed(
                    rollback_id,
                    request.target_version,
                    ErrorKind.EXECUTION,
                    f"Unexpected error: {exc}",
                )

            result.duration_ms = int((time.perf_counter() - start) * 1000)
            result.states = states
            self._audit_result(result, request)
        finally:
            try:
                lock.release()
            except Exception as exc:
                logger.error("Failed to release rollback lock for %s: %s", rollback_id, exc)

        logger.info(
            "Rollback %s finished: %s%s (%dms)",
            rollback_id,
            result.result_type.value,
            f" [{result.error_kind.value}]" if result.error_kind else "",
            result.duration_ms,
        )
        return result

    async def submit_async(
        self,
        request: RollbackRequest,
        cancel_event: threading.Event | None = None,
    ) -> RollbackResult:
        """Async version of submit; runs the attempt on a worker thread."""
        return await asyncio.to_thread(self.submit, request, cancel_event)

    # ── Protocol Phases ───────────────────────────────────────────

    def _process(
        self,
        request: RollbackRequest,
        rollback_id: str,
        states: list[RollbackState],
        lock: RollbackLock,
        cancel_event: threading.Event | None,
    ) -> RollbackResult:
        target = request.target_version

        def _failed(kind: ErrorKind, message: str) -> RollbackResult:
            return RollbackResult.failed(rollback_id, target, kind, message)

        # ── VALIDATING ──
        states.append(RollbackState.VALIDATING)
        try:
            plan = self._planner.build(target)
        except ValidationError as exc:
            logger.warning("Rollback %s rejected: %s", rollback_id, exc)
            return _failed(ErrorKind.VALIDATION, f"Validation failed: {exc}")
        except LedgerUnavailableError as exc:
            logger.error("Rollback %s aborted: %s", rollback_id, exc)
            return _failed(ErrorKind.LEDGER_UNAVAILABLE, str(exc))

        def _concurrent(exc: ConcurrentRollbackInProgressError) -> RollbackResult:
            logger.warning("Rollback %s: %s", rollback_id, exc.what_happened)
            result = _failed(
                ErrorKind.CONCURRENT_ROLLBACK,
                f"Another rollback is in progress: {exc.what_happened}",
            )
            result.from_version = plan.current_version.version
            return result

        # A running rollback holds the database write lock, which the
        # concurrent-activity check would otherwise report as a block.
        try:
            lock.check_available()
        except ConcurrentRollbackInProgressError as exc:
            return _concurrent(exc)

        warnings: list[str] = []
        report = None
        if request.skip_validation:
            logger.warning("Rollback %s skips safety validation", rollback_id)
            warnings.append("Safety validation skipped by request")
        else:
            report = self.guard.evaluate(request, plan)
            if report.blocked:
                blocked = _failed(
                    ErrorKind.SAFETY_BLOCKED,
                    f"Rollback blocked by safety guard: {report.summary()}",
                )
                blocked.safety_report = report
                blocked.from_version = plan.current_version.version
                logger.warning("%s", SafetyBlockedError(report=report))
                return blocked
            warnings.extend(f"{r.check_name}: {r.reason}" for r in report.warnings)

        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(rollback_id, target, plan, None, warnings)

        # ── Lock ──
        try:
            lock.acquire()
        except ConcurrentRollbackInProgressError as exc:
            result = _concurrent(exc)
            result.safety_report = report
            return result

        # ── SNAPSHOT_PENDING ──
        states.append(RollbackState.SNAPSHOT_PENDING)
        snapshot_id: str | None = None
        if request.dry_run:
            logger.debug("Dry run %s: snapshot skipped", rollback_id)
        elif self._config.snapshot.enabled and request.create_snapshot:
            try:
                snapshot_id = self._snapshots.create(
                    label=rollback_id,
                    database_version=plan.current_version.version,
                )
            except SnapshotError as exc:
                logger.error("Rollback %s: snapshot failed: %s", rollback_id, exc)
                result = _failed(ErrorKind.SNAPSHOT, f"Snapshot capture failed: {exc}")
                result.from_version = plan.current_version.version
                result.safety_report = report
                result.warnings = warnings
                return result
            snapshot = self._snapshots.get(snapshot_id)
            if snapshot.degraded:
                warnings.append(
                    f"Snapshot {snapshot_id} is degraded; not captured: "
                    + ", ".join(sorted(snapshot.failed_tables))
                )
        else:
            warnings.append("No snapshot taken; recovery will rely on transaction rollback only")

        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(rollback_id, target, plan, snapshot_id, warnings)

        timeout = self._timeout_seconds(request)

        # ── DRY_RUN ──
        if request.dry_run:
            states.append(RollbackState.DRY_RUN)
            result = self._dry_run(rollback_id, plan, timeout)
        else:
            # ── EXECUTING / VERIFYING ──
            result = self._execute(rollback_id, plan, snapshot_id, timeout, states)

        result.from_version = plan.current_version.version
        result.safety_report = report
        result.warnings = warnings + result.warnings
        return result

    def _cancelled(
        self,
        rollback_id: str,
        target: str,
        plan: RollbackPlan,
        snapshot_id: str | None,
        warnings: list[str],
    ) -> RollbackResult:
        if snapshot_id is not None:
            self._snapshots.delete(snapshot_id)
        logger.info("Rollback %s cancelled before execution", rollback_id)
        result = RollbackResult.failed(
            rollback_id, target, ErrorKind.CANCELLED, "Rollback cancelled before execution"
        )
        result.from_version = plan.current_version.version
        result.warnings = warnings
        return result

    def _dry_run(self, rollback_id: str, plan: RollbackPlan, timeout: float) -> RollbackResult:
        target = plan.target_version.version
        conn = self._dialect.connect(self._database)
        try:
            execution = self._executor.simulate(plan, conn, timeout)
        finally:
            conn.close()

        if not execution.success:
            result = RollbackResult.failed(
                rollback_id,
                target,
                execution.error_kind or ErrorKind.EXECUTION,
                f"Dry run failed: {execution.error_message}",
            )
            result.executed_steps = execution.executed_steps
            return result
        return RollbackResult.dry_run_succeeded(rollback_id, target, plan.describe())

    def _execute(
        self,
        rollback_id: str,
        plan: RollbackPlan,
        snapshot_id: str | None,
        timeout: float,
        states: list[RollbackState],
    ) -> RollbackResult:
        target = plan.target_version.version
        conn = self._dialect.connect(self._database)
        try:
            try:
                self._dialect.begin(conn)
            except Exception as exc:
                logger.error("Rollback %s could not begin a transaction: %s", rollback_id, exc)
                return RollbackResult.failed(
                    rollback_id,
                    target,
                    ErrorKind.EXECUTION,
                    f"Could not begin rollback transaction: {exc}",
                    snapshot_id=snapshot_id,
                )

            states.append(RollbackState.EXECUTING)
            logger.info("Rollback %s executing %d operations", rollback_id, len(plan))
            execution = self._executor.execute(plan, conn, timeout)
            if not execution.success:
                self._dialect.rollback(conn)
                result = RollbackResult.failed(
                    rollback_id,
                    target,
                    execution.error_kind or ErrorKind.EXECUTION,
                    execution.error_message or "Rollback execution failed",
                    snapshot_id=snapshot_id,
                )
                result.executed_steps = execution.executed_steps
                return self._recover(result, states)

            states.append(RollbackState.VERIFYING)
            try:
                self._ledger.retire(target, conn)
                self._verify(target, conn)
                self._dialect.commit(conn)
            except LedgerUnavailableError as exc:
                self._dialect.rollback(conn)
                logger.error("Rollback %s: ledger unavailable: %s", rollback_id, exc)
                result = RollbackResult.failed(
                    rollback_id,
                    target,
                    ErrorKind.LEDGER_UNAVAILABLE,
                    str(exc),
                    snapshot_id=snapshot_id,
                )
                result.executed_steps = execution.executed_steps
                return result
            except Exception as exc:
                self._dialect.rollback(conn)
                result = RollbackResult.failed(
                    rollback_id,
                    target,
                    ErrorKind.VERIFICATION,
                    f"Verification failed: {exc}",
                    snapshot_id=snapshot_id,
                )
                result.executed_steps = execution.executed_steps
                return self._recover(result, states)
        finally:
            conn.close()

        states.append(RollbackState.COMMITTED)
        logger.info("Rollback %s committed at version %s", rollback_id, target)
        return RollbackResult.succeeded(
            rollback_id, target, snapshot_id, execution.executed_steps
        )

    def _verify(self, target: str, conn: Any) -> None:
        current = self._ledger.current_version(conn)
        if current is None or current.version != target:
            raise VerificationError(
                f"Ledger reports {current.version if current else 'no version'} "
                f"after rollback, expected {target}"
            )
        problems = self._integrity.verify(conn)
        if problems:
            raise VerificationError("; ".join(problems))

    def _recover(self, result: RollbackResult, states: list[RollbackState]) -> RollbackResult:
        """Restore the attempt's snapshot after its transaction was rolled back."""
        states.append(RollbackState.RECOVERY_ATTEMPTED)
        snapshot_id = result.snapshot_id

        if not self._config.rollback.recover_on_failure:
            result.warnings.append("Snapshot restore disabled by rollback.recover_on_failure")
            return result
        if snapshot_id is None:
            result.warnings.append("No snapshot available; relied on transaction rollback")
            return result

        result.recovery_attempted = True
        try:
            report = self._snapshots.restore(snapshot_id)
        except SnapshotError as exc:
            logger.error("Recovery from snapshot %s failed: %s", snapshot_id, exc)
            result.recovery_succeeded = False
            result.warnings.append(f"Recovery from snapshot {snapshot_id} failed: {exc}")
            return result

        result.recovery_succeeded = report.success
        note = f"Recovery from snapshot {snapshot_id}: {report.summary()}"
        if report.success:
            logger.info("%s", note)
        else:
            logger.error("%s", note)
        result.warnings.append(note)
        return result

    def _audit_result(self, result: RollbackResult, request: RollbackRequest) -> None:
        try:
            self._audit.write(AuditEntry.from_result(result, request))
        except AuditLogError as exc:
            logger.error("Failed to audit rollback %s: %s", result.rollback_id, exc)
            result.warnings.append(f"Audit write failed: {exc}")
            return
        result.states.append(RollbackState.AUDITED)

    # ── Read-only API ─────────────────────────────────────────────

    def validate(self, request: RollbackRequest) -> PreflightReport:
        """
        Pre-flight a request without locking, snapshotting or auditing.

        Returns:
            PreflightReport with the plan and the safety report.
        """
        preflight = PreflightReport(target_version=request.target_version)
        try:
            preflight.plan = self._planner.build(request.target_version)
        except (ValidationError, LedgerUnavailableError) as exc:
            preflight.errors.append(str(exc))
            return preflight
        preflight.safety_report = self.guard.evaluate(request, preflight.plan)
        return preflight

    def status(self) -> dict[str, Any]:
        """Report the ledger position, lock holder and snapshot count."""
        current = self._ledger.current_version()
        history = self._ledger.history()
        pending = [
            v.version
            for v in history
            if not v.success and (current is None or v.installed_rank > current.installed_rank)
        ]
        holder = self._new_lock().current_holder()
        return {
            "database": self._database,
            "dialect": self._dialect.name,
            "current_version": current.version if current else None,
            "applied_versions": [v.version for v in history if v.success],
            "pending_versions": pending,
            "lock_holder": holder.holder if holder else None,
            "lock_acquired_at": holder.locked_at if holder else None,
            "snapshot_count": len(self._snapshots.list()),
        }

    def history(self, limit: int = 20) -> list[AuditEntry]:
        """Return the most recent audit entries."""
        return self._audit.query(AuditFilter(limit=limit))

    def restore_snapshot(self, snapshot_id: str) -> RestoreReport:
        """Restore a snapshot outside a rollback, holding the rollback lock."""
        lock = self._new_lock()
        with lock:
            return self._snapshots.restore(snapshot_id)
