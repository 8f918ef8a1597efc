"""Two rollbacks against the same database: exactly one may run."""

from __future__ import annotations

import threading

import pytest

from schema_rewind import (
    ErrorKind,
    RollbackOrchestrator,
    RollbackRequest,
    RollbackState,
    StaticEnvironmentClassifier,
)
from schema_rewind.core.executor import RollbackExecutor
from schema_rewind.snapshot import SnapshotStore
from tests.helpers import QUIET_HOURS


class _GatedSnapshotStore(SnapshotStore):
    """Snapshot store that pauses inside create() until released."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def create(self, label: str = "manual", database_version: str | None = None) -> str:
        self.entered.set()
        self.release.wait(timeout=10)
        return super().create(label=label, database_version=database_version)


class _GatedExecutor(RollbackExecutor):
    """Executor that pauses inside execute(), with the write transaction open."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def execute(self, plan, conn, timeout_seconds=None):
        self.entered.set()
        self.release.wait(timeout=30)
        return super().execute(plan, conn, timeout_seconds)


@pytest.fixture
def gated(tmp_path, dialect, database) -> _GatedSnapshotStore:
    return _GatedSnapshotStore(
        dialect=dialect,
        database=database,
        storage_path=str(tmp_path / "gated"),
        system_table_prefixes=["sqlite_", "schema_version_", "schema_rewind_"],
    )


@pytest.fixture
def gated_orchestrator(make_config, gated) -> RollbackOrchestrator:
    orchestrator = RollbackOrchestrator(
        config=make_config(),
        classifier=StaticEnvironmentClassifier(production=False),
        clock=lambda: QUIET_HOURS,
        snapshot_store=gated,
    )
    orchestrator.audit.clear_exporters()
    return orchestrator


class TestConcurrentRollbacks:
    """Tests for the database-scoped rollback lock under contention."""

    def test_second_rollback_is_rejected(self, gated_orchestrator, gated, ledger):
        results = {}

        def first() -> None:
            results["first"] = gated_orchestrator.submit(RollbackRequest(target_version="1.0.1"))

        worker = threading.Thread(target=first)
        worker.start()
        try:
            assert gated.entered.wait(timeout=10)
            second = gated_orchestrator.submit(RollbackRequest(target_version="1.0.1"))
        finally:
            gated.release.set()
            worker.join(timeout=30)

        first_result = results["first"]
        assert first_result.success, first_result.error_message
        assert second.error_kind is ErrorKind.CONCURRENT_ROLLBACK
        assert second.error_message.startswith("Another rollback is in progress")
        assert not second.reached(RollbackState.SNAPSHOT_PENDING)

        executing = [r for r in (first_result, second) if r.reached(RollbackState.EXECUTING)]
        assert executing == [first_result]
        assert ledger.current_version().version == "1.0.1"

        # Both attempts are audited
        assert gated_orchestrator.audit.get(second.rollback_id) is not None
        assert gated_orchestrator.audit.get(first_result.rollback_id) is not None

    def test_lock_is_released_after_rejection(self, gated_orchestrator, gated):
        gated.release.set()
        first = gated_orchestrator.submit(RollbackRequest(target_version="1.0.1", dry_run=True))
        second = gated_orchestrator.submit(RollbackRequest(target_version="1.0.1", dry_run=True))
        assert first.success
        assert second.success
        assert gated_orchestrator.status()["lock_holder"] is None

    def test_status_reports_holder_while_running(self, gated_orchestrator, gated):
        worker = threading.Thread(
            target=gated_orchestrator.submit,
            args=(RollbackRequest(target_version="1.0.1"),),
        )
        worker.start()
        try:
            assert gated.entered.wait(timeout=10)
            status = gated_orchestrator.status()
            assert status["lock_holder"] is not None
            assert status["lock_acquired_at"] is not None
        finally:
            gated.release.set()
            worker.join(timeout=30)
        assert gated_orchestrator.status()["lock_holder"] is None


@pytest.fixture
def parked_executor(dialect) -> _GatedExecutor:
    return _GatedExecutor(dialect)


@pytest.fixture
def parked_orchestrator(make_config, parked_executor) -> RollbackOrchestrator:
    orchestrator = RollbackOrchestrator(
        config=make_config(),
        classifier=StaticEnvironmentClassifier(production=False),
        clock=lambda: QUIET_HOURS,
        executor=parked_executor,
    )
    orchestrator.audit.clear_exporters()
    return orchestrator


class TestRollbackDuringExecution:
    """A second rollback while the first holds its write transaction."""

    def test_second_rollback_reports_concurrent_rollback(
        self, parked_orchestrator, parked_executor, ledger
    ):
        results = {}

        def first() -> None:
            results["first"] = parked_orchestrator.submit(RollbackRequest(target_version="1.0.1"))

        worker = threading.Thread(target=first)
        worker.start()
        try:
            assert parked_executor.entered.wait(timeout=10)
            second = parked_orchestrator.submit(RollbackRequest(target_version="1.0.1"))
        finally:
            parked_executor.release.set()
            worker.join(timeout=30)

        assert second.error_kind is ErrorKind.CONCURRENT_ROLLBACK
        assert second.error_message.startswith("Another rollback is in progress")
        assert second.from_version == "1.0.2"
        # Rejected before the safety guard ran
        assert second.safety_report is None
        assert not second.reached(RollbackState.SNAPSHOT_PENDING)

        first_result = results["first"]
        assert first_result.success, first_result.error_message
        assert ledger.current_version().version == "1.0.1"
        assert parked_orchestrator.status()["lock_holder"] is None
