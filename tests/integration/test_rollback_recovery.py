"""Failure paths: the transaction rolls back and the snapshot restores state."""

from __future__ import annotations

from schema_rewind import ErrorKind, RollbackRequest, RollbackState
from tests.helpers import count_rows, index_names, table_names, write_undo_script

SLOW_QUERY = (
    "WITH RECURSIVE counter(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM counter "
    "WHERE x < 100000000) SELECT COUNT(*) FROM counter;"
)


class TestExecutionFailure:
    """A failing undo statement leaves the schema at its original version."""

    def test_bad_statement_triggers_recovery(self, orchestrator, undo_dir, ledger, database):
        write_undo_script(undo_dir, "U1.0.1__bad.sql", "DROP TABLE no_such_table;")
        result = orchestrator.submit(
            RollbackRequest(target_version="1.0.0", force_data_loss=True)
        )

        assert not result.success
        assert result.error_kind is ErrorKind.EXECUTION
        assert "no_such_table" in result.error_message
        assert result.executed_steps == ["Undo 1.0.2 (add users name index): 1 statement"]
        assert result.recovery_attempted
        assert result.recovery_succeeded is True
        assert result.reached(RollbackState.RECOVERY_ATTEMPTED)
        assert not result.reached(RollbackState.COMMITTED)

        assert ledger.current_version().version == "1.0.2"
        assert "idx_users_name" in index_names(database)
        assert count_rows(database, "users") == 3

        entry = orchestrator.audit.get(result.rollback_id)
        assert entry.recovery_attempted
        assert entry.recovery_succeeded is True

    def test_recovery_disabled(self, make_orchestrator, undo_dir, ledger):
        write_undo_script(undo_dir, "U1.0.1__bad.sql", "DROP TABLE no_such_table;")
        orchestrator = make_orchestrator(rollback={"recover_on_failure": False})
        result = orchestrator.submit(
            RollbackRequest(target_version="1.0.0", force_data_loss=True)
        )
        assert result.error_kind is ErrorKind.EXECUTION
        assert not result.recovery_attempted
        assert result.recovery_succeeded is None
        assert any("recover_on_failure" in w for w in result.warnings)
        assert ledger.current_version().version == "1.0.2"

    def test_failure_without_snapshot_relies_on_transaction(self, orchestrator, undo_dir, ledger):
        write_undo_script(undo_dir, "U1.0.1__bad.sql", "DROP TABLE no_such_table;")
        result = orchestrator.submit(
            RollbackRequest(target_version="1.0.0", force_data_loss=True, create_snapshot=False)
        )
        assert result.error_kind is ErrorKind.EXECUTION
        assert not result.recovery_attempted
        assert result.reached(RollbackState.RECOVERY_ATTEMPTED)
        assert ledger.current_version().version == "1.0.2"


class TestVerificationFailure:
    """Post-execution verification rejects a rollback that broke the schema."""

    def test_missing_critical_table(self, make_orchestrator, orders_undo, ledger, database):
        orchestrator = make_orchestrator(safety={"critical_tables": ["orders"]})
        result = orchestrator.submit(
            RollbackRequest(target_version="1.0.0", force_data_loss=True)
        )

        assert result.error_kind is ErrorKind.VERIFICATION
        assert "orders" in result.error_message
        assert result.recovery_attempted
        assert result.recovery_succeeded is True
        assert ledger.current_version().version == "1.0.2"
        assert "orders" in table_names(database)
        assert count_rows(database, "orders") == 2


class TestTimeout:
    """A rollback that overruns its timeout is aborted and recovered."""

    def test_slow_statement_times_out(self, orchestrator, undo_dir, ledger):
        write_undo_script(undo_dir, "U1.0.1__slow.sql", SLOW_QUERY)
        result = orchestrator.submit(
            RollbackRequest(target_version="1.0.0", timeout_minutes=0.001)
        )

        assert result.error_kind is ErrorKind.TIMEOUT
        assert result.recovery_attempted
        assert ledger.current_version().version == "1.0.2"
        assert orchestrator.status()["lock_holder"] is None


class TestManualRestore:
    """Snapshots can be restored outside a rollback."""

    def test_restore_after_successful_rollback(self, orchestrator, ledger, database):
        result = orchestrator.submit(RollbackRequest(target_version="1.0.1"))
        assert "idx_users_name" not in index_names(database)

        report = orchestrator.restore_snapshot(result.snapshot_id)
        assert report.success
        assert "idx_users_name" in index_names(database)
        # Ledger tables are not part of a snapshot
        assert ledger.current_version().version == "1.0.1"

    def test_restoring_twice_yields_same_counts(self, orchestrator, database):
        result = orchestrator.submit(RollbackRequest(target_version="1.0.1"))
        first = orchestrator.restore_snapshot(result.snapshot_id)
        second = orchestrator.restore_snapshot(result.snapshot_id)
        assert first.restored_tables == second.restored_tables == {"orders": 2, "users": 3}
        assert count_rows(database, "users") == 3
