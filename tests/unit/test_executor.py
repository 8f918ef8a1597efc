"""Tests for the rollback executor."""

from __future__ import annotations

import pytest

from schema_rewind import ErrorKind
from schema_rewind.core.executor import RollbackExecutor
from schema_rewind.migrations import RollbackPlanner, UndoScriptResolver
from tests.helpers import index_names, table_names, write_undo_script

SLOW_QUERY = (
    "WITH RECURSIVE counter(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM counter "
    "WHERE x < 100000000) SELECT COUNT(*) FROM counter;"
)


@pytest.fixture
def executor(dialect) -> RollbackExecutor:
    return RollbackExecutor(dialect)


@pytest.fixture
def planner(ledger, undo_dir) -> RollbackPlanner:
    return RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))


@pytest.fixture
def conn(dialect, database):
    c = dialect.connect(database)
    yield c
    c.close()


class TestRollbackExecutor:
    """Tests for executing and simulating plans."""

    def test_execute_runs_every_statement(self, executor, planner, dialect, conn, database, orders_undo):
        plan = planner.build("1.0.0")
        dialect.begin(conn)
        result = executor.execute(plan, conn)
        dialect.commit(conn)
        assert result.success
        assert result.statements_executed == 2
        assert result.executed_steps == plan.describe()
        assert "orders" not in table_names(database)
        assert "idx_users_name" not in index_names(database)

    def test_execute_never_commits(self, executor, planner, dialect, conn, database):
        plan = planner.build("1.0.1")
        dialect.begin(conn)
        result = executor.execute(plan, conn)
        dialect.rollback(conn)
        assert result.success
        assert "idx_users_name" in index_names(database)

    def test_first_failure_aborts(self, executor, planner, dialect, conn, undo_dir):
        write_undo_script(undo_dir, "U1.0.1__bad.sql", "DROP TABLE no_such_table;")
        plan = planner.build("1.0.0")
        dialect.begin(conn)
        result = executor.execute(plan, conn)
        dialect.rollback(conn)
        assert not result.success
        assert result.error_kind is ErrorKind.EXECUTION
        assert result.failed_version == "1.0.1"
        assert result.failed_statement == "DROP TABLE no_such_table"
        assert result.executed_steps == [plan.operations[0].describe()]
        assert "no_such_table" in result.error_message

    def test_simulate_always_rolls_back(self, executor, planner, conn, database, orders_undo):
        plan = planner.build("1.0.0")
        result = executor.simulate(plan, conn)
        assert result.success
        assert len(result.executed_steps) == 2
        assert "orders" in table_names(database)
        assert not conn.in_transaction

    def test_long_statement_times_out(self, executor, planner, dialect, conn, undo_dir):
        write_undo_script(undo_dir, "U1.0.1__slow.sql", SLOW_QUERY)
        plan = planner.build("1.0.0")
        dialect.begin(conn)
        result = executor.execute(plan, conn, timeout_seconds=0.05)
        dialect.rollback(conn)
        assert not result.success
        assert result.error_kind is ErrorKind.TIMEOUT
        assert result.failed_version == "1.0.1"
        assert "timed out" in result.error_message
