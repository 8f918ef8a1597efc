"""Tests for the version ledger and the rollback planner."""

from __future__ import annotations

import pytest

from schema_rewind.exceptions import LedgerUnavailableError, UndoScriptMissingError, ValidationError
from schema_rewind.migrations import RollbackPlanner, UndoScriptResolver, VersionLedger


class TestVersionLedger:
    """Tests for reading and retiring ledger entries."""

    def test_current_version(self, ledger):
        current = ledger.current_version()
        assert current.version == "1.0.2"
        assert current.installed_rank == 3
        assert current.description == "add users name index"

    def test_versions_above_is_strictly_descending(self, ledger):
        above = ledger.versions_above("1.0.0")
        assert [v.version for v in above] == ["1.0.2", "1.0.1"]
        ranks = [v.installed_rank for v in above]
        assert ranks == sorted(ranks, reverse=True)
        assert len(set(ranks)) == len(ranks)

    def test_versions_above_length_matches_rank_gap(self, ledger):
        current = ledger.current_version()
        for target in ("1.0.0", "1.0.1", "1.0.2"):
            anchor = ledger.get(target)
            assert len(ledger.versions_above(target)) == (
                current.installed_rank - anchor.installed_rank
            )

    def test_versions_above_unknown_target_raises(self, ledger):
        with pytest.raises(ValidationError):
            ledger.versions_above("9.9.9")

    def test_failed_entry_is_not_current(self, ledger):
        ledger.record("1.0.3", "broken migration", success=False)
        assert ledger.current_version().version == "1.0.2"
        assert [v.version for v in ledger.versions_above("1.0.1")] == ["1.0.2"]

    def test_history_is_in_application_order(self, ledger):
        assert [v.version for v in ledger.history()] == ["1.0.0", "1.0.1", "1.0.2"]
        assert [v.version for v in ledger.history(limit=2)] == ["1.0.1", "1.0.2"]

    def test_retire_removes_entries_above_target(self, ledger, dialect, database):
        conn = dialect.connect(database)
        try:
            dialect.begin(conn)
            removed = ledger.retire("1.0.0", conn)
            dialect.commit(conn)
        finally:
            conn.close()
        assert removed == 2
        assert ledger.current_version().version == "1.0.0"
        assert ledger.versions_above("1.0.0") == []

    def test_retire_rolls_back_with_transaction(self, ledger, dialect, database):
        conn = dialect.connect(database)
        try:
            dialect.begin(conn)
            ledger.retire("1.0.0", conn)
            dialect.rollback(conn)
        finally:
            conn.close()
        assert ledger.current_version().version == "1.0.2"

    def test_missing_table_is_unavailable(self, dialect, tmp_path):
        ledger = VersionLedger(dialect, str(tmp_path / "empty.db"))
        with pytest.raises(LedgerUnavailableError):
            ledger.current_version()

    def test_empty_ledger_has_no_current_version(self, dialect, tmp_path):
        ledger = VersionLedger(dialect, str(tmp_path / "fresh.db"))
        ledger.ensure_schema()
        assert ledger.current_version() is None
        assert ledger.history() == []


class TestRollbackPlanner:
    """Tests for building rollback plans."""

    def test_plan_has_one_operation_per_version(self, ledger, undo_dir):
        planner = RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))
        plan = planner.build("1.0.1")
        assert plan.current_version.version == "1.0.2"
        assert plan.target_version.version == "1.0.1"
        assert plan.versions == ["1.0.2"]
        assert len(plan) == 1

    def test_plan_is_newest_first(self, ledger, undo_dir, orders_undo):
        planner = RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))
        plan = planner.build("1.0.0")
        assert plan.versions == ["1.0.2", "1.0.1"]
        assert plan.describe() == [
            "Undo 1.0.2 (add users name index): 1 statement",
            "Undo 1.0.1 (add orders table): 1 statement",
        ]

    def test_missing_undo_script_rejects_plan(self, ledger, undo_dir):
        planner = RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))
        with pytest.raises(UndoScriptMissingError):
            planner.build("1.0.0")

    @pytest.mark.parametrize(
        ("target", "message"),
        [
            ("9.9.9", "not in the ledger"),
            ("1.0.2", "already at version"),
        ],
    )
    def test_invalid_targets(self, ledger, undo_dir, target, message):
        planner = RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))
        with pytest.raises(ValidationError, match=message):
            planner.build(target)

    def test_failed_target_is_rejected(self, ledger, undo_dir):
        ledger.record("1.0.3", "broken migration", success=False)
        planner = RollbackPlanner(ledger, UndoScriptResolver([undo_dir]))
        with pytest.raises(ValidationError, match="not applied successfully"):
            planner.build("1.0.3")

    def test_empty_ledger_is_rejected(self, dialect, tmp_path):
        ledger = VersionLedger(dialect, str(tmp_path / "fresh.db"))
        ledger.ensure_schema()
        planner = RollbackPlanner(ledger, UndoScriptResolver([]))
        with pytest.raises(ValidationError, match="empty"):
            planner.build("1.0.0")
