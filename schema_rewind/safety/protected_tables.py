"""
Protected Tables Check
~~~~~~~~~~~~~~~~~~~~~~

Blocks plans whose undo statements touch a protected table.

This check has no override flag; only ``skip_validation`` bypasses it.
"""

from __future__ import annotations

import re

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = ["ProtectedTablesCheck"]


class ProtectedTablesCheck(BaseSafetyCheck):
    """
    Args:
        protected_tables: Table names that undo scripts must never touch.
    """

    def __init__(self, protected_tables: list[str] | None = None) -> None:
        self._tables = list(protected_tables or [])
        self._patterns = {
            table: re.compile(
                r"(?<![\w\"`\[])[\"`\[]?" + re.escape(table) + r"[\"`\]]?(?![\w\"`\]])",
                re.IGNORECASE,
            )
            for table in self._tables
        }

    @property
    def name(self) -> str:
        return "protected_tables"

    @property
    def priority(self) -> int:
        return 10

    def check(self, context: SafetyContext) -> CheckResult:
        touched: dict[str, list[str]] = {}
        for op in context.plan.operations:
            for table, pattern in self._patterns.items():
                if any(pattern.search(s) for s in op.statements):
                    touched.setdefault(table, []).append(op.version.version)

        if not touched:
            return self.passed("No protected tables touched")

        summary = ", ".join(
            f"{table} (by {', '.join(versions)})" for table, versions in touched.items()
        )
        return self.block(
            f"Undo scripts touch protected tables: {summary}",
            tables=sorted(touched),
        )
