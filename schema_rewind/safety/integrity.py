"""
Integrity Verifier
~~~~~~~~~~~~~~~~~~

Structural checks run in the VERIFYING phase, on the rollback's own
connection and before commit: foreign key consistency and presence of
critical tables.
"""

from __future__ import annotations

import logging
from typing import Any

from schema_rewind.dialects.base import DialectAdapter

__all__ = ["IntegrityVerifier"]

logger = logging.getLogger(__name__)


class IntegrityVerifier:
    """
    Args:
        dialect: Adapter used for introspection.
        critical_tables: Tables that must still exist after a rollback.
    """

    def __init__(
        self,
        dialect: DialectAdapter,
        critical_tables: list[str] | None = None,
    ) -> None:
        self._dialect = dialect
        self._critical_tables = list(critical_tables or [])

    def verify(self, conn: Any) -> list[str]:
        """Return a list of integrity problems; empty means intact."""
        problems: list[str] = []

        violations = self._dialect.foreign_key_violations(conn)
        if violations:
            tables = sorted({v["table"] for v in violations})
            problems.append(
                f"{len(violations)} foreign key violation(s) in {', '.join(tables)}"
            )

        existing = set(self._dialect.list_tables(conn))
        missing = [t for t in self._critical_tables if t not in existing]
        if missing:
            problems.append(f"Critical tables missing: {', '.join(missing)}")

        for problem in problems:
            logger.error("Integrity check failed: %s", problem)
        return problems
