"""
Data Loss Check
~~~~~~~~~~~~~~~

Best-effort prediction of data loss from a rollback plan. Two signals:
data keywords in a pending migration's description, and undo statements
that drop or delete structure or data.

This is a heuristic over descriptions and statements. It does not diff
table contents before and after the rollback.
"""

from __future__ import annotations

import re

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = ["DataLossCheck", "DEFAULT_DATA_LOSS_KEYWORDS"]

DEFAULT_DATA_LOSS_KEYWORDS: list[str] = [
    "insert",
    "update",
    "delete",
    "data",
    "populate",
    "migrate",
]

# ── Destructive Statement Patterns ───────────────────────────────────────────

_DESTRUCTIVE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("DROP TABLE", re.compile(r"^\s*DROP\s+TABLE\b", re.IGNORECASE)),
    ("DROP COLUMN", re.compile(r"^\s*ALTER\s+TABLE\b.*\bDROP\b", re.IGNORECASE)),
    ("DELETE", re.compile(r"^\s*DELETE\s+FROM\b", re.IGNORECASE)),
    ("TRUNCATE", re.compile(r"^\s*TRUNCATE\b", re.IGNORECASE)),
]


class DataLossCheck(BaseSafetyCheck):
    """
    Flags plans whose pending versions look like they touch data.

    Blocks unless the request sets ``force_data_loss``, in which case the
    finding stays in the report as a warning.

    Args:
        keywords: Description keywords that indicate data operations.
        inspect_statements: Also flag destructive undo statements.
    """

    def __init__(
        self,
        keywords: list[str] | None = None,
        inspect_statements: bool = True,
    ) -> None:
        words = keywords if keywords else DEFAULT_DATA_LOSS_KEYWORDS
        self._keyword_re = re.compile(
            r"(?<![a-z])(" + "|".join(re.escape(w.lower()) for w in words) + r")(s|d|ed|ing)?(?![a-z])"
        )
        self._inspect_statements = inspect_statements

    @property
    def name(self) -> str:
        return "data_loss"

    @property
    def override_flag(self) -> str:
        return "force_data_loss"

    @property
    def priority(self) -> int:
        return 30

    def _keyword_hits(self, description: str) -> list[str]:
        text = description.lower().replace("_", " ")
        return sorted({m.group(1) for m in self._keyword_re.finditer(text)})

    def check(self, context: SafetyContext) -> CheckResult:
        findings: dict[str, list[str]] = {}

        for op in context.plan.operations:
            reasons: list[str] = []
            hits = self._keyword_hits(op.version.description)
            if hits:
                reasons.append(f"description mentions {', '.join(hits)}")
            if self._inspect_statements:
                kinds = sorted(
                    {
                        label
                        for statement in op.statements
                        for label, pattern in _DESTRUCTIVE_PATTERNS
                        if pattern.search(statement)
                    }
                )
                if kinds:
                    reasons.append(f"undo runs {', '.join(kinds)}")
            if reasons:
                findings[op.version.version] = reasons

        if not findings:
            return self.passed("No data loss predicted")

        summary = "; ".join(
            f"{version}: {', '.join(reasons)}" for version, reasons in findings.items()
        )
        return self.block(
            f"Rollback would cause data loss ({summary})",
            versions=sorted(findings),
        )
