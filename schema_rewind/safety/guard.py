"""
Safety Guard
~~~~~~~~~~~~

Runs every enabled safety check against a rollback request and collects
the outcomes into a SafetyReport.

Unlike a short-circuiting pipeline, the guard runs all checks so the
report shows every risk at once. A check that raises counts as BLOCK.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime

from schema_rewind.core.models import (
    CheckResult,
    RollbackPlan,
    RollbackRequest,
    SafetyReport,
)
from schema_rewind.core.verdict import CheckStatus
from schema_rewind.dialects.base import SessionActivity
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext
from schema_rewind.safety.environment import (
    EnvironmentClassifier,
    StaticEnvironmentClassifier,
)

__all__ = ["SafetyGuard"]

logger = logging.getLogger(__name__)


class SafetyGuard:
    """
    Ordered set of safety checks.

    The report blocks if any check blocks and the request does not set
    that check's override flag. An overridden BLOCK is downgraded to
    WARN and stays in the report.

    Args:
        classifier: Decides whether the database is production.
        activity_source: Observes session activity on demand.
        clock: Returns the current local time for timing windows.
    """

    def __init__(
        self,
        classifier: EnvironmentClassifier | None = None,
        activity_source: Callable[[], SessionActivity] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._checks: list[BaseSafetyCheck] = []
        self._classifier = classifier or StaticEnvironmentClassifier(production=False)
        self._activity_source = activity_source
        self._clock = clock or datetime.now

    # ── Check Management ──────────────────────────────────────────

    def add(self, check: BaseSafetyCheck) -> None:
        """Add a check; checks are kept sorted by priority."""
        self._checks.append(check)
        self._checks.sort(key=lambda c: c.priority)

    def remove(self, check_name: str) -> None:
        """Remove a check by name."""
        self._checks = [c for c in self._checks if c.name != check_name]

    @property
    def checks(self) -> list[BaseSafetyCheck]:
        """Return the ordered list of checks."""
        return list(self._checks)

    @property
    def classifier(self) -> EnvironmentClassifier:
        return self._classifier

    # ── Evaluation ────────────────────────────────────────────────

    def _classify(self) -> tuple[bool, str | None]:
        try:
            return bool(self._classifier.is_production()), None
        except Exception as exc:
            logger.error("Environment classification failed: %s", exc)
            return True, str(exc) or exc.__class__.__name__

    def _run_check(self, check: BaseSafetyCheck, context: SafetyContext) -> CheckResult:
        try:
            result = check.check(context)
        except Exception as exc:
            logger.error("Safety check %s raised: %s", check.name, exc)
            return CheckResult(
                status=CheckStatus.BLOCK,
                reason=f"Check could not complete: {exc}",
                check_name=check.name,
                metadata={"exception": exc.__class__.__name__},
            )

        if not result.check_name:
            result = dataclasses.replace(result, check_name=check.name)

        if result.status is CheckStatus.BLOCK and context.request.has_override(
            result.override_flag
        ):
            logger.warning(
                "Safety check %s blocked but was overridden by %s: %s",
                check.name,
                result.override_flag,
                result.reason,
            )
            result = dataclasses.replace(
                result,
                status=CheckStatus.WARN,
                overridden=True,
                reason=f"{result.reason} (overridden by {result.override_flag})",
            )
        return result

    def evaluate(self, request: RollbackRequest, plan: RollbackPlan) -> SafetyReport:
        """
        Run all enabled checks against ``request`` and ``plan``.

        Returns:
            SafetyReport with one result per check that ran.
        """
        is_production, classification_error = self._classify()
        context = SafetyContext(
            request=request,
            plan=plan,
            is_production=is_production,
            now=self._clock(),
            classification_error=classification_error,
            activity_source=self._activity_source,
        )

        results: list[CheckResult] = []
        for check in self._checks:
            if not check.enabled:
                continue
            result = self._run_check(check, context)
            results.append(result)
            if result.status is CheckStatus.BLOCK:
                logger.info(
                    "Rollback to %s BLOCKED by %s: %s",
                    request.target_version,
                    check.name,
                    result.reason,
                )

        return SafetyReport(results=tuple(results), is_production=is_production)
