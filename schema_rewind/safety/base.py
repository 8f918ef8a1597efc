"""
Base Safety Check
~~~~~~~~~~~~~~~~~

Abstract base class for all checks run by the safety guard.
Custom checks extend this class and implement the check() method.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from schema_rewind.core.models import CheckResult, RollbackPlan, RollbackRequest
from schema_rewind.core.verdict import CheckStatus
from schema_rewind.dialects.base import SessionActivity

__all__ = ["BaseSafetyCheck", "SafetyContext"]


@dataclass
class SafetyContext:
    """
    Everything a safety check may inspect for one request.

    Session activity is observed lazily, at most once per evaluation,
    and only if a check asks for it.
    """

    request: RollbackRequest
    plan: RollbackPlan
    is_production: bool
    now: datetime
    classification_error: str | None = None
    activity_source: Callable[[], SessionActivity] | None = None
    _activity: SessionActivity | None = field(default=None, init=False, repr=False)

    def session_activity(self) -> SessionActivity:
        if self._activity is None:
            if self.activity_source is None:
                self._activity = SessionActivity()
            else:
                self._activity = self.activity_source()
        return self._activity


class BaseSafetyCheck(ABC):
    """
    Abstract base class for safety checks.

    Each check inspects a SafetyContext and returns a CheckResult of
    PASS, WARN or BLOCK.

    Subclasses must implement:
        - name: A unique string identifier.
        - check(): The core check logic.

    Optionally override:
        - override_flag: The request flag that downgrades a BLOCK to WARN.
        - enabled: To dynamically disable the check.
        - priority: To control ordering (lower runs first).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this check."""
        ...

    @property
    def override_flag(self) -> str | None:
        """RollbackRequest attribute that overrides a BLOCK. None means no override."""
        return None

    @property
    def enabled(self) -> bool:
        """Whether this check is active. Override to disable dynamically."""
        return True

    @property
    def priority(self) -> int:
        """Lower values run first in the guard. Default is 100."""
        return 100

    @abstractmethod
    def check(self, context: SafetyContext) -> CheckResult:
        """
        Inspect the context and return a result.

        Args:
            context: The request, plan and observed environment.

        Returns:
            CheckResult with the status and reasoning.
        """
        ...

    def _result(
        self,
        status: CheckStatus,
        reason: str,
        **metadata: Any,
    ) -> CheckResult:
        return CheckResult(
            status=status,
            reason=reason,
            check_name=self.name,
            override_flag=self.override_flag,
            metadata=metadata,
        )

    def passed(self, reason: str, **metadata: Any) -> CheckResult:
        return self._result(CheckStatus.PASS, reason, **metadata)

    def warn(self, reason: str, **metadata: Any) -> CheckResult:
        return self._result(CheckStatus.WARN, reason, **metadata)

    def block(self, reason: str, **metadata: Any) -> CheckResult:
        return self._result(CheckStatus.BLOCK, reason, **metadata)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} enabled={self.enabled}>"
