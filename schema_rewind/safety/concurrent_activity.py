"""
Concurrent Activity Check
~~~~~~~~~~~~~~~~~~~~~~~~~

Blocks rollbacks while long-running sessions are open on the target
database, unless ``emergency_rollback`` is set.
"""

from __future__ import annotations

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = ["ConcurrentActivityCheck"]


class ConcurrentActivityCheck(BaseSafetyCheck):
    """
    Args:
        max_long_running_sessions: Sessions tolerated above the threshold.
        threshold_seconds: Duration after which a session counts as long-running.
    """

    def __init__(
        self,
        max_long_running_sessions: int = 0,
        threshold_seconds: float = 300,
    ) -> None:
        self._max_sessions = max_long_running_sessions
        self.threshold_seconds = threshold_seconds

    @property
    def name(self) -> str:
        return "concurrent_activity"

    @property
    def override_flag(self) -> str:
        return "emergency_rollback"

    @property
    def priority(self) -> int:
        return 50

    def check(self, context: SafetyContext) -> CheckResult:
        activity = context.session_activity()
        count = activity.long_running_sessions
        if count > self._max_sessions:
            detail = f" ({'; '.join(activity.details)})" if activity.details else ""
            return self.block(
                f"{count} long-running session(s) active on the database{detail}",
                long_running_sessions=count,
            )
        return self.passed(
            "No long-running sessions",
            long_running_sessions=count,
        )
