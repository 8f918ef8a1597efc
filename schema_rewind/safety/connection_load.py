"""
Connection Load Check
~~~~~~~~~~~~~~~~~~~~~

Warns when the number of active connections exceeds a threshold.
Never blocks.
"""

from __future__ import annotations

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = ["ConnectionLoadCheck"]


class ConnectionLoadCheck(BaseSafetyCheck):
    """Warns above ``max_active_connections``."""

    def __init__(self, max_active_connections: int = 50) -> None:
        self._max_connections = max_active_connections

    @property
    def name(self) -> str:
        return "connection_load"

    @property
    def priority(self) -> int:
        return 60

    def check(self, context: SafetyContext) -> CheckResult:
        count = context.session_activity().active_connections
        if count > self._max_connections:
            return self.warn(
                f"High database load: {count} active connections "
                f"(threshold {self._max_connections})",
                active_connections=count,
            )
        return self.passed(
            f"{count} active connections",
            active_connections=count,
        )
