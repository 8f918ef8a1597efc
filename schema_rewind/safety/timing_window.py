"""
Timing Window Check
~~~~~~~~~~~~~~~~~~~

Blocks rollbacks requested inside restricted time windows, such as
business hours or Friday afternoon, unless ``emergency_rollback`` is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = ["TimingWindowCheck", "TimeWindow"]

_DAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _parse_days(spec: str) -> frozenset[int]:
    days: set[int] = set()
    for part in spec.lower().split(","):
        part = part.strip()
        if "-" in part:
            first, _, last = part.partition("-")
            start, end = _day_index(first), _day_index(last)
            if start <= end:
                days.update(range(start, end + 1))
            else:
                days.update(range(start, 7))
                days.update(range(0, end + 1))
        else:
            days.add(_day_index(part))
    return frozenset(days)


def _day_index(name: str) -> int:
    key = name.strip()[:3]
    if key not in _DAYS:
        raise ValueError(f"Unknown day: {name!r}")
    return _DAYS.index(key)


def _parse_time(spec: str) -> time:
    if spec.strip() == "24:00":
        return time.max
    hours, _, minutes = spec.strip().partition(":")
    return time(int(hours), int(minutes or 0))


@dataclass(frozen=True)
class TimeWindow:
    """A weekly restricted window, e.g. weekdays 09:00 to 17:00."""

    days: frozenset[int]
    start: time
    end: time
    label: str = ""

    @classmethod
    def from_string(cls, spec: str) -> TimeWindow:
        """
        Parse a window string like 'Mon-Fri 09:00-17:00' or 'Fri 15:00-24:00'.

        Args:
            spec: Days (ranges or comma lists) and a start-end time range.

        Returns:
            A TimeWindow instance.
        """
        parts = spec.strip().split()
        if len(parts) != 2 or "-" not in parts[1]:
            raise ValueError(f"Invalid time window spec: {spec!r}")
        start, _, end = parts[1].partition("-")
        try:
            return cls(
                days=_parse_days(parts[0]),
                start=_parse_time(start),
                end=_parse_time(end),
                label=spec.strip(),
            )
        except ValueError as exc:
            raise ValueError(f"Invalid time window spec: {spec!r} ({exc})") from exc

    def contains(self, moment: datetime) -> bool:
        if moment.weekday() not in self.days:
            return False
        now = moment.time()
        if self.start <= self.end:
            return self.start <= now < self.end or (
                self.end == time.max and now == time.max
            )
        # Window wraps past midnight
        return now >= self.start or now < self.end


class TimingWindowCheck(BaseSafetyCheck):
    """
    Blocks rollbacks inside any restricted window.

    Args:
        windows: Restricted window specs or parsed TimeWindows.
        production_only: Only enforce windows for production databases.
    """

    def __init__(
        self,
        windows: list[str | TimeWindow] | None = None,
        production_only: bool = True,
    ) -> None:
        self._windows = [
            w if isinstance(w, TimeWindow) else TimeWindow.from_string(w)
            for w in (windows or [])
        ]
        self._production_only = production_only

    @property
    def name(self) -> str:
        return "timing_window"

    @property
    def override_flag(self) -> str:
        return "emergency_rollback"

    @property
    def priority(self) -> int:
        return 40

    @property
    def windows(self) -> list[TimeWindow]:
        return list(self._windows)

    def active_window(self, moment: datetime) -> TimeWindow | None:
        for window in self._windows:
            if window.contains(moment):
                return window
        return None

    def check(self, context: SafetyContext) -> CheckResult:
        if self._production_only and not context.is_production:
            return self.passed("Restricted windows apply to production only")

        window = self.active_window(context.now)
        if window is None:
            return self.passed("Outside restricted windows")
        return self.block(
            f"Rollback requested during restricted window {window.label} "
            f"(at {context.now:%a %H:%M})",
            window=window.label,
        )
