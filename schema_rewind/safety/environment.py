"""
Environment Classification
~~~~~~~~~~~~~~~~~~~~~~~~~~

Decides whether the target database is a production database, and gates
production rollbacks behind explicit approval.

Classification is an injected capability so tests can substitute a
deterministic fake for ambient signals like hostnames and profiles.
"""

from __future__ import annotations

import logging
import os
import socket
from abc import ABC, abstractmethod

from schema_rewind.core.models import CheckResult
from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext

__all__ = [
    "EnvironmentClassifier",
    "DeploymentSignalClassifier",
    "StaticEnvironmentClassifier",
    "EnvironmentCheck",
]

logger = logging.getLogger(__name__)


class EnvironmentClassifier(ABC):
    """Answers a single question: is this a production database?"""

    @abstractmethod
    def is_production(self) -> bool: ...


class StaticEnvironmentClassifier(EnvironmentClassifier):
    """Always returns the configured answer."""

    def __init__(self, production: bool = False) -> None:
        self.production = production

    def is_production(self) -> bool:
        return self.production

    def __repr__(self) -> str:
        return f"<StaticEnvironmentClassifier production={self.production}>"


class DeploymentSignalClassifier(EnvironmentClassifier):
    """
    Classifies from deployment signals: the active profile, the database
    connection target, and the host identity.

    Any single signal containing a production marker means production.

    Args:
        database: Connection target (path or URL) of the database.
        profile: Active deployment profile. Defaults to ``profile_env_var``.
        hostname: Host identity. Defaults to ``socket.gethostname()``.
        markers: Case-insensitive substrings that indicate production.
        profile_env_var: Environment variable holding the profile.
    """

    def __init__(
        self,
        database: str = "",
        profile: str | None = None,
        hostname: str | None = None,
        markers: list[str] | None = None,
        profile_env_var: str = "SCHEMA_REWIND_PROFILE",
    ) -> None:
        self._database = database
        self._profile = profile
        self._hostname = hostname
        self._markers = [m.lower() for m in (markers or ["prod", "production"])]
        self._profile_env_var = profile_env_var

    def signals(self) -> dict[str, str]:
        """Return the raw signals consulted by is_production()."""
        profile = self._profile
        if profile is None:
            profile = os.environ.get(self._profile_env_var, "")
        hostname = self._hostname
        if hostname is None:
            hostname = socket.gethostname()
        return {
            "profile": profile,
            "database": self._database,
            "hostname": hostname,
        }

    def is_production(self) -> bool:
        for signal, value in self.signals().items():
            lowered = value.lower()
            for marker in self._markers:
                if marker in lowered:
                    logger.debug(
                        "Production detected from %s %r (marker %r)",
                        signal,
                        value,
                        marker,
                    )
                    return True
        return False


class EnvironmentCheck(BaseSafetyCheck):
    """Blocks production rollbacks that lack ``production_approved``."""

    @property
    def name(self) -> str:
        return "environment"

    @property
    def override_flag(self) -> str:
        return "production_approved"

    @property
    def priority(self) -> int:
        return 20

    def check(self, context: SafetyContext) -> CheckResult:
        if context.classification_error:
            reason = (
                "Environment classification failed "
                f"({context.classification_error}); treating as production"
            )
        elif context.is_production:
            reason = "Target database is classified as production"
        else:
            return self.passed("Target database is not production")

        if context.request.production_approved:
            return self.warn(f"{reason}; rollback approved for production")
        return self.block(f"{reason}; rollback requires production approval")
