"""schema-rewind safety: pre-flight checks that gate risky rollbacks."""

from schema_rewind.safety.base import BaseSafetyCheck, SafetyContext
from schema_rewind.safety.concurrent_activity import ConcurrentActivityCheck
from schema_rewind.safety.connection_load import ConnectionLoadCheck
from schema_rewind.safety.data_loss import DEFAULT_DATA_LOSS_KEYWORDS, DataLossCheck
from schema_rewind.safety.environment import (
    DeploymentSignalClassifier,
    EnvironmentCheck,
    EnvironmentClassifier,
    StaticEnvironmentClassifier,
)
from schema_rewind.safety.guard import SafetyGuard
from schema_rewind.safety.integrity import IntegrityVerifier
from schema_rewind.safety.protected_tables import ProtectedTablesCheck
from schema_rewind.safety.timing_window import TimeWindow, TimingWindowCheck

__all__ = [
    "BaseSafetyCheck",
    "SafetyContext",
    "SafetyGuard",
    "ConcurrentActivityCheck",
    "ConnectionLoadCheck",
    "DataLossCheck",
    "DEFAULT_DATA_LOSS_KEYWORDS",
    "EnvironmentCheck",
    "EnvironmentClassifier",
    "DeploymentSignalClassifier",
    "StaticEnvironmentClassifier",
    "IntegrityVerifier",
    "ProtectedTablesCheck",
    "TimeWindow",
    "TimingWindowCheck",
]
