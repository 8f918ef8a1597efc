"""
Configuration Schema
~~~~~~~~~~~~~~~~~~~~

Pydantic models for validating schema-rewind configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "RewindConfig",
    "DatabaseConfig",
    "RollbackConfig",
    "SnapshotConfig",
    "SafetyConfig",
    "CheckToggles",
    "SafetyChecksConfig",
    "AuditConfig",
    "LockConfig",
]


class DatabaseConfig(BaseModel):
    """Target database settings."""

    dialect: str = "sqlite"
    path: str = "schema.db"
    ledger_table: str = "schema_version_history"
    system_table_prefixes: list[str] = Field(
        default_factory=lambda: ["sqlite_", "schema_version_", "schema_rewind_"]
    )

    @field_validator("ledger_table")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Table names are interpolated into SQL, so only identifiers are allowed."""
        if not v.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {v!r}")
        return v


class RollbackConfig(BaseModel):
    """Rollback execution settings."""

    recover_on_failure: bool = True
    timeout_minutes: float = Field(default=30, gt=0)
    strict_undo_coverage: bool = True
    noop_versions: list[str] = Field(default_factory=list)
    undo_script_dirs: list[str] = Field(default_factory=lambda: ["db/undo"])


class SnapshotConfig(BaseModel):
    """Snapshot capture and retention settings."""

    enabled: bool = True
    storage_path: str = "./snapshots"
    retention_days: int = Field(default=7, ge=0)
    parallel_threshold: int = Field(default=10, ge=0)
    max_workers: int = Field(default=4, ge=1)
    capture_timeout_seconds: float = Field(default=300, gt=0)


class CheckToggles(BaseModel):
    """Per-check enable/disable toggle."""

    enabled: bool = True


class SafetyChecksConfig(BaseModel):
    """Safety check toggles."""

    protected_tables: CheckToggles = Field(default_factory=CheckToggles)
    environment: CheckToggles = Field(default_factory=CheckToggles)
    data_loss: CheckToggles = Field(default_factory=CheckToggles)
    timing_window: CheckToggles = Field(default_factory=CheckToggles)
    concurrent_activity: CheckToggles = Field(default_factory=CheckToggles)
    connection_load: CheckToggles = Field(default_factory=CheckToggles)


class SafetyConfig(BaseModel):
    """Safety guard thresholds and markers."""

    production_markers: list[str] = Field(
        default_factory=lambda: ["prod", "production"]
    )
    profile_env_var: str = "SCHEMA_REWIND_PROFILE"
    hostname: str | None = None
    restricted_windows: list[str] = Field(default_factory=list)
    windows_production_only: bool = True
    long_running_threshold_seconds: float = Field(default=300, ge=0)
    max_long_running_sessions: int = Field(default=0, ge=0)
    max_active_connections: int = Field(default=50, ge=1)
    protected_tables: list[str] = Field(default_factory=list)
    critical_tables: list[str] = Field(default_factory=list)
    data_loss_keywords: list[str] = Field(default_factory=list)
    checks: SafetyChecksConfig = Field(default_factory=SafetyChecksConfig)

    @field_validator("restricted_windows")
    @classmethod
    def validate_windows(cls, v: list[str]) -> list[str]:
        """Validate the restricted window format, e.g. 'Mon-Fri 09:00-17:00'."""
        from schema_rewind.safety.timing_window import TimeWindow

        for spec in v:
            TimeWindow.from_string(spec)
        return v


class AuditConfig(BaseModel):
    """Audit trail configuration."""

    table_name: str = "schema_rewind_audit"
    exporters: list[str] = Field(default_factory=lambda: ["stdout"])
    webhook_url: str | None = None
    webhook_failures_only: bool = False


class LockConfig(BaseModel):
    """Rollback lock configuration."""

    table_name: str = "schema_rewind_lock"
    stale_after_seconds: float = Field(default=3600, gt=0)


class RewindConfig(BaseModel):
    """
    Root configuration model for schema-rewind.

    Validated on load with clear error messages for invalid values.
    """

    version: str = "1.0"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    rollback: RollbackConfig = Field(default_factory=RollbackConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    lock: LockConfig = Field(default_factory=LockConfig)

    model_config = {"populate_by_name": True}
