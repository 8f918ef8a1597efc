"""
Default Configuration
~~~~~~~~~~~~~~~~~~~~~

Sensible defaults for schema-rewind when no config file is provided.
"""

from __future__ import annotations

__all__ = ["DEFAULT_CONFIG"]

DEFAULT_CONFIG: dict = {
    "version": "1.0",
    "database": {
        "dialect": "sqlite",
        "path": "schema.db",
        "ledger_table": "schema_version_history",
        "system_table_prefixes": ["sqlite_", "schema_version_", "schema_rewind_"],
    },
    "rollback": {
        "recover_on_failure": True,
        "timeout_minutes": 30,
        "strict_undo_coverage": True,
        "noop_versions": [],
        "undo_script_dirs": ["db/undo"],
    },
    "snapshot": {
        "enabled": True,
        "storage_path": "./snapshots",
        "retention_days": 7,
        "parallel_threshold": 10,
        "max_workers": 4,
        "capture_timeout_seconds": 300,
    },
    "safety": {
        "production_markers": ["prod", "production"],
        "profile_env_var": "SCHEMA_REWIND_PROFILE",
        "hostname": None,
        "restricted_windows": [
            "Mon-Fri 09:00-17:00",
            "Fri 15:00-24:00",
        ],
        "windows_production_only": True,
        "long_running_threshold_seconds": 300,
        "max_long_running_sessions": 0,
        "max_active_connections": 50,
        "protected_tables": [],
        "critical_tables": [],
        "data_loss_keywords": [
            "insert",
            "update",
            "delete",
            "data",
            "populate",
            "migrate",
        ],
        "checks": {
            "protected_tables": {"enabled": True},
            "environment": {"enabled": True},
            "data_loss": {"enabled": True},
            "timing_window": {"enabled": True},
            "concurrent_activity": {"enabled": True},
            "connection_load": {"enabled": True},
        },
    },
    "audit": {
        "table_name": "schema_rewind_audit",
        "exporters": ["stdout"],
        "webhook_url": None,
        "webhook_failures_only": False,
    },
    "lock": {
        "table_name": "schema_rewind_lock",
        "stale_after_seconds": 3600,
    },
}
