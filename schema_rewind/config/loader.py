"""
Configuration Loader
~~~~~~~~~~~~~~~~~~~~

Reads schema_rewind.yaml, layers it over DEFAULT_CONFIG and validates the
result.

Relative filesystem settings in a config file (``database.path``,
``rollback.undo_script_dirs`` and ``snapshot.storage_path``) are resolved
against the directory holding that file, so the CLI behaves the same from
any working directory. ``SCHEMA_REWIND_DATABASE`` overrides
``database.path`` when set.
"""

from __future__ import annotations

import copy
import logging
import os
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from schema_rewind.config.defaults import DEFAULT_CONFIG
from schema_rewind.config.schema import RewindConfig
from schema_rewind.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)

__all__ = ["DATABASE_ENV_VAR", "load_config", "load_config_from_dict"]

logger = logging.getLogger(__name__)

DATABASE_ENV_VAR = "SCHEMA_REWIND_DATABASE"

_MEMORY_DATABASE = ":memory:"


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge ``override`` into a copy of ``base``; nested sections merge key by key."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _anchor(path: str, base_dir: str) -> str:
    if path == _MEMORY_DATABASE or os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


def _resolve_paths(data: dict[str, Any], base_dir: str) -> dict[str, Any]:
    """Anchor the relative paths a config file sets to ``base_dir``."""
    resolved = copy.deepcopy(data)

    database = resolved.get("database")
    if isinstance(database, dict) and isinstance(database.get("path"), str):
        database["path"] = _anchor(database["path"], base_dir)

    rollback = resolved.get("rollback")
    if isinstance(rollback, dict) and isinstance(rollback.get("undo_script_dirs"), list):
        rollback["undo_script_dirs"] = [
            _anchor(d, base_dir) if isinstance(d, str) else d
            for d in rollback["undo_script_dirs"]
        ]

    snapshot = resolved.get("snapshot")
    if isinstance(snapshot, dict) and isinstance(snapshot.get("storage_path"), str):
        snapshot["storage_path"] = _anchor(snapshot["storage_path"], base_dir)

    return resolved


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "(root)"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def load_config(path: str) -> RewindConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to schema_rewind.yaml.

    Returns:
        Validated RewindConfig instance.

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist.
        ConfigValidationError: If the file is not a YAML mapping or a
            value fails validation.
    """
    if not os.path.isfile(path):
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(user_config, dict):
        raise ConfigValidationError(
            f"Configuration file {path} must contain a mapping at the top level"
        )

    base_dir = os.path.dirname(os.path.abspath(path))
    logger.debug("Loaded configuration from %s (paths relative to %s)", path, base_dir)
    return load_config_from_dict(_resolve_paths(user_config, base_dir))


def load_config_from_dict(data: dict[str, Any]) -> RewindConfig:
    """
    Build a validated configuration from a dictionary layered over defaults.

    Raises:
        ConfigValidationError: If validation fails.
    """
    merged = _deep_merge(DEFAULT_CONFIG, data)

    database_override = os.environ.get(DATABASE_ENV_VAR)
    if database_override:
        logger.info("Database path overridden by %s", DATABASE_ENV_VAR)
        merged["database"]["path"] = database_override

    try:
        return RewindConfig(**merged)
    except PydanticValidationError as exc:
        raise ConfigValidationError(
            f"Invalid configuration: {_format_errors(exc)}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"Invalid configuration: {exc}") from exc
