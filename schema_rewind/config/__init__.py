"""schema-rewind configuration: loading, validation, and defaults."""

from schema_rewind.config.defaults import DEFAULT_CONFIG
from schema_rewind.config.loader import load_config, load_config_from_dict
from schema_rewind.config.schema import RewindConfig

__all__ = [
    "load_config",
    "load_config_from_dict",
    "RewindConfig",
    "DEFAULT_CONFIG",
]
