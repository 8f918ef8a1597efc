"""schema-rewind dialect adapters: dialect-specific SQL behind one interface."""

from schema_rewind.dialects.base import (
    DialectAdapter,
    LockRow,
    SessionActivity,
    TableStructure,
)
from schema_rewind.dialects.registry import DialectRegistry, default_registry
from schema_rewind.dialects.sqlite import SQLiteDialect, quote_identifier

__all__ = [
    "DialectAdapter",
    "DialectRegistry",
    "LockRow",
    "SQLiteDialect",
    "SessionActivity",
    "TableStructure",
    "default_registry",
    "quote_identifier",
]
