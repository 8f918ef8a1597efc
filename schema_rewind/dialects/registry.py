"""
Dialect Registry
~~~~~~~~~~~~~~~~

Maps dialect names to adapter instances, providing lookup and
registration for the rollback engine.
"""

from __future__ import annotations

import logging

from schema_rewind.dialects.base import DialectAdapter
from schema_rewind.dialects.sqlite import SQLiteDialect
from schema_rewind.exceptions import DialectNotFoundError

__all__ = ["DialectRegistry", "default_registry"]

logger = logging.getLogger(__name__)


class DialectRegistry:
    """
    Registry mapping dialect names to adapters.

    The orchestrator resolves ``database.dialect`` against this registry
    once at construction time.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, DialectAdapter] = {}

    def register(self, adapter: DialectAdapter) -> None:
        """
        Register a dialect adapter under its name.

        Args:
            adapter: The adapter to register.
        """
        self._adapters[adapter.name.lower()] = adapter
        logger.debug(
            "Registered dialect adapter %s as %s",
            adapter.__class__.__name__,
            adapter.name,
        )

    def get(self, name: str) -> DialectAdapter:
        """
        Get the adapter registered under ``name``.

        Raises:
            DialectNotFoundError: If no adapter is registered.
        """
        try:
            return self._adapters[name.lower()]
        except KeyError:
            raise DialectNotFoundError(
                f"No dialect adapter registered for: {name} "
                f"(available: {', '.join(sorted(self._adapters)) or 'none'})"
            ) from None

    def has(self, name: str) -> bool:
        return name.lower() in self._adapters

    @property
    def names(self) -> list[str]:
        return sorted(self._adapters)


def default_registry() -> DialectRegistry:
    """Return a registry with the built-in adapters registered."""
    registry = DialectRegistry()
    registry.register(SQLiteDialect())
    return registry
