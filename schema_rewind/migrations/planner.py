"""
Rollback Planner
~~~~~~~~~~~~~~~~

Computes which applied migrations must be undone to reach a target
version, pairing each with its undo script in reverse application order.
"""

from __future__ import annotations

import logging
from typing import Any

from schema_rewind.core.models import RollbackPlan
from schema_rewind.exceptions import ValidationError
from schema_rewind.migrations.ledger import VersionLedger
from schema_rewind.migrations.undo_scripts import UndoScriptResolver

__all__ = ["RollbackPlanner"]

logger = logging.getLogger(__name__)


class RollbackPlanner:
    """
    Builds RollbackPlans from the ledger and the undo script resolver.

    The plan holds one operation per successful version strictly above
    the target, newest first.
    """

    def __init__(self, ledger: VersionLedger, resolver: UndoScriptResolver) -> None:
        self._ledger = ledger
        self._resolver = resolver

    def build(self, target_version: str, conn: Any | None = None) -> RollbackPlan:
        """
        Build the plan that rolls the schema back to ``target_version``.

        Raises:
            ValidationError: If the target is unknown, failed, or not below
                the current version, or an undo script is missing.
            LedgerUnavailableError: If the ledger cannot be read.
        """
        current = self._ledger.current_version(conn)
        if current is None:
            raise ValidationError("The version ledger is empty; nothing to roll back")

        target = self._ledger.get(target_version, conn)
        if target is None:
            raise ValidationError(f"Target version {target_version} is not in the ledger")
        if not target.success:
            raise ValidationError(
                f"Target version {target_version} was not applied successfully"
            )
        if target.installed_rank == current.installed_rank:
            raise ValidationError(f"Database is already at version {target_version}")
        if target.installed_rank > current.installed_rank:
            raise ValidationError(
                f"Target version {target_version} is not below the current "
                f"version {current.version}"
            )

        pending = self._ledger.versions_above(target_version, conn)
        operations = tuple(self._resolver.operation_for(v) for v in pending)

        logger.info(
            "Planned rollback %s -> %s: %d operations",
            current.version,
            target_version,
            len(operations),
        )
        return RollbackPlan(
            current_version=current,
            target_version=target,
            operations=operations,
        )
