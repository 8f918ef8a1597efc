"""
schema-rewind CLI
~~~~~~~~~~~~~~~~~

Command-line interface for schema-rewind.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from schema_rewind.exceptions import SchemaRewindError


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by ``rollback`` and ``validate``."""
    parser.add_argument(
        "target",
        type=str,
        help="Version to roll back to (e.g. 1.0.1)",
    )
    parser.add_argument(
        "--reason",
        type=str,
        default="",
        help="Why the rollback is needed (recorded in the audit trail)",
    )
    parser.add_argument(
        "--requested-by",
        type=str,
        default="",
        help="Identity of the requester",
    )
    parser.add_argument(
        "--approved-by",
        type=str,
        default=None,
        help="Identity of the approver",
    )
    parser.add_argument(
        "--ticket",
        type=str,
        default=None,
        help="Change-management ticket reference",
    )
    parser.add_argument(
        "--type",
        dest="rollback_type",
        choices=["STANDARD", "EMERGENCY", "HOTFIX"],
        default="STANDARD",
        help="Kind of rollback (default: STANDARD)",
    )
    parser.add_argument(
        "--production-approved",
        action="store_true",
        help="Approve a rollback against a production database",
    )
    parser.add_argument(
        "--emergency",
        action="store_true",
        help="Bypass restricted windows and concurrent-activity checks",
    )
    parser.add_argument(
        "--force-data-loss",
        action="store_true",
        help="Proceed even if the rollback is predicted to lose data",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema-rewind",
        description="schema-rewind: guarded rollback of SQL schema migrations",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to schema_rewind.yaml",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    # rollback command
    rollback_parser = subparsers.add_parser("rollback", help="Roll back to a target version")
    _add_request_arguments(rollback_parser)
    rollback_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate the rollback without changing anything",
    )
    rollback_parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Skip the safety guard entirely",
    )
    rollback_parser.add_argument(
        "--no-snapshot",
        action="store_true",
        help="Do not take a recovery snapshot",
    )
    rollback_parser.add_argument(
        "--timeout-minutes",
        type=float,
        default=None,
        help="Execution timeout (default: rollback.timeout_minutes)",
    )

    # validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Preview the plan and safety report without running it"
    )
    _add_request_arguments(validate_parser)

    # status command
    subparsers.add_parser("status", help="Show ledger position and lock holder")

    # history command
    history_parser = subparsers.add_parser("history", help="Show recent rollback attempts")
    history_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of entries to show (default: 20)",
    )
    history_parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print aggregate metrics in Prometheus text format",
    )

    # snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Manage snapshots")
    snapshot_sub = snapshot_parser.add_subparsers(dest="snapshot_command")
    create_parser = snapshot_sub.add_parser("create", help="Take a manual snapshot")
    create_parser.add_argument(
        "--label",
        type=str,
        default="manual",
        help="Label embedded in the snapshot id (default: manual)",
    )
    snapshot_sub.add_parser("list", help="List snapshots, newest first")
    restore_parser = snapshot_sub.add_parser("restore", help="Restore a snapshot")
    restore_parser.add_argument("snapshot_id", type=str)
    delete_parser = snapshot_sub.add_parser("delete", help="Delete a snapshot")
    delete_parser.add_argument("snapshot_id", type=str)
    cleanup_parser = snapshot_sub.add_parser("cleanup", help="Delete expired snapshots")
    cleanup_parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override snapshot.retention_days",
    )

    # version command
    subparsers.add_parser("version", help="Show version")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "version":
        from schema_rewind import __version__

        print(f"schema-rewind {__version__}")
        return

    handlers = {
        "rollback": _run_rollback,
        "validate": _run_validate,
        "status": _run_status,
        "history": _run_history,
        "snapshot": _run_snapshot,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        handler(args)
    except SchemaRewindError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)


def _make_orchestrator(config_path: str | None) -> Any:
    """Create a RollbackOrchestrator from config or defaults."""
    from schema_rewind.core.orchestrator import RollbackOrchestrator

    if config_path:
        return RollbackOrchestrator.from_config(config_path)
    return RollbackOrchestrator.default()


def _make_request(args: argparse.Namespace, **extra: Any) -> Any:
    from schema_rewind.core.models import RollbackRequest
    from schema_rewind.core.verdict import RollbackType

    return RollbackRequest(
        target_version=args.target,
        reason=args.reason,
        requested_by=args.requested_by,
        approved_by=args.approved_by,
        ticket_number=args.ticket,
        rollback_type=RollbackType(args.rollback_type),
        production_approved=args.production_approved,
        emergency_rollback=args.emergency,
        force_data_loss=args.force_data_loss,
        **extra,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _run_rollback(args: argparse.Namespace) -> None:
    """Run the rollback command."""
    orchestrator = _make_orchestrator(args.config)
    request = _make_request(
        args,
        dry_run=args.dry_run,
        skip_validation=args.skip_validation,
        create_snapshot=not args.no_snapshot,
        timeout_minutes=args.timeout_minutes,
    )
    result = orchestrator.submit(request)
    _print_json(result.to_dict())
    if not result.success:
        sys.exit(1)


def _run_validate(args: argparse.Namespace) -> None:
    """Run the validate command."""
    orchestrator = _make_orchestrator(args.config)
    report = orchestrator.validate(_make_request(args))
    _print_json(report.to_dict())
    if not report.ok:
        sys.exit(1)


def _run_status(args: argparse.Namespace) -> None:
    """Run the status command."""
    orchestrator = _make_orchestrator(args.config)
    _print_json(orchestrator.status())


def _run_history(args: argparse.Namespace) -> None:
    """Run the history command."""
    orchestrator = _make_orchestrator(args.config)
    if args.metrics:
        print(orchestrator.audit.get_metrics().to_prometheus())
        return
    for entry in orchestrator.history(limit=args.limit):
        kind = f" [{entry.error_kind.value}]" if entry.error_kind else ""
        print(
            f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.rollback_id}  "
            f"{entry.from_version or '?'} -> {entry.target_version}  "
            f"{entry.status.value}{kind}  {entry.requested_by or '-'}"
        )


def _run_snapshot(args: argparse.Namespace) -> None:
    """Run the snapshot subcommands."""
    orchestrator = _make_orchestrator(args.config)
    store = orchestrator.snapshots

    if args.snapshot_command == "create":
        current = orchestrator.ledger.current_version()
        snapshot_id = store.create(
            label=args.label,
            database_version=current.version if current else None,
        )
        print(snapshot_id)
    elif args.snapshot_command == "list":
        for snapshot in store.list():
            flag = " (retained)" if snapshot.retained else ""
            print(
                f"{snapshot.snapshot_id}  {snapshot.created_at:%Y-%m-%d %H:%M:%S}  "
                f"v{snapshot.database_version or '?'}  "
                f"{len(snapshot.tables)} tables, {snapshot.total_rows} rows{flag}"
            )
    elif args.snapshot_command == "restore":
        report = orchestrator.restore_snapshot(args.snapshot_id)
        _print_json(report.to_dict())
        if not report.success:
            sys.exit(1)
    elif args.snapshot_command == "delete":
        if not store.delete(args.snapshot_id):
            print(f"Snapshot not found: {args.snapshot_id}", file=sys.stderr)
            sys.exit(1)
    elif args.snapshot_command == "cleanup":
        days = args.retention_days
        if days is None:
            days = orchestrator.config.snapshot.retention_days
        for snapshot_id in store.cleanup(days):
            print(snapshot_id)
    else:
        print("Usage: schema-rewind snapshot {create,list,restore,delete,cleanup}")
        sys.exit(1)


if __name__ == "__main__":
    main()
