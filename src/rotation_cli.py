"""Operator commands for the rotation sync service."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from config import settings
from logs import configure_logging
from rotation.errors import RotationServiceError
from rotation.runtime import RotationRuntime, build_runtime
from services.database import get_sync_session, init_db

logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Rotation sync operator commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Apply database migrations")

    status = subparsers.add_parser("status", help="Show who is on call for each schedule")
    status.add_argument("--workspace", required=True, help="Workspace id")

    sync_now = subparsers.add_parser("sync-now", help="Sync user groups immediately")
    target = sync_now.add_mutually_exclusive_group(required=True)
    target.add_argument("--workspace", help="Sync every mapping in the workspace")
    target.add_argument("--mapping", help="Sync a single mapping")

    subparsers.add_parser("sweep", help="Delete overrides that have ended")
    return parser.parse_args(argv)


def _print_status(runtime: RotationRuntime, workspace_id: str) -> None:
    statuses = runtime.service.list_rotation_status(workspace_id)
    if not statuses:
        print(f"No schedules in workspace {workspace_id}.")
        return
    for status in statuses:
        who = status.current_identity or "nobody"
        line = f"{status.schedule_name} ({status.kind}): {who}"
        if status.is_override:
            line += f" [override until {status.override_ends_at.isoformat()}"
            line += f": {status.override_reason}]" if status.override_reason else "]"
        if status.warning:
            line += f" warning: {status.warning}"
        print(line)


def _print_sync(runtime: RotationRuntime, args: argparse.Namespace) -> None:
    if args.mapping:
        results = [runtime.service.sync_now(args.mapping)]
    else:
        results = runtime.service.sync_workspace(args.workspace)
    for result in results:
        users = ", ".join(result.users) or "-"
        print(f"{result.user_group_name}: {result.users_synced} user(s) synced ({users})")
    if not results:
        print("No mappings synced.")


def main(argv: Sequence[str] | None = None, *, runtime: RotationRuntime | None = None) -> int:
    """Run an operator command and return the process exit code."""
    args = _parse_args(argv)
    configure_logging(level=settings.log_level, json_output=settings.log_json, service="rotation-cli")

    if args.command == "init-db":
        init_db()
        print("Database migrations applied.")
        return 0

    runtime = runtime or build_runtime(get_sync_session)
    try:
        if args.command == "status":
            _print_status(runtime, args.workspace)
        elif args.command == "sync-now":
            _print_sync(runtime, args)
        elif args.command == "sweep":
            removed = runtime.override_store.sweep_expired()
            print(f"Removed {removed} expired override(s).")
    except RotationServiceError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
