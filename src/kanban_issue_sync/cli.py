"""
Command-line interface for the kanban/issue sync engine.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING

from . import github_tracker as ght
from .config import load_board, load_json, load_sync_config
from .engine import SyncEngine
from .exceptions import SyncEngineError
from .issue_builder import format_timestamp
from .utils import PassError, setup_logging

if TYPE_CHECKING:
    from .engine import ValidationResult
    from .operations import SyncResult

logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Synchronize a kanban board with GitHub issues")

    _ = parser.add_argument(
        "--github-pass-token", help="Path for GitHub token in pass utility (default: github/cli/token)"
    )
    _ = parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Increase console verbosity (-v for info, -vv for debug)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a sync configuration and repository access")
    _ = validate.add_argument("config", help="Path to the sync configuration JSON file")
    _ = validate.add_argument("--board", help="Path to a board JSON file to check column mappings against")

    plan = subparsers.add_parser("plan", help="Show the operations and conflicts a sync would produce")
    _ = plan.add_argument("board", help="Path to the board JSON file")
    _ = plan.add_argument("config", help="Path to the sync configuration JSON file")

    return parser.parse_args(argv)


def _print_validation_report(result: ValidationResult) -> None:
    print(f"Configuration: {'VALID' if result.valid else 'INVALID'}")
    for error in result.errors:
        print(f"  - {error}")


def _print_plan_report(result: SyncResult) -> None:
    print(f"Plan: {result.outcome.upper()} (started {format_timestamp(result.started_at)})")
    if result.error:
        print(f"Error: {result.error}")
        return

    print(f"Operations ({len(result.operations)}):")
    for operation in result.operations:
        target = []
        if operation.card_id is not None:
            target.append(f"card {operation.card_id}")
        if operation.issue_number is not None:
            repo = f"{operation.repo}" if operation.repo else ""
            target.append(f"issue {repo}#{operation.issue_number}")
        print(f"  {operation.kind:<13} {', '.join(target)}")

    if result.conflicts:
        print(f"Unresolved conflicts ({len(result.conflicts)}):")
        for conflict in result.conflicts:
            print(f"  {conflict.id}: local={conflict.local_value!r} remote={conflict.remote_value!r}")

    stats = result.stats
    print(
        f"Planned: cards created={stats.cards_created} updated={stats.cards_updated} "
        f"deleted={stats.cards_deleted}, issues created={stats.issues_created} "
        f"updated={stats.issues_updated}, conflicts auto-resolved={stats.conflicts_resolved}"
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbosity=args.verbose)

    try:
        config = load_sync_config(load_json(args.config))
        board_path: str | None = args.board
        board = load_board(load_json(board_path)) if board_path else None

        engine = SyncEngine(ght.GitHubTracker(ght.get_client(ght.get_token(args.github_pass_token))))

        if args.command == "validate":
            validation = engine.validate_sync_config(config, board)
            _print_validation_report(validation)
            sys.exit(0 if validation.valid else 1)

        assert board is not None  # "plan" requires the board argument
        result = engine.sync_board(board, config)
        _print_plan_report(result)
        sys.exit(0 if result.success else 1)

    except (SyncEngineError, PassError) as e:
        logger.error(f"{args.command} failed: {e}")  # noqa: TRY400
        sys.exit(1)
