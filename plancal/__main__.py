# pylint: disable=import-outside-toplevel
"""Main entry point for the plancal CLI.

This module provides the command-line interface for plancal, allowing users to
configure their environment, browse a month of planned workouts (online or
from the offline cache), move workouts between days, and inspect the cache
and the move log.
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()


# ---------------------------------------------------------------------------
# Logging: inject the signed-in user into every record
# ---------------------------------------------------------------------------


class _UserFilter(logging.Filter):
    """Adds ``user`` to every log record, ``-`` when signed out."""

    def filter(self, record: logging.LogRecord) -> bool:
        from plancal.user_context import current_user_identity

        record.user = current_user_identity() or "-"
        return True


def _configure_logging(debug: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(_UserFilter())
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s user=%(user)s %(name)s: %(message)s"))
    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) and hasattr(h, "stream") for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def _sign_in() -> None:
    from plancal.user_context import set_access_token, set_user_identity

    set_user_identity(os.environ.get("PLANCAL_EMAIL"))
    set_access_token(os.environ.get("PLANCAL_TOKEN"))


def _debug_enabled() -> bool:
    from plancal.appconfig import load_config

    return bool(load_config().get("debug"))


HELP_TEXT = """
plancal - Browse and reschedule your planned workouts, online or offline.

Usage:
    python -m plancal <command>

Commands:
    configure     Configure plancal for your environment (server, timezone, cache)
    migrate       Create the settings and move-log tables
    show-month    Show the planned workouts for a month (YYYY-MM)
    move          Move workouts to another day (--to YYYY-MM-DD ID [ID ...])
    clear-cache   Delete every cached month and cached response
    status        Show cached months and recent moves
    help          Show this help and usage documentation

Setup:
    1. Run 'python -m plancal configure' to set up some basics
    2. Put PLANCAL_EMAIL and PLANCAL_TOKEN in a .env file
    3. Use 'python -m plancal show-month YYYY-MM' to see your plan.

Months you have viewed stay available with 'show-month --offline'.
"""


def main(argv=None) -> int:
    """Main function for the plancal CLI."""
    parser = argparse.ArgumentParser(description="plancal CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("configure", help="Configure plancal for your environment")
    subparsers.add_parser(
        "migrate",
        help="Bootstrap / migrate the database schema (safe to run on every start)",
    )
    show_parser = subparsers.add_parser("show-month", help="Show planned workouts for a month (YYYY-MM)")
    show_parser.add_argument("year_month", type=str, help="Year and month in YYYY-MM format")
    show_parser.add_argument("--offline", action="store_true", help="Only use the local cache")
    show_parser.add_argument("--inspector", action="store_true", help="Read-only inspector view")

    move_parser = subparsers.add_parser("move", help="Move planned workouts to another day")
    move_parser.add_argument("--to", required=True, help="Target day in YYYY-MM-DD format")
    move_parser.add_argument("--partial", action="store_true", help="Move the allowed ids even if some are rejected")
    move_parser.add_argument("ids", nargs="+", help="Workout ids to move")

    clear_parser = subparsers.add_parser("clear-cache", help="Delete cached months and cached responses")
    clear_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    status_parser = subparsers.add_parser("status", help="Show cached months and recent moves")
    status_parser.add_argument("--limit", type=int, default=20, help="Number of move log rows to show")

    subparsers.add_parser("help", help="Show usage and documentation")

    args = parser.parse_args(argv)

    _sign_in()
    _configure_logging(_debug_enabled() if args.command not in ("configure", "help") else False)

    if args.command == "configure":
        from plancal.commands.configure import run

        run()
    elif args.command == "migrate":
        from plancal.commands.migrate import run

        run()
    elif args.command == "show-month":
        from plancal.commands.show_month import run

        show_args = [args.year_month]
        if args.offline:
            show_args.append("--offline")
        if args.inspector:
            show_args.append("--inspector")
        run(show_args)
    elif args.command == "move":
        from plancal.commands.move import run

        move_args = ["--to", args.to]
        if args.partial:
            move_args.append("--partial")
        return run(move_args + args.ids)
    elif args.command == "clear-cache":
        from plancal.commands.clear_cache import run

        run(assume_yes=args.yes)
    elif args.command == "status":
        from plancal.commands.status import run

        run(limit=args.limit)
    elif args.command == "help":
        print(HELP_TEXT)
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
