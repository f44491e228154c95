"""Command-line interface for schedex.

Inspect cron expressions the same way a running schedule resolves them:

    schedex next "*/5 * * * *"                       Next 5 runs in UTC
    schedex next "30 1 * * *" -z America/New_York    DST-aware preview
    schedex validate "0 9 * * 1-5"                   Exit 1 if invalid
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from itertools import islice
from typing import NoReturn

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from schedex import __version__
from schedex.config import settings
from schedex.errors import InvalidCronExpression, ScheduleValidationError
from schedex.schedule import CronExpression, iter_runs
from schedex.types import validate_timezone

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else settings.log_level.upper()
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=verbose)],
    )


def _parse_from(value: str | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ScheduleValidationError(f"--from must be an ISO 8601 timestamp, got {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_next(args: argparse.Namespace) -> None:
    """Show upcoming runs of a cron expression."""
    try:
        expression = CronExpression.parse(args.expression)
        tz = validate_timezone(args.timezone)
        start = _parse_from(args.start)
    except (ScheduleValidationError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)

    count = args.count or settings.preview_count

    table = Table(title=escape(f"{expression} ({expression.describe()})"))
    table.add_column("#", style="cyan", justify="right")
    table.add_column(f"Local ({tz})", style="white")
    table.add_column("UTC", style="blue")

    for index, run in enumerate(islice(iter_runs(expression, start, tz), count), start=1):
        table.add_row(
            str(index),
            run.isoformat(),
            run.astimezone(timezone.utc).isoformat(),
        )

    console.print(table)


def cmd_validate(args: argparse.Namespace) -> None:
    """Check whether a cron expression parses."""
    try:
        expression = CronExpression.parse(args.expression)
    except InvalidCronExpression as e:
        console.print(f"[red]Invalid:[/red] {escape(e.reason)}")
        sys.exit(1)

    console.print(f"[green]Valid:[/green] {escape(str(expression))} - {expression.describe()}")


def cmd_version(args: argparse.Namespace) -> None:
    """Show version information."""
    console.print(f"schedex v{__version__}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schedex",
        description="schedex - preview and validate cron schedules",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")

    subparsers = parser.add_subparsers(dest="command")

    next_parser = subparsers.add_parser(
        "next",
        help="Show upcoming runs of a cron expression",
        epilog="""Examples:
  schedex next "*/5 * * * *"
  schedex next "0 9 * * 1-5" -z Europe/Berlin -n 10
  schedex next "30 1 * * *" -z America/New_York --from 2024-11-02T12:00:00Z""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    next_parser.add_argument("expression", help="Cron expression (quote it)")
    next_parser.add_argument(
        "-z", "--timezone", default=settings.default_timezone,
        help="Timezone the expression is evaluated in"
    )
    next_parser.add_argument(
        "-n", "--count", type=int, default=None,
        help=f"Number of runs to show (default: {settings.preview_count})"
    )
    next_parser.add_argument(
        "--from", dest="start", default=None,
        help="ISO 8601 instant to resolve from (default: now)"
    )
    next_parser.set_defaults(func=cmd_next)

    validate_parser = subparsers.add_parser(
        "validate",
        help="Check whether a cron expression is valid",
    )
    validate_parser.add_argument("expression", help="Cron expression (quote it)")
    validate_parser.set_defaults(func=cmd_validate)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the schedex CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
