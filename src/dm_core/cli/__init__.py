"""CLI module for inspecting configured data models.

Provides commands for listing profiles and tables, finding primary key
candidates, checking key constraints and showing filtered table rows.

Usage:
    DM_PROFILE=local dm-core tables
    dm-core --profile local tables --filter "airports:faa == 'JFK'"
    dm-core --profile local candidates planes
    dm-core --profile local check
    dm-core --profile local show flights --filter "airlines:name == 'Delta Air Lines Inc.'" --limit 5

Commands:
    profiles    - List available profiles
    tables      - Show tables, keys and row counts after filtering
    candidates  - Show primary key candidates of a table
    check       - Check primary and foreign key constraints
    show        - Print rows of a table after filtering
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from dm_core.backends.sql import SQLBackend
from dm_core.config.loader import load_model_config
from dm_core.errors import DataModelError
from dm_core.factory import ProfileNotFoundError, connect_model, get_active_profile_name
from dm_core.filtering import collect, declare_filter
from dm_core.keys import check_constraints, enumerate_pk_candidates
from dm_core.model import DataModel
from dm_core.tables import nrow

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_model(args: argparse.Namespace) -> DataModel | None:
    """Connect the configured profile, printing errors instead of raising.

    Returns:
        The model, or None if it could not be built.
    """
    try:
        model = connect_model(
            profile_name=args.profile,
            config_path=args.config,
            env_prefix=args.env_prefix,
        )
    except ProfileNotFoundError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return None
    except (FileNotFoundError, ValueError, DataModelError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None
    except (KeyError, SQLAlchemyError) as e:
        console.print(f"[red]Failed to load data model: {e}[/red]")
        return None

    for spec in getattr(args, "filter", None) or []:
        table, sep, expression = spec.partition(":")
        if not sep or not expression.strip():
            console.print(f"[red]Error: filter must look like TABLE:EXPRESSION, got '{spec}'[/red]")
            _close(model)
            return None
        try:
            model = declare_filter(model, table.strip(), expression.strip())
        except DataModelError as e:
            console.print(f"[red]Error: {e}[/red]")
            _close(model)
            return None

    return model


def _close(model: DataModel) -> None:
    if isinstance(model.backend, SQLBackend):
        model.backend.close()


# ============================================================================
# Command implementations
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from dm.toml.

    Reads only local TOML config -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if the config cannot be read.
    """
    try:
        config = load_model_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        current = args.profile or get_active_profile_name(env_prefix=args.env_prefix)
    except ProfileNotFoundError:
        current = None

    table = Table(title="Data Source Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Tables")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            ", ".join(profile.tables) if profile.tables else "(all)",
            profile.description or "",
        )

    console.print(table)

    if current in config.profiles:
        console.print("\n[bold green]*[/bold green] = active profile")

    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    """Show every table with its keys and row count after filtering."""
    model = _load_model(args)
    if model is None:
        return 1

    try:
        counts = nrow(model)
        table = Table(title="Tables", show_header=True, header_style="bold")
        table.add_column("Table")
        table.add_column("Primary key")
        table.add_column("Foreign keys")
        table.add_column("Rows", justify="right")

        for name in model.list_tables():
            definition = model.get(name)
            fks = ", ".join(f"{fk.column} -> {fk.parent}" for fk in definition.foreign_keys)
            table.add_row(
                f"[bold cyan]{name}[/bold cyan]" if definition.is_filtered else name,
                definition.primary_key or "[dim]-[/dim]",
                fks or "[dim]-[/dim]",
                str(counts[name]),
            )
        console.print(table)

        if model.filtered_tables():
            console.print("\n[bold cyan]table[/bold cyan] = filtered")
        return 0
    finally:
        _close(model)


def cmd_candidates(args: argparse.Namespace) -> int:
    """Show which columns of a table could be its primary key."""
    model = _load_model(args)
    if model is None:
        return 1

    try:
        candidates = enumerate_pk_candidates(model, args.table)
    except DataModelError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        _close(model)

    table = Table(title=f"Primary key candidates: {args.table}", show_header=True, header_style="bold")
    table.add_column("Column")
    table.add_column("Candidate")
    table.add_column("Why not")
    for candidate in candidates:
        table.add_row(
            candidate.column,
            "[green]yes[/green]" if candidate.candidate else "[red]no[/red]",
            candidate.why,
        )
    console.print(table)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Check key constraints.

    Returns:
        0 if every constraint holds, 1 otherwise.
    """
    model = _load_model(args)
    if model is None:
        return 1

    try:
        report = check_constraints(model)
    finally:
        _close(model)

    if report.valid:
        console.print(f"[bold green]v[/bold green] {report.format_report()}")
        return 0

    console.print("[bold red]x[/bold red] Key constraints violated")
    console.print(report.format_report())
    return 1


def cmd_show(args: argparse.Namespace) -> int:
    """Print the rows of a table after filter propagation."""
    model = _load_model(args)
    if model is None:
        return 1

    try:
        frame = collect(model, args.table)
    except DataModelError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        _close(model)

    shown = frame.head(args.limit) if args.limit else frame
    table = Table(title=f"{args.table} ({len(frame)} rows)", show_header=True, header_style="bold")
    for column in shown.columns:
        table.add_column(str(column))
    for row in shown.itertuples(index=False):
        table.add_row(*["" if value is None else str(value) for value in row])
    console.print(table)

    if len(shown) < len(frame):
        console.print(f"[dim]... {len(frame) - len(shown)} more rows[/dim]")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="dm-core",
        description="Relational data model inspection toolkit",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the config file (default: ./dm.toml)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Profile to use (default: from DM_PROFILE)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DM_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # tables command
    p_tables = subparsers.add_parser(
        "tables",
        help="Show tables, keys and row counts after filtering",
    )
    p_tables.add_argument(
        "--filter",
        action="append",
        metavar="TABLE:EXPR",
        help="Filter to declare before counting (repeatable)",
    )
    p_tables.set_defaults(func=cmd_tables)

    # candidates command
    p_candidates = subparsers.add_parser(
        "candidates",
        help="Show primary key candidates of a table",
    )
    p_candidates.add_argument("table", help="Table to inspect")
    p_candidates.set_defaults(func=cmd_candidates)

    # check command
    p_check = subparsers.add_parser(
        "check",
        help="Check primary and foreign key constraints",
    )
    p_check.set_defaults(func=cmd_check)

    # show command
    p_show = subparsers.add_parser(
        "show",
        help="Print rows of a table after filtering",
    )
    p_show.add_argument("table", help="Table to show")
    p_show.add_argument(
        "--filter",
        action="append",
        metavar="TABLE:EXPR",
        help="Filter to declare before showing (repeatable)",
    )
    p_show.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of rows to print (0 = all)",
    )
    p_show.set_defaults(func=cmd_show)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
