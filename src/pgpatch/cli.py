"""
Command-line interface for pgpatch.
"""

import asyncio
import logging
import logging.handlers
import sys
from functools import wraps
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import LoggingConfig, PgPatchConfig
from .exceptions import ConfigurationError, PgPatchError
from .runner import PatchRunner, RunReport, TableStatus, format_elapsed, write_outputs


console = Console()

STATUS_STYLES = {
    TableStatus.CREATED: "green",
    TableStatus.ALTERED: "yellow",
    TableStatus.IN_SYNC: "blue",
    TableStatus.SEEDED: "green",
    TableStatus.FAILED: "red",
}


def setup_logging(logging_config: LoggingConfig, debug: bool = False) -> None:
    """Configure the root logger from the logging section."""
    level = logging.DEBUG if debug else getattr(logging, logging_config.level)
    formatter = logging.Formatter(logging_config.format)

    handlers = [logging.StreamHandler(sys.stderr)]
    if logging_config.file:
        handlers.append(logging.handlers.RotatingFileHandler(
            logging_config.file,
            maxBytes=logging_config.max_size,
            backupCount=logging_config.backup_count,
            encoding="utf-8",
        ))

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PgPatchError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def _load_config(ctx: click.Context, config: str) -> PgPatchConfig:
    pgpatch_config = PgPatchConfig.from_yaml(config)
    setup_logging(pgpatch_config.logging, debug=ctx.obj.get("debug", False))
    return pgpatch_config


def _finish(report: RunReport, export_dir: str) -> None:
    paths = write_outputs(report, export_dir)
    _display_report(report)

    for path in paths:
        console.print(f"[green]✓[/green] Wrote {path}")
    if not paths:
        console.print("[blue]Nothing to write, target is up to date[/blue]")


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)

export_dir_option = click.option(
    "--export-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for generated scripts (defaults to export_dir from the config)",
)

format_option = click.option(
    "--format",
    "file_format",
    type=click.Choice(["merge", "split"]),
    default=None,
    help="Merge scripts into one file or write one file per table",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """pgpatch: generate SQL patches that align a target PostgreSQL database with a source."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@config_option
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        pgpatch_config = PgPatchConfig.from_yaml(config)
        pgpatch_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")

        _display_config_summary(pgpatch_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}")
        sys.exit(1)


@main.command()
@config_option
@format_option
@export_dir_option
@click.pass_context
@handle_errors
def tables(ctx, config: str, file_format: Optional[str], export_dir: Optional[str]):
    """Generate CREATE TABLE and ALTER TABLE scripts for every table."""
    pgpatch_config = _load_config(ctx, config)
    console.print(f"[blue]Comparing tables in schema {pgpatch_config.schema_name}...[/blue]")

    report = asyncio.run(PatchRunner(pgpatch_config).patch_all_tables(file_format))
    _finish(report, export_dir or pgpatch_config.export_dir)

    if report.unresolved_tables:
        console.print(
            "[yellow]Foreign key cycle, order not guaranteed for:[/yellow] "
            + ", ".join(report.unresolved_tables)
        )


@main.command()
@config_option
@export_dir_option
@click.argument("table_names", nargs=-1, required=True)
@click.pass_context
@handle_errors
def alter(ctx, config: str, export_dir: Optional[str], table_names: Tuple[str, ...]):
    """Generate ALTER TABLE scripts for the given tables."""
    pgpatch_config = _load_config(ctx, config)

    report = asyncio.run(PatchRunner(pgpatch_config).patch_tables(list(table_names)))
    _finish(report, export_dir or pgpatch_config.export_dir)


@main.command()
@config_option
@click.option(
    "--ordering-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="File of DROP VIEW IF EXISTS lines ordering view creation",
)
@export_dir_option
@click.pass_context
@handle_errors
def views(ctx, config: str, ordering_file: Optional[str], export_dir: Optional[str]):
    """Generate CREATE OR REPLACE VIEW scripts for views missing on the target."""
    pgpatch_config = _load_config(ctx, config)
    ordering_text = pgpatch_config.load_view_ordering(ordering_file)
    if ordering_text is None:
        console.print("[yellow]No view ordering file, all views are unordered[/yellow]")

    report = asyncio.run(PatchRunner(pgpatch_config).patch_views(ordering_text))
    _finish(report, export_dir or pgpatch_config.export_dir)


@main.command()
@config_option
@format_option
@export_dir_option
@click.argument("table_names", nargs=-1)
@click.pass_context
@handle_errors
def seed(
    ctx,
    config: str,
    file_format: Optional[str],
    export_dir: Optional[str],
    table_names: Tuple[str, ...],
):
    """Generate INSERT scripts for rows missing on the target."""
    pgpatch_config = _load_config(ctx, config)

    runner = PatchRunner(pgpatch_config)
    report = asyncio.run(runner.seed_data(list(table_names) or None, file_format))
    _finish(report, export_dir or pgpatch_config.export_dir)


def _display_report(report: RunReport):
    """Display per-item results and a status summary."""
    for item in report.items:
        style = STATUS_STYLES[item.status]
        line = f"  [{style}]{item.status.value:>8}[/{style}]  {item.name}"
        if item.error:
            line += f"  [red]{escape(item.error)}[/red]"
        elif item.message:
            line += f"  ({item.message})"
        console.print(line)

    summary_table = Table(title=f"pgpatch {report.command}")
    summary_table.add_column("Status", style="cyan")
    summary_table.add_column("Count", style="magenta")

    for status, count in report.get_summary().items():
        if count:
            summary_table.add_row(status, str(count))

    console.print(summary_table)
    console.print(f"The total process took {format_elapsed(report.elapsed_seconds)}")


def _display_config_summary(config: PgPatchConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db_table = Table(title="Databases")
    db_table.add_column("Role", style="cyan")
    db_table.add_column("Host", style="magenta")
    db_table.add_column("Database", style="green")
    db_table.add_column("SSL", style="yellow")

    for role, connection in (("source", config.source), ("target", config.target)):
        if connection is None:
            db_table.add_row(role, "-", "[yellow]not configured[/yellow]", "-")
        else:
            db_table.add_row(role, f"{connection.host}:{connection.port}", connection.database, str(connection.ssl_mode))

    console.print(db_table)

    settings_table = Table(title="Settings")
    settings_table.add_column("Setting", style="cyan")
    settings_table.add_column("Value", style="green")
    settings_table.add_row("Schema", config.schema_name)
    settings_table.add_row("Export directory", str(Path(config.export_dir)))
    settings_table.add_row("File prefix", config.file_prefix)
    settings_table.add_row("File format", config.file_format)
    settings_table.add_row("Table metadata", config.tables_metadata_path or "-")
    settings_table.add_row("Seeding overrides", config.seeding_overrides_path or "-")
    settings_table.add_row("Ignored tables", str(len(config.table_filter.ignored_tables)))

    console.print(settings_table)


if __name__ == "__main__":
    main()
