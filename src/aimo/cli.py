"""CLI interface for aimo operational tooling.

Talks to the stores directly, using the same AIMO_* settings as the service.
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from pydantic import ValidationError as SettingsError
from rich.console import Console
from rich.table import Table

from aimo.config import AimoConfig
from aimo.errors import AimoError, MigrationFailure
from aimo.maintenance import VectorReconciler
from aimo.migrations import MigrationManager
from aimo.migrations.scripts import build_default_registry
from aimo.storage import StorageContext

console = Console()
T = TypeVar("T")


def setup_logging(verbose: bool) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def handle_error(e: Exception) -> None:
    """Handle and display errors nicely."""
    if isinstance(e, MigrationFailure):
        console.print(f"[red]Migration Error:[/red] {e}")
        for failure in e.failures:
            console.print(f"[dim]  {failure.table_name} v{failure.version}[/dim]")
    elif isinstance(e, AimoError):
        console.print(f"[red]Error:[/red] {e}")
    elif isinstance(e, (ValueError, SettingsError)):
        console.print(f"[red]Configuration Error:[/red] {e}")
        console.print("[dim]Check AIMO_DATABASE_URL and AIMO_VECTOR_DATABASE_URL.[/dim]")
    else:
        console.print(f"[red]Unexpected Error:[/red] {e}")
    sys.exit(1)


def build_storage(config: AimoConfig) -> StorageContext:
    """Storage context for CLI commands."""
    return StorageContext.from_config(config)


def run_with_vectors(ctx: click.Context, fn: Callable[[Any], Awaitable[T]]) -> T:
    """Connect only the vector store, run ``fn`` and close everything."""
    config: AimoConfig = ctx.obj["config"]

    async def _run() -> T:
        storage = build_storage(config)
        try:
            await storage.vectors.connect()
            return await fn(storage.vectors)
        finally:
            await storage.shutdown()

    return asyncio.run(_run())


def get_manager(ctx: click.Context, vectors: Any) -> MigrationManager:
    config: AimoConfig = ctx.obj["config"]
    return MigrationManager(
        vectors,
        build_default_registry(config.vector_table),
        verbose=ctx.obj["verbose"] or config.migration_verbose,
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """aimo - memo storage maintenance.

    Configuration:
      AIMO_DATABASE_URL         - Relational store URL
      AIMO_VECTOR_DATABASE_URL  - PostgreSQL + pgvector URL
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)
    try:
        ctx.obj["config"] = AimoConfig()
    except SettingsError as e:
        handle_error(e)


# =============================================================================
# Migrations
# =============================================================================


@main.group()
def migrate() -> None:
    """Vector-store schema migrations."""


@migrate.command("run")
@click.option("--dry-run", is_flag=True, help="Show pending migrations without applying them")
@click.pass_context
def migrate_run(ctx: click.Context, dry_run: bool) -> None:
    """Apply pending migrations."""
    try:
        report = run_with_vectors(ctx, lambda v: get_manager(ctx, v).initialize(dry_run=dry_run))
    except (AimoError, ValueError) as e:
        handle_error(e)
        return

    if dry_run:
        if not report.planned:
            console.print("[green]Nothing to migrate[/green]")
        for table, versions in report.planned.items():
            console.print(f"[yellow]{table}[/yellow]: would apply v{', v'.join(map(str, versions))}")
        return

    if not report.applied_count:
        console.print("[green]All tables up to date[/green]")
    for table, versions in report.applied.items():
        console.print(f"[green]{table}[/green]: applied v{', v'.join(map(str, versions))}")


@migrate.command("status")
@click.pass_context
def migrate_status(ctx: click.Context) -> None:
    """Show current vs. latest version per table."""
    try:
        status = run_with_vectors(ctx, lambda v: get_manager(ctx, v).get_status())
    except (AimoError, ValueError) as e:
        handle_error(e)
        return

    registry = build_default_registry(ctx.obj["config"].vector_table)
    table = Table(title="Migration Status")
    table.add_column("Table", style="cyan")
    table.add_column("Current", justify="right")
    table.add_column("Latest", justify="right")
    for name, current in status.items():
        latest = registry.latest_version(name)
        style = "green" if current == latest else "yellow"
        table.add_row(name, f"[{style}]{current}[/{style}]", str(latest))
    console.print(table)


@migrate.command("validate")
@click.pass_context
def migrate_validate(ctx: click.Context) -> None:
    """Exit non-zero if any table is behind."""
    try:
        result = run_with_vectors(ctx, lambda v: get_manager(ctx, v).validate())
    except (AimoError, ValueError) as e:
        handle_error(e)
        return

    if result.valid:
        console.print("[green]All tables at latest version[/green]")
        return
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    sys.exit(1)


# =============================================================================
# Maintenance
# =============================================================================


@main.command()
@click.option("--dry-run", is_flag=True, help="Report drift without repairing it")
@click.option("--batch-size", type=int, default=None, help="Rows scanned per batch")
@click.pass_context
def reconcile(ctx: click.Context, dry_run: bool, batch_size: int | None) -> None:
    """Re-embed memos missing a vector and drop orphaned vectors."""
    config: AimoConfig = ctx.obj["config"]

    async def _run():
        storage = build_storage(config)
        try:
            await storage.startup()
            return await VectorReconciler(storage).run(batch_size=batch_size, dry_run=dry_run)
        finally:
            await storage.shutdown()

    try:
        with console.status("Reconciling stores..."):
            report = asyncio.run(_run())
    except (AimoError, ValueError) as e:
        handle_error(e)
        return

    table = Table(title="Reconciliation" + (" (dry run)" if dry_run else ""))
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for key, value in report.as_dict().items():
        if key != "dry_run":
            table.add_row(key, str(value))
    console.print(table)


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check relational and vector store connectivity."""
    config: AimoConfig = ctx.obj["config"]

    async def _run() -> dict[str, bool]:
        storage = build_storage(config)
        try:
            return {
                "relational": await storage.database.health_check_async(),
                "vector": await storage.vectors.health_check(),
            }
        finally:
            await storage.shutdown()

    try:
        results = asyncio.run(_run())
    except (AimoError, ValueError) as e:
        handle_error(e)
        return

    for name, ok in results.items():
        if ok:
            console.print(f"[green]{name}: healthy[/green]")
        else:
            console.print(f"[red]{name}: unreachable[/red]")
    if not all(results.values()):
        sys.exit(1)


if __name__ == "__main__":
    main()
