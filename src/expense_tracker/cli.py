"""CLI for Expense Tracker.

Commands:
    init-db                  - Create database tables
    reset-db                 - Drop and recreate all tables
    seed-categories          - Insert the predefined categories
    cleanup-orphans          - Run the orphan sweep once
    ownership <storage_id>   - Show who owns a blob
    stats                    - Show storage statistics
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from expense_tracker.attachments.ledger import resolve_ownership
from expense_tracker.config import settings
from expense_tracker.db import async_session_factory, engine, init_db, run_in_transaction
from expense_tracker.models import Base, Expense, OwnershipState, StoredBlob, Upload
from expense_tracker.services.categories import CategoryService
from expense_tracker.services.orphan_sweep import OrphanSweeper
from expense_tracker.storage.local import LocalBlobStore

app = typer.Typer(
    name="expense-tracker",
    help="Expense Tracker: work expenses with owned receipt attachments",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("init-db")
def init_db_command():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized successfully.[/green]")

    run_async(_init())


@app.command("reset-db")
def reset_db(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation prompt")
    ] = False,
):
    """Drop all tables and recreate them.

    WARNING: This destroys all data! Stored blob files are left on disk.
    """
    if not force:
        confirm = typer.confirm(
            "This will DELETE ALL DATA. Are you sure?",
            default=False,
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    async def _reset():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        console.print("[green]Database reset successfully.[/green]")

    run_async(_reset())


@app.command("seed-categories")
def seed_categories():
    """Insert the predefined categories if none exist."""
    async def _seed():
        return await run_in_transaction(lambda session: CategoryService(session).seed_predefined())

    seeded = run_async(_seed())
    if seeded:
        console.print(f"[green]Seeded {seeded} categories.[/green]")
    else:
        console.print("[yellow]Categories already seeded.[/yellow]")


@app.command("cleanup-orphans")
def cleanup_orphans(
    batch_size: Annotated[
        int | None, typer.Option("--batch-size", "-b", help="Items per pass")
    ] = None,
    retention_hours: Annotated[
        int | None, typer.Option("--retention-hours", help="Minimum age before reclaiming")
    ] = None,
):
    """Run the orphan sweep once (the same job the daily schedule runs)."""
    async def _sweep():
        sweeper = OrphanSweeper(
            LocalBlobStore.from_settings(async_session_factory),
            retention=timedelta(hours=retention_hours) if retention_hours else None,
            batch_size=batch_size,
        )
        return await sweeper.run()

    try:
        result = run_async(_sweep())
    except Exception as e:
        console.print(f"[red]Sweep failed:[/red] {e}")
        raise typer.Exit(1) from None

    table = Table(title="Orphan sweep")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_row("Tracked orphans deleted", str(result.tracked_deleted))
    table.add_row("Untracked orphans deleted", str(result.untracked_deleted))
    table.add_row("Stale upload records cleared", str(result.stale_records_cleared))
    table.add_row("Failures", str(result.failures))
    console.print(table)


@app.command("ownership")
def ownership(storage_id: Annotated[str, typer.Argument(help="Blob id")]):
    """Show the effective owner of a blob."""
    try:
        blob_id = UUID(storage_id)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid blob id: {storage_id}")
        raise typer.Exit(1) from None

    async def _resolve():
        async with async_session_factory() as session:
            return await resolve_ownership(session, blob_id)

    result = run_async(_resolve())
    colour = {
        OwnershipState.ATTACHED: "green",
        OwnershipState.PENDING: "yellow",
        OwnershipState.UNTRACKED: "red",
    }[result.state]
    console.print(f"[{colour}]{result.state.value}[/{colour}] owner={result.user_id or '-'}")


@app.command("stats")
def stats():
    """Show counts of expenses, upload records and stored blobs."""
    async def _stats():
        async with async_session_factory() as session:
            expenses = await session.scalar(select(func.count()).select_from(Expense))
            attached = await session.scalar(
                select(func.count()).select_from(Expense).where(Expense.attachment_id.is_not(None))
            )
            uploads = await session.scalar(select(func.count()).select_from(Upload))
            blobs = await session.scalar(select(func.count()).select_from(StoredBlob))
            return expenses, attached, uploads, blobs

    expenses, attached, uploads, blobs = run_async(_stats())

    table = Table(title="Expense Tracker")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_row("Expenses", str(expenses))
    table.add_row("Expenses with attachment", str(attached))
    table.add_row("Upload records", str(uploads))
    table.add_row("Stored blobs", str(blobs))
    console.print(table)
    console.print(f"Retention window: {settings.orphan_retention_hours}h, batch size: {settings.cleanup_batch_size}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
