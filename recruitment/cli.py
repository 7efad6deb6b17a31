"""Recruitment portal CLI - operator entry point."""

from __future__ import annotations

import asyncio
import uuid

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .timeutil import isoformat

app = typer.Typer(
    name="recruitment",
    help="Recruitment portal operator tools",
    no_args_is_help=True,
)
console = Console()

db_app = typer.Typer(help="Database commands")
cycles_app = typer.Typer(help="Recruitment cycle commands")
outbox_app = typer.Typer(help="Notification outbox commands")

app.add_typer(db_app, name="db")
app.add_typer(cycles_app, name="cycles")
app.add_typer(outbox_app, name="outbox")


def _alembic_config():
    from alembic.config import Config

    return Config(str(settings.base_dir / "alembic.ini"))


# ============================================================================
# Server / Database
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the recruitment API."""
    import uvicorn

    uvicorn.run("recruitment.app:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


@db_app.command("upgrade")
def db_upgrade(revision: str = typer.Argument("head")):
    """Apply migrations up to REVISION."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    console.print(f"[green]Database upgraded to {revision}[/green]")


@db_app.command("downgrade")
def db_downgrade(revision: str = typer.Argument(..., help="Target revision, e.g. base")):
    """Revert migrations down to REVISION."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    console.print(f"[yellow]Database downgraded to {revision}[/yellow]")


# ============================================================================
# Cycles
# ============================================================================


async def _list_cycles():
    from .database import async_session_factory
    from .services import cycle_svc

    async with async_session_factory() as db:
        return await cycle_svc.list_cycles(db)


@cycles_app.command("list")
def cycles_list():
    """List recruitment cycles."""
    cycles = asyncio.run(_list_cycles())
    if not cycles:
        console.print("[yellow]No cycles yet.[/yellow]")
        return

    table = Table(title="Recruitment Cycles")
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Opens")
    table.add_column("Due")
    table.add_column("Closes")
    table.add_column("Active", style="green")
    for c in cycles:
        table.add_row(
            c.slug, c.name, isoformat(c.portal_open_at), isoformat(c.application_due_at),
            isoformat(c.portal_close_at), "yes" if c.is_active else "",
        )
    console.print(table)


async def _latest_ranking(cycle_id: uuid.UUID, phase: str):
    from .database import async_session_factory
    from .services import ranking_svc

    async with async_session_factory() as db:
        return await ranking_svc.get_latest_ranking(db, cycle_id, phase)


@cycles_app.command("rankings")
def cycles_rankings(
    cycle_id: uuid.UUID = typer.Argument(..., help="Cycle id"),
    phase: str = typer.Option("application", help="Review phase"),
):
    """Show the latest generated ranking for a phase."""
    generation = asyncio.run(_latest_ranking(cycle_id, phase))
    if generation is None:
        console.print(Panel(f"No rankings generated for [bold]{phase}[/bold] yet.", title="Rankings"))
        raise typer.Exit(1)

    table = Table(title=f"{phase} rankings v{generation.version}")
    table.add_column("#", justify="right")
    table.add_column("Applicant", style="cyan")
    table.add_column("Track")
    table.add_column("Track #", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Reviews", justify="right")
    for entry in generation.entries:
        score = "-" if entry.aggregate_score is None else f"{entry.aggregate_score:.2f}"
        table.add_row(
            str(entry.rank), entry.applicant_email, entry.track or "",
            str(entry.track_rank), score, str(entry.review_count),
        )
    console.print(table)


# ============================================================================
# Outbox
# ============================================================================


async def _flush_outbox(limit: int) -> int:
    from .worker import NotificationWorker

    worker = NotificationWorker()
    processed = 0
    while processed < limit and await worker.run_once():
        processed += 1
    return processed


@outbox_app.command("flush")
def outbox_flush(limit: int = typer.Option(100, help="Maximum rows to attempt")):
    """Attempt delivery of due notifications once, without the polling loop."""
    processed = asyncio.run(_flush_outbox(limit))
    console.print(f"Attempted [bold]{processed}[/bold] notification(s)")


if __name__ == "__main__":
    app()
