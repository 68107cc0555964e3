"""CLI commands for inspecting recorded webhook events."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(invoke_without_command=True)
console = Console()


@app.callback(invoke_without_command=True)
def events(
    event_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only show this event type"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max events to show"),
):
    """List the most recent webhook events."""

    async def _events():
        from src.storage.db import close_db, get_session
        from src.storage.events import list_events

        async with get_session() as session:
            rows = await list_events(session, event_type=event_type, limit=limit)
        await close_db()

        if not rows:
            console.print("[dim]No events recorded.[/dim]")
            return

        table = Table(title="Events")
        table.add_column("Time", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Action")
        table.add_column("Title")
        table.add_column("Actor", style="green")
        table.add_column("ID", style="dim")
        for e in rows:
            table.add_row(
                e.timestamp.strftime("%Y-%m-%d %H:%M"),
                e.type,
                e.action or "",
                e.title,
                e.actor or "",
                e.id[:12],
            )
        console.print(table)

    asyncio.run(_events())
