"""Hookchat CLI entry point using Typer."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from src.cli.events_cmd import app as events_app

app = typer.Typer(
    name="hookchat",
    help="Webhook ingestion and streaming chat agent.",
    no_args_is_help=True,
)
console = Console()

app.add_typer(events_app, name="events", help="Inspect recorded webhook events")


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
    )


@app.command()
def init(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Create the database schema and a default config file."""
    _setup_logging(verbose)

    async def _init():
        from src.storage.db import close_db, init_db

        config_dir = Path.home() / ".config/hookchat"
        config_dir.mkdir(parents=True, exist_ok=True)
        console.print(f"  Config dir: {config_dir}")

        console.print("  Initializing database...")
        await init_db()
        await close_db()
        console.print("  Database ready.")

        config_path = config_dir / "config.toml"
        if not config_path.exists():
            config_path.write_text(
                "[general]\n"
                'log_level = "INFO"\n\n'
                "[webhook]\n"
                '# secret = ""  # Or set WEBHOOK_SECRET env var\n'
                'signature_header = "X-Signature"\n'
                'event_type_header = "X-Event-Type"\n\n'
                "[anthropic]\n"
                '# api_key = ""  # Or set ANTHROPIC_API_KEY env var\n'
                'model = "claude-haiku-4-5-20251001"\n\n'
                "[chat]\n"
                "max_steps = 10\n"
            )
            console.print(f"  Config written: {config_path}")

        console.print("\n[bold green]Hookchat initialized.[/bold green]")

    asyncio.run(_init())


@app.command()
def check():
    """Report missing secrets. Exits non-zero if any are absent."""
    from src.config import get_settings

    missing = get_settings().missing_secrets()
    if not missing:
        console.print("[green]All secrets configured[/green]")
        return

    for name in missing:
        console.print(f"[red]{name} is not set[/red]; add it to .env or the environment")
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the HTTP API with uvicorn."""
    _setup_logging(verbose)

    import uvicorn

    from src.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "src.api.routes:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level="debug" if verbose else settings.general.log_level.lower(),
    )


@app.command()
def sign(
    body_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File containing the raw request body"),
    secret: Optional[str] = typer.Option(None, "--secret", help="Signing secret (defaults to WEBHOOK_SECRET)"),
):
    """Print the X-Signature value for a request body."""
    from src.config import get_settings
    from src.webhooks.signature import compute_signature

    key = secret or get_settings().webhook.secret
    if not key:
        console.print("[red]No secret given and WEBHOOK_SECRET is not set[/red]")
        raise typer.Exit(code=1)

    console.print(compute_signature(body_file.read_bytes(), key), highlight=False)


def main():
    """Entry point for the hookchat CLI."""
    app()


if __name__ == "__main__":
    main()
