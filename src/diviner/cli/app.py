# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Typer CLI application root."""

from __future__ import annotations

from typing import Annotated

import typer

from diviner.cli.commands import db, queue, schedule, scheduler

app = typer.Typer(
    name="diviner",
    help="Scan scheduling and job dispatch for multi-tenant security scanning",
    no_args_is_help=True,
)

app.add_typer(db.app, name="db", help="Database management")
app.add_typer(scheduler.app, name="scheduler", help="Run the scheduling loop")
app.add_typer(schedule.app, name="schedule", help="Manage repository scan schedules")
app.add_typer(queue.app, name="queue", help="Inspect and manage the job queues")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    workers: int = typer.Option(1, "--workers", "-w", help="Worker count"),
    no_scheduler: Annotated[
        bool, typer.Option("--no-scheduler", help="Disable the background scheduler")
    ] = False,
) -> None:
    """Start the diviner API server."""
    import uvicorn

    if no_scheduler:
        # Pass flag via environment; the app factory reads it
        import os
        os.environ["DIVINER_NO_SCHEDULER"] = "1"

    uvicorn.run(
        "diviner.api.app:_create_app_from_env",
        host=host,
        port=port,
        workers=workers,
        factory=True,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from diviner import __version__

    typer.echo(f"diviner v{__version__}")
