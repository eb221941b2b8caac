# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Queue inspection and maintenance commands."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

from diviner.core.constants import JobState

app = typer.Typer(help="Inspect and manage the job queues")


@app.command()
def stats() -> None:
    """Show job counts per queue and state."""
    asyncio.run(_async_stats())


async def _async_stats() -> None:
    from rich.console import Console
    from rich.table import Table

    from diviner.core.config import get_settings
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        counts = await runtime.queue_service.get_queue_stats()

    states = [s for s in JobState if s != JobState.REMOVED]
    table = Table(title="Queue Statistics")
    table.add_column("Queue", style="cyan", no_wrap=True)
    for state in states:
        table.add_column(str(state).capitalize(), justify="right")
    for label, by_state in counts.items():
        table.add_row(label, *(str(by_state.get(str(s), 0)) for s in states))
    Console().print(table)


@app.command()
def health() -> None:
    """Check queue backend connectivity and live workers."""
    asyncio.run(_async_health())


async def _async_health() -> None:
    from rich.console import Console
    from rich.table import Table

    from diviner.core.config import get_settings
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        report = await runtime.queue_service.get_queue_health()

    console = Console()
    if report.connected:
        console.print("[bold green]Queue backend connected[/bold green]")
    else:
        console.print("[bold red]Queue backend unreachable[/bold red]")

    table = Table(title="Workers")
    table.add_column("Queue", style="cyan")
    table.add_column("Workers", justify="right")
    for label, status in report.queues.items():
        table.add_row(label, str(status.workers))
    console.print(table)

    if not report.connected:
        raise typer.Exit(1)


@app.command()
def cancel(
    scan_id: Annotated[str, typer.Argument(help="Scan ID to cancel")],
) -> None:
    """Cancel a queued or running scan."""
    asyncio.run(_async_cancel(scan_id))


async def _async_cancel(scan_id: str) -> None:
    from diviner.core.config import get_settings
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        cancelled = await runtime.queue_service.cancel_scan(scan_id)

    if not cancelled:
        typer.echo(f"No queued job for scan {scan_id}.", err=True)
        raise typer.Exit(1)
    typer.echo(f"Scan {scan_id} cancelled.")


@app.command(name="retry-failed")
def retry_failed() -> None:
    """Move every failed scan job back to waiting."""
    asyncio.run(_async_retry_failed())


async def _async_retry_failed() -> None:
    from diviner.core.config import get_settings
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        retried = await runtime.queue_service.retry_failed_jobs()

    typer.echo(f"Retried {retried} failed job(s).")
