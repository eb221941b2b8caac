# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""CLI commands for repository scan schedules."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

from diviner.core.constants import SchedulePreset

app = typer.Typer(help="Manage repository scan schedules")


@app.command()
def show(
    repository_id: Annotated[str, typer.Argument(help="Repository ID")],
) -> None:
    """Show a repository's schedule."""
    asyncio.run(_async_show(repository_id))


async def _async_show(repository_id: str) -> None:
    from rich.console import Console
    from rich.table import Table

    from diviner.core.config import get_settings
    from diviner.core.exceptions import RepositoryNotFound
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        try:
            config = await runtime.schedule_service.get_schedule_config(repository_id)
        except RepositoryNotFound as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(1) from exc

    table = Table(title=f"Schedule for {repository_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("Enabled", "yes" if config.schedule_enabled else "no")
    table.add_row("Cron", config.schedule_cron or "-")
    table.add_row("Preset", str(config.preset) if config.preset else "-")
    table.add_row("Timezone", config.schedule_timezone)
    table.add_row(
        "Last run",
        config.last_scheduled_scan.isoformat() if config.last_scheduled_scan else "-",
    )
    table.add_row(
        "Next run",
        config.next_scheduled_scan.isoformat() if config.next_scheduled_scan else "-",
    )
    Console().print(table)


@app.command(name="set")
def set_schedule(
    repository_id: Annotated[str, typer.Argument(help="Repository ID")],
    preset: Annotated[
        SchedulePreset | None,
        typer.Option("--preset", help="daily | weekly | monthly | custom"),
    ] = None,
    cron: Annotated[
        str | None, typer.Option("--cron", help="Cron expression (5-field)")
    ] = None,
    timezone: Annotated[
        str | None, typer.Option("--timezone", "--tz", help="IANA timezone name")
    ] = None,
    enable: Annotated[
        bool | None,
        typer.Option("--enable/--disable", help="Turn the schedule on or off"),
    ] = None,
) -> None:
    """Change a repository's schedule."""
    asyncio.run(_async_set(repository_id, preset, cron, timezone, enable))


async def _async_set(
    repository_id: str,
    preset: SchedulePreset | None,
    cron: str | None,
    timezone: str | None,
    enable: bool | None,
) -> None:
    from diviner.core.config import get_settings
    from diviner.core.exceptions import InvalidCronExpression, RepositoryNotFound
    from diviner.models.schedule import ScheduleUpdate
    from diviner.runtime import open_runtime

    patch = ScheduleUpdate(
        schedule_enabled=enable,
        schedule_cron=cron,
        schedule_timezone=timezone,
        preset=preset,
    )
    async with open_runtime(get_settings()) as runtime:
        try:
            config = await runtime.schedule_service.update_schedule_config(repository_id, patch)
        except (InvalidCronExpression, RepositoryNotFound) as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(1) from exc

    typer.echo(f"Updated schedule for {repository_id}")
    typer.echo(f"  Enabled:  {config.schedule_enabled}")
    typer.echo(f"  Cron:     {config.schedule_cron or '-'}")
    typer.echo(f"  Timezone: {config.schedule_timezone}")
    next_run = config.next_scheduled_scan.isoformat() if config.next_scheduled_scan else "-"
    typer.echo(f"  Next run: {next_run}")


@app.command(name="run-now")
def run_now(
    repository_id: Annotated[str, typer.Argument(help="Repository ID")],
) -> None:
    """Dispatch a manual scan of the repository right away."""
    asyncio.run(_async_run_now(repository_id))


async def _async_run_now(repository_id: str) -> None:
    from diviner.core.config import get_settings
    from diviner.core.exceptions import DivinerError
    from diviner.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        try:
            scan_id = await runtime.schedule_service.trigger_immediate_scan(repository_id)
        except DivinerError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(1) from exc

    typer.echo(f"Queued scan {scan_id} for {repository_id}")
