# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Run the scheduler loop without the API server."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

app = typer.Typer(help="Run the scheduling loop")


@app.command()
def run(
    once: Annotated[
        bool, typer.Option("--once", help="Run a single tick and exit")
    ] = False,
) -> None:
    """Dispatch due scheduled scans until interrupted."""
    try:
        asyncio.run(_async_run(once))
    except KeyboardInterrupt:
        typer.echo("Scheduler stopped.")


async def _async_run(once: bool) -> None:
    from diviner.core.config import get_settings
    from diviner.core.logging import setup_logging
    from diviner.runtime import open_runtime

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    async with open_runtime(settings) as runtime:
        if once:
            report = await runtime.engine.tick()
            if report is None:
                typer.echo("Tick skipped: another tick is running.")
                return
            typer.echo(
                f"Due: {len(report.outcomes)}  "
                f"dispatched: {report.count('dispatched')}  "
                f"skipped: {report.count('skipped')}  "
                f"failed: {report.count('failed')}"
            )
            return

        await runtime.engine.start()
        typer.echo(f"Scheduler running every {settings.scheduler_interval:.0f}s (Ctrl+C to stop)")
        await asyncio.Event().wait()
