# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Scheduling database commands."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

app = typer.Typer()


@app.command()
def init(
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="List pending migrations without applying them")
    ] = False,
) -> None:
    """Create the scheduling database or bring its schema up to date."""
    asyncio.run(_async_init(dry_run))


async def _async_init(dry_run: bool) -> None:
    from diviner.core.config import get_settings
    from diviner.storage.database import close_db, init_db
    from diviner.storage.migrations import (
        get_current_version,
        get_pending_migrations,
        run_migrations,
    )

    settings = get_settings()
    db = await init_db(settings.db_path, auto_migrate=False)
    try:
        pending = await get_pending_migrations(db)
        typer.echo(f"{settings.db_path}: schema version {await get_current_version(db)}")
        if not pending:
            typer.echo("Schema is up to date.")
            return
        if dry_run:
            for m in pending:
                typer.echo(f"  would apply {m.version:03d} {m.name}")
            return
        for m in await run_migrations(db):
            typer.echo(f"  applied {m.version:03d} {m.name}")
        typer.echo(f"Schema now at version {await get_current_version(db)}.")
    finally:
        await close_db()
