# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the versioned database migration system."""

from __future__ import annotations

import aiosqlite
import pytest

from diviner.core.exceptions import StorageError
from diviner.storage.database import close_db, get_db, init_db
from diviner.storage.migrations import (
    get_current_version,
    get_pending_migrations,
    run_migrations,
)

EXPECTED_TABLES = {
    "tenants",
    "scm_connections",
    "repositories",
    "scan_configs",
    "scans",
    "findings",
    "finding_baselines",
    "notification_configs",
    "cves",
    "sbom_components",
    "vulnerability_alerts",
}


@pytest.fixture
async def bare_db():
    """In-memory database with NO migrations applied."""
    import diviner.storage.database as db_mod

    db_mod._db = None
    conn = await init_db(":memory:", auto_migrate=False)
    yield conn
    await close_db()


async def _tables(db: aiosqlite.Connection) -> set[str]:
    cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in await cursor.fetchall()}


class TestFreshDatabase:
    async def test_all_migrations_recorded(self, db: aiosqlite.Connection) -> None:
        cursor = await db.execute("SELECT version, name FROM schema_migrations ORDER BY version")
        rows = await cursor.fetchall()
        assert [(row[0], row[1]) for row in rows] == [
            (1, "scheduling_schema"),
            (2, "findings_and_digest"),
            (3, "cve_alerts"),
        ]

    async def test_tables_exist(self, db: aiosqlite.Connection) -> None:
        assert EXPECTED_TABLES <= await _tables(db)

    async def test_nothing_pending(self, db: aiosqlite.Connection) -> None:
        assert await get_current_version(db) == 3
        assert await get_pending_migrations(db) == []


class TestIncrementalMigration:
    async def test_bare_database_has_no_schema(self, bare_db: aiosqlite.Connection) -> None:
        assert await get_current_version(bare_db) == 0
        assert "scans" not in await _tables(bare_db)
        assert len(await get_pending_migrations(bare_db)) == 3

    async def test_run_applies_then_is_idempotent(self, bare_db: aiosqlite.Connection) -> None:
        applied = await run_migrations(bare_db)
        assert [m.version for m in applied] == [1, 2, 3]
        assert await run_migrations(bare_db) == []
        assert EXPECTED_TABLES <= await _tables(bare_db)

    async def test_partial_upgrade(self, bare_db: aiosqlite.Connection) -> None:
        await get_current_version(bare_db)
        await bare_db.execute(
            "INSERT INTO schema_migrations (version, name) VALUES (1, 'scheduling_schema')"
        )
        await bare_db.commit()
        applied = await run_migrations(bare_db)
        assert [m.version for m in applied] == [2, 3]


class TestConnectionLifecycle:
    async def test_get_db_before_init(self) -> None:
        import diviner.storage.database as db_mod

        db_mod._db = None
        with pytest.raises(StorageError):
            await get_db()

    async def test_init_is_reentrant(self, db: aiosqlite.Connection) -> None:
        assert await init_db(":memory:") is db
        assert await get_db() is db

    async def test_unopenable_path(self, tmp_path) -> None:
        import diviner.storage.database as db_mod

        db_mod._db = None
        with pytest.raises(StorageError):
            await init_db(tmp_path / "missing" / "dir" / "x.db")
        assert db_mod._db is None
