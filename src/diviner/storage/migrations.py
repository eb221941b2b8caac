# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Versioned database migrations for the diviner database.

Applied versions are tracked in a ``schema_migrations`` table.  Every
statement is idempotent and each migration is committed on its own.

Timestamps are stored as fixed-width ISO-8601 UTC strings so that
lexical comparison in SQL matches chronological order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import aiosqlite

logger = logging.getLogger("diviner.storage.migrations")

# ---------------------------------------------------------------------------
# Migration registry infrastructure
# ---------------------------------------------------------------------------

MigrationFunc = Callable[[aiosqlite.Connection], Coroutine[Any, Any, None]]


@dataclass(frozen=True, slots=True)
class Migration:
    """A single database migration."""

    version: int
    name: str
    func: MigrationFunc


_MIGRATIONS: list[Migration] = []


def _register(version: int, name: str) -> Callable[[MigrationFunc], MigrationFunc]:
    """Decorator that registers a migration function."""

    def decorator(fn: MigrationFunc) -> MigrationFunc:
        _MIGRATIONS.append(Migration(version=version, name=name, func=fn))
        return fn

    return decorator


_CREATE_SCHEMA_MIGRATIONS = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


async def _ensure_migrations_table(db: aiosqlite.Connection) -> None:
    await db.execute(_CREATE_SCHEMA_MIGRATIONS)
    await db.commit()


async def get_current_version(db: aiosqlite.Connection) -> int:
    """Return the highest applied migration version, or 0 if none."""
    await _ensure_migrations_table(db)
    cursor = await db.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def get_pending_migrations(db: aiosqlite.Connection) -> list[Migration]:
    current = await get_current_version(db)
    return [m for m in _MIGRATIONS if m.version > current]


async def run_migrations(db: aiosqlite.Connection) -> list[Migration]:
    """Run all pending migrations in order and return those applied."""
    await _ensure_migrations_table(db)

    current = await get_current_version(db)
    applied: list[Migration] = []

    for migration in _MIGRATIONS:
        if migration.version <= current:
            continue

        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        await migration.func(db)
        await db.execute(
            "INSERT OR IGNORE INTO schema_migrations (version, name) VALUES (?, ?)",
            (migration.version, migration.name),
        )
        await db.commit()

        applied.append(migration)

    return applied


# =========================================================================
# Migration 001 -- tenants, SCM connections, repositories, scan configs, scans
# =========================================================================

_CREATE_TENANTS = """
CREATE TABLE IF NOT EXISTS tenants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now'))
);
"""

_CREATE_SCM_CONNECTIONS = """
CREATE TABLE IF NOT EXISTS scm_connections (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    provider TEXT NOT NULL,
    access_token TEXT NOT NULL,
    base_url TEXT
);
"""

_CREATE_REPOSITORIES = """
CREATE TABLE IF NOT EXISTS repositories (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    connection_id TEXT NOT NULL REFERENCES scm_connections(id) ON DELETE CASCADE,
    full_name TEXT NOT NULL,
    default_branch TEXT NOT NULL DEFAULT 'main',
    clone_url TEXT NOT NULL
);
"""

_CREATE_SCAN_CONFIGS = """
CREATE TABLE IF NOT EXISTS scan_configs (
    id TEXT PRIMARY KEY,
    repository_id TEXT NOT NULL UNIQUE REFERENCES repositories(id) ON DELETE CASCADE,
    enable_sast INTEGER NOT NULL DEFAULT 1,
    enable_sca INTEGER NOT NULL DEFAULT 1,
    enable_secrets INTEGER NOT NULL DEFAULT 1,
    enable_iac INTEGER NOT NULL DEFAULT 0,
    enable_dast INTEGER NOT NULL DEFAULT 0,
    enable_container_scan INTEGER NOT NULL DEFAULT 0,
    target_urls TEXT NOT NULL DEFAULT '[]',
    container_images TEXT NOT NULL DEFAULT '[]',
    skip_paths TEXT NOT NULL DEFAULT '[]',
    branches TEXT NOT NULL DEFAULT '[]',
    pr_diff_only INTEGER NOT NULL DEFAULT 0,
    schedule_enabled INTEGER NOT NULL DEFAULT 0,
    schedule_cron TEXT,
    schedule_timezone TEXT NOT NULL DEFAULT 'UTC',
    last_scheduled_scan TEXT,
    next_scheduled_scan TEXT,
    updated_at TEXT
);
"""

_CREATE_SCANS = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    repository_id TEXT NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    commit_sha TEXT NOT NULL,
    branch TEXT NOT NULL,
    triggered_by TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued',
    error TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT
);
"""

_INDEXES_001 = [
    "CREATE INDEX IF NOT EXISTS idx_scan_configs_due "
    "ON scan_configs(schedule_enabled, next_scheduled_scan);",
    "CREATE INDEX IF NOT EXISTS idx_scans_repo_commit "
    "ON scans(repository_id, commit_sha, triggered_by);",
    "CREATE INDEX IF NOT EXISTS idx_scans_tenant_created ON scans(tenant_id, created_at);",
]


@_register(1, "scheduling_schema")
async def _migration_001_scheduling_schema(db: aiosqlite.Connection) -> None:
    """Create the tables the scheduler reads and writes."""
    await db.execute(_CREATE_TENANTS)
    await db.execute(_CREATE_SCM_CONNECTIONS)
    await db.execute(_CREATE_REPOSITORIES)
    await db.execute(_CREATE_SCAN_CONFIGS)
    await db.execute(_CREATE_SCANS)
    for idx_sql in _INDEXES_001:
        await db.execute(idx_sql)


# =========================================================================
# Migration 002 -- findings, baselines and digest settings
# =========================================================================

_CREATE_FINDINGS = """
CREATE TABLE IF NOT EXISTS findings (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    repository_id TEXT NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    scan_id TEXT,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    resolved_at TEXT
);
"""

_CREATE_FINDING_BASELINES = """
CREATE TABLE IF NOT EXISTS finding_baselines (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    finding_id TEXT NOT NULL,
    reason TEXT,
    expires_at TEXT
);
"""

_CREATE_NOTIFICATION_CONFIGS = """
CREATE TABLE IF NOT EXISTS notification_configs (
    tenant_id TEXT PRIMARY KEY REFERENCES tenants(id) ON DELETE CASCADE,
    weekly_digest INTEGER NOT NULL DEFAULT 1,
    email_recipients TEXT NOT NULL DEFAULT '[]'
);
"""

_INDEXES_002 = [
    "CREATE INDEX IF NOT EXISTS idx_findings_tenant_status "
    "ON findings(tenant_id, status, last_seen_at);",
    "CREATE INDEX IF NOT EXISTS idx_baselines_expires ON finding_baselines(expires_at);",
]


@_register(2, "findings_and_digest")
async def _migration_002_findings_and_digest(db: aiosqlite.Connection) -> None:
    """Create the tables behind retention sweeps and the weekly digest."""
    await db.execute(_CREATE_FINDINGS)
    await db.execute(_CREATE_FINDING_BASELINES)
    await db.execute(_CREATE_NOTIFICATION_CONFIGS)
    for idx_sql in _INDEXES_002:
        await db.execute(idx_sql)


# =========================================================================
# Migration 003 -- CVE feed, SBOM components, vulnerability alerts
# =========================================================================

_CREATE_CVES = """
CREATE TABLE IF NOT EXISTS cves (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL DEFAULT '',
    severity TEXT,
    cvss_score REAL,
    published_at TEXT,
    affected_products TEXT NOT NULL DEFAULT '[]'
);
"""

_CREATE_SBOM_COMPONENTS = """
CREATE TABLE IF NOT EXISTS sbom_components (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    repository_id TEXT,
    name TEXT NOT NULL,
    version TEXT NOT NULL DEFAULT '',
    purl TEXT NOT NULL DEFAULT ''
);
"""

_CREATE_VULNERABILITY_ALERTS = """
CREATE TABLE IF NOT EXISTS vulnerability_alerts (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    cve_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    severity TEXT NOT NULL DEFAULT 'unknown',
    cvss_score REAL,
    is_zero_day INTEGER NOT NULL DEFAULT 0,
    published_at TEXT,
    affected_packages TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL,
    UNIQUE (tenant_id, cve_id)
);
"""


@_register(3, "cve_alerts")
async def _migration_003_cve_alerts(db: aiosqlite.Connection) -> None:
    """Create the CVE feed and per-tenant alert tables."""
    await db.execute(_CREATE_CVES)
    await db.execute(_CREATE_SBOM_COMPONENTS)
    await db.execute(_CREATE_VULNERABILITY_ALERTS)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_cves_published ON cves(published_at);")
