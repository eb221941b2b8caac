# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""SQLite implementation of :class:`SchedulingRepository`."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite

from diviner.core.constants import (
    DEFAULT_TIMEZONE,
    FindingStatus,
    ScanStatus,
    ScmProviderKind,
    Severity,
    TriggerSource,
)
from diviner.models.maintenance import (
    AffectedProduct,
    CveRecord,
    SbomComponent,
    VulnerabilityAlertCreate,
    WeeklySummary,
)
from diviner.models.scan import FindingsCount, ScanConfig, ScanRecord, ScanRecordCreate
from diviner.models.schedule import (
    RepositoryScheduleContext,
    ScheduleConfig,
    ScmCredentials,
    Tenant,
)
from diviner.storage.repository import SchedulingRepository

_SCAN_CONFIG_LISTS = ("target_urls", "container_images", "skip_paths", "branches")
_SCAN_CONFIG_FLAGS = (
    "enable_sast",
    "enable_sca",
    "enable_secrets",
    "enable_iac",
    "enable_dast",
    "enable_container_scan",
    "pr_diff_only",
)

_CONTEXT_SELECT = """
SELECT
    sc.id AS config_id,
    r.id AS repository_id, r.full_name, r.default_branch, r.clone_url, r.connection_id,
    t.id AS tenant_id, t.slug AS tenant_slug, t.is_active AS tenant_active,
    c.provider, c.access_token, c.base_url,
    sc.enable_sast, sc.enable_sca, sc.enable_secrets, sc.enable_iac, sc.enable_dast,
    sc.enable_container_scan, sc.target_urls, sc.container_images, sc.skip_paths,
    sc.branches, sc.pr_diff_only,
    sc.schedule_enabled, sc.schedule_cron, sc.schedule_timezone,
    sc.last_scheduled_scan, sc.next_scheduled_scan
FROM repositories r
JOIN tenants t ON t.id = r.tenant_id
JOIN scm_connections c ON c.id = r.connection_id
LEFT JOIN scan_configs sc ON sc.repository_id = r.id
"""


def to_db(moment: datetime | None) -> str | None:
    """Format an aware datetime as a fixed-width UTC string."""
    if moment is None:
        return None
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class SqliteSchedulingRepository(SchedulingRepository):
    """Scheduling store backed by an open ``aiosqlite`` connection."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def find_due_schedule_configs(self, now: datetime) -> list[RepositoryScheduleContext]:
        cursor = await self._db.execute(
            _CONTEXT_SELECT
            + """
            WHERE sc.schedule_enabled = 1
              AND sc.schedule_cron IS NOT NULL
              AND sc.next_scheduled_scan IS NOT NULL
              AND sc.next_scheduled_scan <= ?
            ORDER BY sc.next_scheduled_scan
            """,
            (to_db(now),),
        )
        rows = await cursor.fetchall()
        return [self._row_to_context(row) for row in rows]

    async def get_schedule_context(self, repository_id: str) -> RepositoryScheduleContext | None:
        cursor = await self._db.execute(_CONTEXT_SELECT + " WHERE r.id = ?", (repository_id,))
        row = await cursor.fetchone()
        return self._row_to_context(row) if row is not None else None

    async def get_schedule_config(self, repository_id: str) -> ScheduleConfig | None:
        cursor = await self._db.execute(
            """
            SELECT schedule_enabled, schedule_cron, schedule_timezone,
                   last_scheduled_scan, next_scheduled_scan
            FROM scan_configs WHERE repository_id = ?
            """,
            (repository_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_schedule(row) if row is not None else None

    async def repository_exists(self, repository_id: str) -> bool:
        cursor = await self._db.execute(
            "SELECT 1 FROM repositories WHERE id = ?", (repository_id,)
        )
        return await cursor.fetchone() is not None

    async def save_schedule_config(
        self, repository_id: str, config: ScheduleConfig, *, now: datetime
    ) -> ScheduleConfig:
        await self._db.execute(
            """
            INSERT INTO scan_configs
                (id, repository_id, schedule_enabled, schedule_cron, schedule_timezone,
                 last_scheduled_scan, next_scheduled_scan, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(repository_id) DO UPDATE SET
                schedule_enabled = excluded.schedule_enabled,
                schedule_cron = excluded.schedule_cron,
                schedule_timezone = excluded.schedule_timezone,
                last_scheduled_scan = excluded.last_scheduled_scan,
                next_scheduled_scan = excluded.next_scheduled_scan,
                updated_at = excluded.updated_at
            """,
            (
                _new_id(),
                repository_id,
                1 if config.schedule_enabled else 0,
                config.schedule_cron,
                config.schedule_timezone,
                to_db(config.last_scheduled_scan),
                to_db(config.next_scheduled_scan),
                to_db(now),
            ),
        )
        await self._db.commit()
        return config

    async def update_schedule_times(
        self,
        repository_id: str,
        *,
        last: datetime | None,
        next_: datetime | None,
        now: datetime,
    ) -> None:
        await self._db.execute(
            """
            UPDATE scan_configs
            SET last_scheduled_scan = COALESCE(?, last_scheduled_scan),
                next_scheduled_scan = CASE
                    WHEN schedule_enabled = 1 AND schedule_cron IS NOT NULL THEN ?
                    ELSE NULL
                END,
                updated_at = ?
            WHERE repository_id = ?
            """,
            (to_db(last), to_db(next_), to_db(now), repository_id),
        )
        await self._db.commit()

    # ------------------------------------------------------------------
    # Scans and tenants
    # ------------------------------------------------------------------

    async def create_scan_record(
        self,
        record: ScanRecordCreate,
        *,
        now: datetime,
        dedup_window: timedelta | None = None,
    ) -> str:
        if dedup_window is not None and record.triggered_by == TriggerSource.SCHEDULED:
            cursor = await self._db.execute(
                """
                SELECT id FROM scans
                WHERE repository_id = ? AND commit_sha = ? AND triggered_by = ?
                  AND status != ? AND created_at >= ?
                ORDER BY created_at DESC LIMIT 1
                """,
                (
                    record.repository_id,
                    record.commit_sha,
                    str(TriggerSource.SCHEDULED),
                    str(ScanStatus.FAILED),
                    to_db(now - dedup_window),
                ),
            )
            row = await cursor.fetchone()
            if row is not None:
                return str(row["id"])

        scan_id = _new_id()
        await self._db.execute(
            """
            INSERT INTO scans
                (id, tenant_id, repository_id, commit_sha, branch, triggered_by, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                scan_id,
                record.tenant_id,
                record.repository_id,
                record.commit_sha,
                record.branch,
                str(record.triggered_by),
                str(ScanStatus.QUEUED),
                to_db(now),
            ),
        )
        await self._db.commit()
        return scan_id

    async def mark_scan_failed(self, scan_id: str, error: str, *, now: datetime) -> None:
        await self._db.execute(
            "UPDATE scans SET status = ?, error = ?, completed_at = ? WHERE id = ?",
            (str(ScanStatus.FAILED), error, to_db(now), scan_id),
        )
        await self._db.commit()

    async def get_scan(self, scan_id: str) -> ScanRecord | None:
        cursor = await self._db.execute("SELECT * FROM scans WHERE id = ?", (scan_id,))
        row = await cursor.fetchone()
        return self._row_to_scan(row) if row is not None else None

    async def list_scans(self, repository_id: str) -> list[ScanRecord]:
        cursor = await self._db.execute(
            "SELECT * FROM scans WHERE repository_id = ? ORDER BY created_at",
            (repository_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_scan(row) for row in rows]

    async def is_tenant_active(self, tenant_id: str) -> bool:
        cursor = await self._db.execute("SELECT is_active FROM tenants WHERE id = ?", (tenant_id,))
        row = await cursor.fetchone()
        return bool(row["is_active"]) if row is not None else False

    async def list_active_tenants(self) -> list[Tenant]:
        cursor = await self._db.execute(
            "SELECT id, name, slug, is_active FROM tenants WHERE is_active = 1 ORDER BY name"
        )
        rows = await cursor.fetchall()
        return [
            Tenant(tenant_id=row["id"], name=row["name"], slug=row["slug"], is_active=True)
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def resolve_stale_findings(
        self, tenant_id: str, *, seen_before: datetime, now: datetime
    ) -> int:
        cursor = await self._db.execute(
            """
            UPDATE findings SET status = ?, resolved_at = ?
            WHERE tenant_id = ? AND status = ? AND last_seen_at < ?
            """,
            (
                str(FindingStatus.RESOLVED),
                to_db(now),
                tenant_id,
                str(FindingStatus.OPEN),
                to_db(seen_before),
            ),
        )
        await self._db.commit()
        return cursor.rowcount

    async def delete_expired_baselines(self, now: datetime) -> int:
        cursor = await self._db.execute(
            "DELETE FROM finding_baselines WHERE expires_at IS NOT NULL AND expires_at < ?",
            (to_db(now),),
        )
        await self._db.commit()
        return cursor.rowcount

    async def get_digest_recipients(self, tenant_id: str) -> list[str]:
        cursor = await self._db.execute(
            "SELECT weekly_digest, email_recipients FROM notification_configs WHERE tenant_id = ?",
            (tenant_id,),
        )
        row = await cursor.fetchone()
        if row is None or not row["weekly_digest"]:
            return []
        return list(json.loads(row["email_recipients"] or "[]"))

    async def build_weekly_summary(
        self, tenant: Tenant, *, start: datetime, end: datetime
    ) -> WeeklySummary:
        window = (tenant.tenant_id, to_db(start), to_db(end))

        cursor = await self._db.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed,
                   COUNT(DISTINCT repository_id) AS repos
            FROM scans WHERE tenant_id = ? AND created_at >= ? AND created_at < ?
            """,
            window,
        )
        scans = await cursor.fetchone()

        cursor = await self._db.execute(
            """
            SELECT severity, COUNT(*) AS n FROM findings
            WHERE tenant_id = ? AND first_seen_at >= ? AND first_seen_at < ?
            GROUP BY severity
            """,
            window,
        )
        by_severity = {row["severity"]: int(row["n"]) for row in await cursor.fetchall()}

        cursor = await self._db.execute(
            """
            SELECT COUNT(*) AS n FROM findings
            WHERE tenant_id = ? AND resolved_at >= ? AND resolved_at < ?
            """,
            window,
        )
        resolved = await cursor.fetchone()

        return WeeklySummary(
            tenant_id=tenant.tenant_id,
            tenant_name=tenant.name,
            period_start=start,
            period_end=end,
            scans_run=int(scans["total"] or 0),
            scans_failed=int(scans["failed"] or 0),
            repositories_scanned=int(scans["repos"] or 0),
            new_findings=FindingsCount(
                **{str(sev): by_severity.get(str(sev), 0) for sev in Severity}
            ),
            resolved_findings=int(resolved["n"] or 0),
        )

    async def list_cves_published_since(self, since: datetime) -> list[CveRecord]:
        cursor = await self._db.execute(
            "SELECT * FROM cves WHERE published_at >= ? ORDER BY published_at",
            (to_db(since),),
        )
        rows = await cursor.fetchall()
        return [
            CveRecord(
                cve_id=row["id"],
                description=row["description"],
                severity=row["severity"],
                cvss_score=row["cvss_score"],
                published_at=from_db(row["published_at"]),
                affected_products=[
                    AffectedProduct(**p) for p in json.loads(row["affected_products"] or "[]")
                ],
            )
            for row in rows
        ]

    async def list_sbom_components(self) -> list[SbomComponent]:
        cursor = await self._db.execute(
            """
            SELECT s.* FROM sbom_components s
            JOIN tenants t ON t.id = s.tenant_id
            WHERE t.is_active = 1
            """
        )
        rows = await cursor.fetchall()
        return [
            SbomComponent(
                component_id=row["id"],
                tenant_id=row["tenant_id"],
                repository_id=row["repository_id"],
                name=row["name"],
                version=row["version"],
                purl=row["purl"],
            )
            for row in rows
        ]

    async def vulnerability_alert_exists(self, tenant_id: str, cve_id: str) -> bool:
        cursor = await self._db.execute(
            "SELECT 1 FROM vulnerability_alerts WHERE tenant_id = ? AND cve_id = ?",
            (tenant_id, cve_id),
        )
        return await cursor.fetchone() is not None

    async def create_vulnerability_alert(
        self, alert: VulnerabilityAlertCreate, *, now: datetime
    ) -> str:
        alert_id = _new_id()
        await self._db.execute(
            """
            INSERT INTO vulnerability_alerts
                (id, tenant_id, cve_id, title, description, severity, cvss_score,
                 is_zero_day, published_at, affected_packages, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert_id,
                alert.tenant_id,
                alert.cve_id,
                alert.title,
                alert.description,
                alert.severity,
                alert.cvss_score,
                1 if alert.is_zero_day else 0,
                to_db(alert.published_at),
                json.dumps([p.model_dump() for p in alert.affected_packages]),
                to_db(now),
            ),
        )
        await self._db.commit()
        return alert_id

    # ------------------------------------------------------------------
    # Provisioning. Tenants, connections, repositories and feed data are
    # normally written by other services.
    # ------------------------------------------------------------------

    async def insert_tenant(
        self, tenant_id: str, name: str, *, slug: str | None = None, is_active: bool = True
    ) -> None:
        await self._db.execute(
            "INSERT INTO tenants (id, name, slug, is_active) VALUES (?, ?, ?, ?)",
            (tenant_id, name, slug or tenant_id, 1 if is_active else 0),
        )
        await self._db.commit()

    async def set_tenant_active(self, tenant_id: str, is_active: bool) -> None:
        await self._db.execute(
            "UPDATE tenants SET is_active = ? WHERE id = ?",
            (1 if is_active else 0, tenant_id),
        )
        await self._db.commit()

    async def insert_connection(
        self,
        connection_id: str,
        tenant_id: str,
        provider: ScmProviderKind,
        access_token: str,
        *,
        base_url: str | None = None,
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO scm_connections (id, tenant_id, provider, access_token, base_url)
            VALUES (?, ?, ?, ?, ?)
            """,
            (connection_id, tenant_id, str(provider), access_token, base_url),
        )
        await self._db.commit()

    async def insert_repository(
        self,
        repository_id: str,
        tenant_id: str,
        connection_id: str,
        full_name: str,
        *,
        default_branch: str = "main",
        clone_url: str | None = None,
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO repositories
                (id, tenant_id, connection_id, full_name, default_branch, clone_url)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                repository_id,
                tenant_id,
                connection_id,
                full_name,
                default_branch,
                clone_url or f"https://github.com/{full_name}.git",
            ),
        )
        await self._db.commit()

    async def upsert_scan_config(self, repository_id: str, config: ScanConfig) -> None:
        values: dict[str, Any] = {
            name: 1 if getattr(config, name) else 0 for name in _SCAN_CONFIG_FLAGS
        }
        values.update({name: json.dumps(list(getattr(config, name))) for name in _SCAN_CONFIG_LISTS})
        columns = list(values)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns)
        await self._db.execute(
            f"""
            INSERT INTO scan_configs (id, repository_id, {", ".join(columns)})
            VALUES (?, ?, {", ".join("?" for _ in columns)})
            ON CONFLICT(repository_id) DO UPDATE SET {assignments}
            """,
            (_new_id(), repository_id, *values.values()),
        )
        await self._db.commit()

    async def set_notification_config(
        self, tenant_id: str, recipients: list[str], *, weekly_digest: bool = True
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO notification_configs (tenant_id, weekly_digest, email_recipients)
            VALUES (?, ?, ?)
            ON CONFLICT(tenant_id) DO UPDATE SET
                weekly_digest = excluded.weekly_digest,
                email_recipients = excluded.email_recipients
            """,
            (tenant_id, 1 if weekly_digest else 0, json.dumps(recipients)),
        )
        await self._db.commit()

    async def insert_finding(
        self,
        tenant_id: str,
        repository_id: str,
        *,
        severity: Severity,
        title: str,
        first_seen_at: datetime,
        last_seen_at: datetime,
        status: FindingStatus = FindingStatus.OPEN,
        resolved_at: datetime | None = None,
    ) -> str:
        finding_id = _new_id()
        await self._db.execute(
            """
            INSERT INTO findings
                (id, tenant_id, repository_id, severity, title, status,
                 first_seen_at, last_seen_at, resolved_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                finding_id,
                tenant_id,
                repository_id,
                str(severity),
                title,
                str(status),
                to_db(first_seen_at),
                to_db(last_seen_at),
                to_db(resolved_at),
            ),
        )
        await self._db.commit()
        return finding_id

    async def get_finding_status(self, finding_id: str) -> FindingStatus | None:
        cursor = await self._db.execute("SELECT status FROM findings WHERE id = ?", (finding_id,))
        row = await cursor.fetchone()
        return FindingStatus(row["status"]) if row is not None else None

    async def insert_baseline(
        self, tenant_id: str, finding_id: str, *, expires_at: datetime | None, reason: str = ""
    ) -> str:
        baseline_id = _new_id()
        await self._db.execute(
            """
            INSERT INTO finding_baselines (id, tenant_id, finding_id, reason, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (baseline_id, tenant_id, finding_id, reason, to_db(expires_at)),
        )
        await self._db.commit()
        return baseline_id

    async def insert_cve(self, cve: CveRecord) -> None:
        await self._db.execute(
            """
            INSERT OR REPLACE INTO cves
                (id, description, severity, cvss_score, published_at, affected_products)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                cve.cve_id,
                cve.description,
                cve.severity,
                cve.cvss_score,
                to_db(cve.published_at),
                json.dumps([p.model_dump() for p in cve.affected_products]),
            ),
        )
        await self._db.commit()

    async def insert_sbom_component(self, component: SbomComponent) -> None:
        await self._db.execute(
            """
            INSERT INTO sbom_components (id, tenant_id, repository_id, name, version, purl)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                component.component_id,
                component.tenant_id,
                component.repository_id,
                component.name,
                component.version,
                component.purl,
            ),
        )
        await self._db.commit()

    async def count_vulnerability_alerts(self, tenant_id: str) -> int:
        cursor = await self._db.execute(
            "SELECT COUNT(*) AS n FROM vulnerability_alerts WHERE tenant_id = ?", (tenant_id,)
        )
        row = await cursor.fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_schedule(row: aiosqlite.Row) -> ScheduleConfig:
        enabled = row["schedule_enabled"]
        return ScheduleConfig(
            schedule_enabled=bool(enabled) if enabled is not None else False,
            schedule_cron=row["schedule_cron"],
            schedule_timezone=row["schedule_timezone"] or DEFAULT_TIMEZONE,
            last_scheduled_scan=from_db(row["last_scheduled_scan"]),
            next_scheduled_scan=from_db(row["next_scheduled_scan"]),
        )

    @staticmethod
    def _row_to_scan_config(row: aiosqlite.Row) -> ScanConfig:
        if row["config_id"] is None:
            return ScanConfig()
        values: dict[str, Any] = {name: bool(row[name]) for name in _SCAN_CONFIG_FLAGS}
        values.update({name: tuple(json.loads(row[name] or "[]")) for name in _SCAN_CONFIG_LISTS})
        return ScanConfig(**values)

    def _row_to_context(self, row: aiosqlite.Row) -> RepositoryScheduleContext:
        return RepositoryScheduleContext(
            config_id=row["config_id"],
            tenant_id=row["tenant_id"],
            tenant_slug=row["tenant_slug"],
            tenant_active=bool(row["tenant_active"]),
            repository_id=row["repository_id"],
            full_name=row["full_name"],
            default_branch=row["default_branch"],
            clone_url=row["clone_url"],
            connection_id=row["connection_id"],
            provider=ScmProviderKind(row["provider"]),
            credentials=ScmCredentials(access_token=row["access_token"], base_url=row["base_url"]),
            scan_config=self._row_to_scan_config(row),
            schedule=self._row_to_schedule(row),
        )

    @staticmethod
    def _row_to_scan(row: aiosqlite.Row) -> ScanRecord:
        return ScanRecord(
            scan_id=row["id"],
            tenant_id=row["tenant_id"],
            repository_id=row["repository_id"],
            commit_sha=row["commit_sha"],
            branch=row["branch"],
            triggered_by=TriggerSource(row["triggered_by"]),
            status=ScanStatus(row["status"]),
            error=row["error"],
            created_at=from_db(row["created_at"]),
            completed_at=from_db(row["completed_at"]),
        )
