# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Persistence interface used by the scheduler and maintenance sweeps."""

from __future__ import annotations

import abc
from datetime import datetime, timedelta

from diviner.models.maintenance import (
    CveRecord,
    SbomComponent,
    VulnerabilityAlertCreate,
    WeeklySummary,
)
from diviner.models.scan import ScanRecord, ScanRecordCreate
from diviner.models.schedule import RepositoryScheduleContext, ScheduleConfig, Tenant


class SchedulingRepository(abc.ABC):
    """Abstract store for schedule state, scan records and maintenance data.

    All datetimes passed in and returned are timezone-aware UTC.
    """

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def find_due_schedule_configs(self, now: datetime) -> list[RepositoryScheduleContext]:
        """Return contexts whose schedule is enabled, has a cron, and is due at *now*."""

    @abc.abstractmethod
    async def get_schedule_context(self, repository_id: str) -> RepositoryScheduleContext | None:
        """Return the dispatch context for a repository, due or not."""

    @abc.abstractmethod
    async def get_schedule_config(self, repository_id: str) -> ScheduleConfig | None:
        """Return the stored schedule, or ``None`` if the repository has no scan config."""

    @abc.abstractmethod
    async def repository_exists(self, repository_id: str) -> bool: ...

    @abc.abstractmethod
    async def save_schedule_config(
        self, repository_id: str, config: ScheduleConfig, *, now: datetime
    ) -> ScheduleConfig:
        """Create or overwrite the schedule fields of a repository's scan config."""

    @abc.abstractmethod
    async def update_schedule_times(
        self,
        repository_id: str,
        *,
        last: datetime | None,
        next_: datetime | None,
        now: datetime,
    ) -> None:
        """Persist last/next fire times in one statement.

        ``last=None`` keeps the stored value.  ``next_`` is written as
        ``NULL`` if the schedule was disabled or cleared in the meantime.
        """

    # ------------------------------------------------------------------
    # Scans and tenants
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_scan_record(
        self,
        record: ScanRecordCreate,
        *,
        now: datetime,
        dedup_window: timedelta | None = None,
    ) -> str:
        """Insert a ``queued`` scan and return its id.

        With a *dedup_window*, a scheduled scan of the same repository and
        commit created within the window (and not failed) is reused.
        """

    @abc.abstractmethod
    async def mark_scan_failed(self, scan_id: str, error: str, *, now: datetime) -> None: ...

    @abc.abstractmethod
    async def get_scan(self, scan_id: str) -> ScanRecord | None: ...

    @abc.abstractmethod
    async def list_scans(self, repository_id: str) -> list[ScanRecord]: ...

    @abc.abstractmethod
    async def is_tenant_active(self, tenant_id: str) -> bool: ...

    @abc.abstractmethod
    async def list_active_tenants(self) -> list[Tenant]: ...

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def resolve_stale_findings(
        self, tenant_id: str, *, seen_before: datetime, now: datetime
    ) -> int:
        """Resolve open findings last seen before *seen_before*; return how many."""

    @abc.abstractmethod
    async def delete_expired_baselines(self, now: datetime) -> int: ...

    @abc.abstractmethod
    async def get_digest_recipients(self, tenant_id: str) -> list[str]:
        """Return the tenant's digest recipients, empty if the digest is off."""

    @abc.abstractmethod
    async def build_weekly_summary(
        self, tenant: Tenant, *, start: datetime, end: datetime
    ) -> WeeklySummary: ...

    @abc.abstractmethod
    async def list_cves_published_since(self, since: datetime) -> list[CveRecord]: ...

    @abc.abstractmethod
    async def list_sbom_components(self) -> list[SbomComponent]: ...

    @abc.abstractmethod
    async def vulnerability_alert_exists(self, tenant_id: str, cve_id: str) -> bool: ...

    @abc.abstractmethod
    async def create_vulnerability_alert(
        self, alert: VulnerabilityAlertCreate, *, now: datetime
    ) -> str: ...
