# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Periodic housekeeping sweeps driven by the scheduler engine.

Each sweep is a coroutine taking the current time and returning how many
items it touched.  Per-tenant and per-CVE failures are logged and skipped.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from diviner.models.maintenance import (
    AffectedPackage,
    CveRecord,
    SbomComponent,
    VulnerabilityAlertCreate,
)
from diviner.notifications.base import DigestSender
from diviner.storage.repository import SchedulingRepository

logger = logging.getLogger("diviner.scheduler.maintenance")

_LEADING_DIGITS = re.compile(r"^\d+")
_ZERO_DAY_WINDOW = timedelta(hours=48)


@dataclass(frozen=True, slots=True)
class MaintenanceJob:
    """A named sweep and the cron expression (UTC) it runs on."""

    name: str
    cron: str
    run: Callable[[datetime], Awaitable[int]]


# ---------------------------------------------------------------------------
# Version matching
# ---------------------------------------------------------------------------


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.split("."):
        match = _LEADING_DIGITS.match(piece.strip())
        parts.append(int(match.group()) if match else 0)
    return parts


def compare_versions(left: str, right: str) -> int:
    """Compare dotted versions numerically; non-numeric parts count as 0."""
    a, b = _version_parts(left), _version_parts(right)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    return (a > b) - (a < b)


def is_version_affected(version: str, start: str | None, end: str | None) -> bool:
    """Return ``True`` if *version* lies in ``[start, end)``.

    An unknown (empty) version is treated as affected.
    """
    if not version:
        return True
    if start and compare_versions(version, start) < 0:
        return False
    return not (end and compare_versions(version, end) >= 0)


def match_components(cve: CveRecord, components: Iterable[SbomComponent]) -> list[SbomComponent]:
    """Return the components whose name contains an affected product name."""
    matches: list[SbomComponent] = []
    pool = list(components)
    for product in cve.affected_products:
        needle = product.product.lower()
        if not needle:
            continue
        for component in pool:
            if needle in component.name.lower() and is_version_affected(
                component.version,
                product.version_start_including,
                product.version_end_excluding,
            ):
                matches.append(component)
    return matches


def _group_packages(matches: list[SbomComponent]) -> list[AffectedPackage]:
    packages: dict[tuple[str, str], AffectedPackage] = {}
    for component in matches:
        key = (component.name, component.version)
        package = packages.get(key)
        if package is None:
            package = AffectedPackage(name=component.name, version=component.version, purl=component.purl)
            packages[key] = package
        if component.repository_id and component.repository_id not in package.repository_ids:
            package.repository_ids.append(component.repository_id)
    return list(packages.values())


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


class MaintenanceSweeps:
    """The housekeeping sweeps, bound to a repository and a digest sender."""

    def __init__(
        self,
        repository: SchedulingRepository,
        digest_sender: DigestSender | None = None,
        *,
        stale_finding_days: int = 30,
        cve_lookback_hours: int = 24,
        digest_lookback_days: int = 7,
        digest_copy_to: Iterable[str] = (),
    ) -> None:
        self._repository = repository
        self._digest_sender = digest_sender
        self._stale_after = timedelta(days=stale_finding_days)
        self._cve_lookback = timedelta(hours=cve_lookback_hours)
        self._digest_lookback = timedelta(days=digest_lookback_days)
        self._digest_copy_to = list(digest_copy_to)

    def jobs(self) -> list[MaintenanceJob]:
        return [
            MaintenanceJob("auto-resolve-stale-findings", "0 3 * * *", self.auto_resolve_stale_findings),
            MaintenanceJob("expire-baselines", "0 * * * *", self.expire_baselines),
            MaintenanceJob("weekly-digest", "0 8 * * 1", self.weekly_digest),
            MaintenanceJob("new-cve-sweep", "0 */6 * * *", self.new_cve_sweep),
        ]

    async def auto_resolve_stale_findings(self, now: datetime) -> int:
        """Resolve open findings not seen in any scan for the stale window."""
        cutoff = now - self._stale_after
        total = 0
        for tenant in await self._repository.list_active_tenants():
            try:
                resolved = await self._repository.resolve_stale_findings(
                    tenant.tenant_id, seen_before=cutoff, now=now
                )
            except Exception:
                logger.exception("Stale finding cleanup failed for tenant %s", tenant.tenant_id)
                continue
            if resolved:
                logger.info("Auto-resolved %d stale finding(s) for tenant %s", resolved, tenant.tenant_id)
            total += resolved
        return total

    async def expire_baselines(self, now: datetime) -> int:
        deleted = await self._repository.delete_expired_baselines(now)
        if deleted:
            logger.info("Deleted %d expired baseline(s)", deleted)
        return deleted

    async def weekly_digest(self, now: datetime) -> int:
        """Send each active tenant its weekly summary; return how many were sent."""
        if self._digest_sender is None or not self._digest_sender.is_configured():
            logger.debug("Weekly digest skipped: no configured sender")
            return 0

        start = now - self._digest_lookback
        sent = 0
        for tenant in await self._repository.list_active_tenants():
            try:
                recipients = await self._repository.get_digest_recipients(tenant.tenant_id)
                if not recipients:
                    continue
                summary = await self._repository.build_weekly_summary(tenant, start=start, end=now)
                addresses = recipients + [a for a in self._digest_copy_to if a not in recipients]
                if await self._digest_sender.send_weekly_summary(addresses, summary):
                    sent += 1
            except Exception:
                logger.exception("Weekly digest failed for tenant %s", tenant.tenant_id)
        logger.info("Weekly digest sent to %d tenant(s)", sent)
        return sent

    async def new_cve_sweep(self, now: datetime) -> int:
        """Create one alert per (tenant, CVE) for newly published CVEs hitting SBOMs."""
        cves = await self._repository.list_cves_published_since(now - self._cve_lookback)
        if not cves:
            return 0
        components = await self._repository.list_sbom_components()

        created = 0
        for cve in cves:
            try:
                created += await self._alert_tenants(cve, match_components(cve, components), now)
            except Exception:
                logger.exception("CVE sweep failed for %s", cve.cve_id)
        logger.info("CVE sweep checked %d CVE(s), created %d alert(s)", len(cves), created)
        return created

    async def _alert_tenants(self, cve: CveRecord, matches: list[SbomComponent], now: datetime) -> int:
        by_tenant: dict[str, list[SbomComponent]] = {}
        for component in matches:
            by_tenant.setdefault(component.tenant_id, []).append(component)

        is_zero_day = cve.published_at is not None and now - cve.published_at < _ZERO_DAY_WINDOW
        created = 0
        for tenant_id, tenant_matches in by_tenant.items():
            if await self._repository.vulnerability_alert_exists(tenant_id, cve.cve_id):
                continue
            await self._repository.create_vulnerability_alert(
                VulnerabilityAlertCreate(
                    tenant_id=tenant_id,
                    cve_id=cve.cve_id,
                    title=f"{cve.cve_id} affects {len(tenant_matches)} component(s)",
                    description=cve.description,
                    severity=(cve.severity or "unknown").lower(),
                    cvss_score=cve.cvss_score,
                    is_zero_day=is_zero_day,
                    published_at=cve.published_at,
                    affected_packages=_group_packages(tenant_matches),
                ),
                now=now,
            )
            created += 1
        return created
