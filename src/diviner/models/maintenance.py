# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Models for the slower-cadence maintenance sweeps."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from diviner.models.scan import FindingsCount


class WeeklySummary(BaseModel):
    """Data rendered into a tenant's weekly digest email."""

    tenant_id: str
    tenant_name: str
    period_start: datetime
    period_end: datetime
    scans_run: int = 0
    scans_failed: int = 0
    new_findings: FindingsCount = Field(default_factory=FindingsCount)
    resolved_findings: int = 0
    repositories_scanned: int = 0

    @property
    def total_new_findings(self) -> int:
        c = self.new_findings
        return c.critical + c.high + c.medium + c.low + c.info


class AffectedProduct(BaseModel):
    product: str
    version_start_including: str | None = None
    version_end_excluding: str | None = None


class CveRecord(BaseModel):
    cve_id: str
    description: str = ""
    severity: str | None = None
    cvss_score: float | None = None
    published_at: datetime | None = None
    affected_products: list[AffectedProduct] = Field(default_factory=list)


class SbomComponent(BaseModel):
    component_id: str
    tenant_id: str
    repository_id: str | None = None
    name: str
    version: str = ""
    purl: str = ""


class AffectedPackage(BaseModel):
    name: str
    version: str
    purl: str = ""
    repository_ids: list[str] = Field(default_factory=list)


class VulnerabilityAlertCreate(BaseModel):
    tenant_id: str
    cve_id: str
    title: str
    description: str = ""
    severity: str = "unknown"
    cvss_score: float | None = None
    is_zero_day: bool = False
    published_at: datetime | None = None
    affected_packages: list[AffectedPackage] = Field(default_factory=list)
