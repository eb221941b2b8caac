# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Scan job descriptors and queue payload models.

Everything here is immutable once built: cancellation and retries act on
the queue entry that carries a payload, never on the payload itself.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from diviner.core.constants import ScanStatus, TriggerSource


class ScanConfig(BaseModel):
    """Which scanner families a scan should run, and on what."""

    model_config = ConfigDict(frozen=True)

    enable_sast: bool = True
    enable_sca: bool = True
    enable_secrets: bool = True
    enable_iac: bool = False
    enable_dast: bool = False
    enable_container_scan: bool = False
    target_urls: tuple[str, ...] = ()
    container_images: tuple[str, ...] = ()
    skip_paths: tuple[str, ...] = ()
    branches: tuple[str, ...] = ()
    pr_diff_only: bool = False


class ScanJobDescriptor(BaseModel):
    """One scan request as handed to the queue."""

    model_config = ConfigDict(frozen=True)

    scan_id: str
    tenant_id: str
    repository_id: str
    connection_id: str
    commit_sha: str
    branch: str
    clone_url: str
    full_name: str
    pull_request_id: str | None = None
    check_run_id: str | None = None
    triggered_by: TriggerSource | None = None
    config: ScanConfig = Field(default_factory=ScanConfig)


class FindingsCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0


class NotifyJobPayload(BaseModel):
    """Post-scan status report back to the SCM (check run / PR comment)."""

    model_config = ConfigDict(frozen=True)

    scan_id: str
    tenant_id: str
    repository_id: str
    connection_id: str
    full_name: str
    commit_sha: str
    pull_request_id: str | None = None
    check_run_id: str | None = None
    findings_count: FindingsCount = Field(default_factory=FindingsCount)
    status: Literal["success", "failure", "neutral"] = "neutral"
    scan_duration: float = 0.0


class CleanupJobPayload(BaseModel):
    """Tear down a scan's working directory once transient resources settle."""

    model_config = ConfigDict(frozen=True)

    scan_id: str
    work_dir: str


class TargetScanConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    auth_type: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    rate_limit_preset: Literal["low", "medium", "high"] | None = None
    exclude_paths: tuple[str, ...] = ()
    timeout: int | None = None


class TargetScanJobPayload(BaseModel):
    """A DAST scan against a deployed target URL."""

    model_config = ConfigDict(frozen=True)

    scan_id: str
    tenant_id: str
    target_id: str
    target_url: str
    target_name: str
    scan_mode: Literal["quick", "standard", "comprehensive"] = "standard"
    detected_technologies: tuple[str, ...] = ()
    parent_scan_id: str | None = None
    config: TargetScanConfig = Field(default_factory=TargetScanConfig)


class ScanRecordCreate(BaseModel):
    """Fields needed to persist a new scan record in ``queued`` state."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    repository_id: str
    commit_sha: str
    branch: str
    triggered_by: TriggerSource


class ScanRecord(BaseModel):
    """A persisted scan row."""

    scan_id: str
    tenant_id: str
    repository_id: str
    commit_sha: str
    branch: str
    triggered_by: TriggerSource
    status: ScanStatus
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
