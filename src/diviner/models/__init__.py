# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Domain models for diviner."""

from diviner.models.maintenance import (
    AffectedPackage,
    AffectedProduct,
    CveRecord,
    SbomComponent,
    VulnerabilityAlertCreate,
    WeeklySummary,
)
from diviner.models.scan import (
    CleanupJobPayload,
    FindingsCount,
    NotifyJobPayload,
    ScanConfig,
    ScanJobDescriptor,
    ScanRecord,
    ScanRecordCreate,
    TargetScanConfig,
    TargetScanJobPayload,
)
from diviner.models.schedule import (
    RepositoryScheduleContext,
    ScheduleConfig,
    ScheduleUpdate,
    ScmCredentials,
    Tenant,
)

__all__ = [
    "AffectedPackage",
    "AffectedProduct",
    "CleanupJobPayload",
    "CveRecord",
    "FindingsCount",
    "NotifyJobPayload",
    "RepositoryScheduleContext",
    "SbomComponent",
    "ScanConfig",
    "ScanJobDescriptor",
    "ScanRecord",
    "ScanRecordCreate",
    "ScheduleConfig",
    "ScheduleUpdate",
    "ScmCredentials",
    "TargetScanConfig",
    "TargetScanJobPayload",
    "Tenant",
    "VulnerabilityAlertCreate",
    "WeeklySummary",
]
