# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Enumerations, queue names, and schedule constants."""

from enum import StrEnum


class JobState(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVED = "removed"


LIVE_STATES = frozenset({JobState.WAITING, JobState.ACTIVE, JobState.DELAYED})
TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.REMOVED})


class ScanStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TriggerSource(StrEnum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class SchedulePreset(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class ScmProviderKind(StrEnum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE_DEVOPS = "azure_devops"


class FindingStatus(StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


class Severity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class QueueName(StrEnum):
    SCAN = "scan-jobs"
    TARGET_SCAN = "target-scan-jobs"
    NOTIFY = "notify-jobs"
    CLEANUP = "cleanup-jobs"


class JobName(StrEnum):
    PROCESS_SCAN = "process-scan"
    PROCESS_TARGET_SCAN = "process-target-scan"
    NOTIFY_SCM = "notify-scm"
    CLEANUP_WORKDIR = "cleanup-workdir"


CANCELLED_REASON = "cancelled"
DEFAULT_TIMEZONE = "UTC"
