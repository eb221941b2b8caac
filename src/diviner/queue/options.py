# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Enqueue options, retry policies, and the per-queue defaults."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Literal

# Finished entries are kept around for inspection, then pruned.
COMPLETED_RETENTION_SECONDS = 86_400  # 24 hours
FAILED_RETENTION_SECONDS = 604_800  # 7 days, kept for debugging
REMOVED_RETENTION_SECONDS = 86_400


@dataclass(frozen=True, slots=True)
class Backoff:
    """Delay applied before a failed attempt is retried."""

    type: Literal["fixed", "exponential"] = "exponential"
    delay: float = 5.0  # seconds

    def delay_for(self, attempts_made: int) -> float:
        """Seconds to wait after the *attempts_made*-th failed attempt."""
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** max(attempts_made - 1, 0))


@dataclass(frozen=True, slots=True)
class JobOptions:
    """Per-job enqueue options.

    ``job_id`` doubles as the dedup id.  Lower ``priority`` values are
    served first; jobs of equal priority are served FIFO.  ``timeout`` is
    advisory and only passed on to the worker executing the job.
    """

    job_id: str | None = None
    delay: float = 0.0
    attempts: int = 1
    backoff: Backoff | None = None
    priority: int = 0
    timeout: float | None = None

    def with_job_id(self, job_id: str) -> JobOptions:
        return replace(self, job_id=job_id)

    def with_delay(self, delay: float) -> JobOptions:
        return replace(self, delay=delay)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobOptions:
        backoff = data.get("backoff")
        return cls(
            job_id=data.get("job_id"),
            delay=float(data.get("delay") or 0.0),
            attempts=int(data.get("attempts") or 1),
            backoff=Backoff(**backoff) if backoff else None,
            priority=int(data.get("priority") or 0),
            timeout=data.get("timeout"),
        )


DEFAULT_JOB_OPTIONS = JobOptions(
    attempts=3,
    backoff=Backoff(type="exponential", delay=5.0),  # 5s, 10s, 20s
)

SCAN_JOB_OPTIONS = replace(DEFAULT_JOB_OPTIONS, timeout=900.0, priority=1)
TARGET_SCAN_JOB_OPTIONS = replace(DEFAULT_JOB_OPTIONS, timeout=1800.0, priority=2)
NOTIFY_JOB_OPTIONS = replace(DEFAULT_JOB_OPTIONS, timeout=60.0, priority=5)
CLEANUP_JOB_OPTIONS = JobOptions(delay=60.0)
