# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""SchedulerEngine: dispatches due repository scans on their cron schedules.

Uses pure asyncio.  The engine runs as a background task during
``diviner serve`` (or ``diviner scheduler run``) and checks for due
schedules every 60 seconds.  The same loop fires the maintenance sweeps.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from diviner.core.constants import TriggerSource
from diviner.core.exceptions import InvalidCronExpression, ProviderError, QueueUnavailable
from diviner.models.schedule import RepositoryScheduleContext
from diviner.scheduler.cron import next_fire_time
from diviner.scheduler.dispatch import ScanDispatcher
from diviner.scheduler.maintenance import MaintenanceJob
from diviner.storage.repository import SchedulingRepository

logger = logging.getLogger("diviner.scheduler.engine")

_CHECK_INTERVAL_SECONDS = 60

DISPATCHED = "dispatched"
SKIPPED = "skipped"
FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class TickReport:
    """What one tick did, per repository id."""

    started_at: datetime
    outcomes: dict[str, str] = field(default_factory=dict)
    maintenance: dict[str, int] = field(default_factory=dict)

    def count(self, outcome: str) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)


class SchedulerEngine:
    """Asyncio-based scheduler that polls for due schedules and dispatches scans.

    Args:
        repository: Schedule and scan persistence.
        dispatcher: Builds and enqueues the scan for a repository.
        check_interval: Seconds between ticks.
        concurrency: Maximum repositories processed in parallel per tick.
        maintenance_jobs: Sweeps fired when their cron expression is due.
        clock: Returns the current aware datetime.  Defaults to UTC now.
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        dispatcher: ScanDispatcher,
        *,
        check_interval: float = _CHECK_INTERVAL_SECONDS,
        concurrency: int = 1,
        maintenance_jobs: Iterable[MaintenanceJob] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._check_interval = check_interval
        self._semaphore = asyncio.Semaphore(max(concurrency, 1))
        self._maintenance = list(maintenance_jobs)
        self._maintenance_due: dict[str, datetime] = {}
        self._clock = clock or _utcnow
        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def maintenance_jobs(self) -> list[MaintenanceJob]:
        return list(self._maintenance)

    async def start(self) -> None:
        """Start the scheduler background loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Scheduler engine started (interval=%ss)", self._check_interval)

    async def stop(self) -> None:
        """Gracefully stop the scheduler."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Scheduler engine stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self._check_interval)

    async def tick(self) -> TickReport | None:
        """Run one scheduling pass.

        Returns ``None`` without doing anything if the previous tick is still
        running.
        """
        if self._tick_lock.locked():
            logger.warning("Previous scheduler tick still running, skipping this one")
            return None

        async with self._tick_lock:
            now = self._clock()
            report = TickReport(started_at=now)

            due = await self._repository.find_due_schedule_configs(now)
            if due:
                logger.info("Found %d repositories due for a scheduled scan", len(due))
            outcomes = await asyncio.gather(*(self._guarded(ctx, now) for ctx in due))
            report.outcomes = {ctx.repository_id: outcome for ctx, outcome in zip(due, outcomes, strict=True)}

            report.maintenance = await self._run_maintenance(now)
            return report

    async def _guarded(self, ctx: RepositoryScheduleContext, now: datetime) -> str:
        async with self._semaphore:
            try:
                return await self.process_repository(ctx, now)
            except Exception:
                logger.exception("Scheduled scan for repository %s failed", ctx.repository_id)
                return FAILED

    async def process_repository(self, ctx: RepositoryScheduleContext, now: datetime) -> str:
        """Dispatch one due repository and advance its schedule."""
        if not ctx.tenant_active:
            logger.warning(
                "Skipping scheduled scan for %s: tenant %s is inactive",
                ctx.full_name,
                ctx.tenant_id,
            )
            return SKIPPED

        schedule = ctx.schedule
        try:
            next_run = next_fire_time(schedule.schedule_cron or "", schedule.schedule_timezone, now)
        except InvalidCronExpression as exc:
            logger.warning("Invalid schedule for %s, disabling next run: %s", ctx.full_name, exc)
            await self._repository.update_schedule_times(
                ctx.repository_id, last=None, next_=None, now=now
            )
            return SKIPPED

        try:
            commit = await self._dispatcher.resolve_commit(ctx)
        except QueueUnavailable:
            raise
        except Exception as exc:
            if isinstance(exc, ProviderError):
                logger.error(
                    "Could not resolve %s@%s, retrying at next fire time: %s",
                    ctx.full_name,
                    ctx.default_branch,
                    exc,
                )
            else:
                logger.exception(
                    "Commit lookup for %s@%s crashed, retrying at next fire time",
                    ctx.full_name,
                    ctx.default_branch,
                )
            await self._repository.update_schedule_times(
                ctx.repository_id, last=now, next_=next_run, now=now
            )
            return FAILED

        try:
            await self._dispatcher.dispatch(ctx, commit, TriggerSource.SCHEDULED, now)
        except QueueUnavailable as exc:
            logger.error("Queue unavailable, %s stays due: %s", ctx.full_name, exc)
            return FAILED

        await self._repository.update_schedule_times(
            ctx.repository_id, last=now, next_=next_run, now=now
        )
        logger.info("Next scheduled scan for %s at %s", ctx.full_name, next_run.isoformat())
        return DISPATCHED

    async def _run_maintenance(self, now: datetime) -> dict[str, int]:
        results: dict[str, int] = {}
        for job in self._maintenance:
            due_at = self._maintenance_due.get(job.name)
            if due_at is None:
                # First sight: schedule from now, do not fire immediately.
                self._maintenance_due[job.name] = next_fire_time(job.cron, "UTC", now)
                continue
            if due_at > now:
                continue
            try:
                results[job.name] = await job.run(now)
            except Exception:
                logger.exception("Maintenance job %s failed", job.name)
            self._maintenance_due[job.name] = next_fire_time(job.cron, "UTC", now)
        return results
