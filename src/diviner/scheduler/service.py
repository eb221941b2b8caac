# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Read and change a repository's scan schedule, or run it right away."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from diviner.core.constants import TriggerSource
from diviner.core.exceptions import RepositoryNotFound, TenantInactive
from diviner.models.schedule import ScheduleConfig, ScheduleUpdate
from diviner.scheduler.cron import next_fire_time, resolve_timezone
from diviner.scheduler.dispatch import ScanDispatcher
from diviner.scheduler.presets import cron_for_preset
from diviner.storage.repository import SchedulingRepository

logger = logging.getLogger("diviner.scheduler.service")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ScheduleService:
    def __init__(
        self,
        repository: SchedulingRepository,
        dispatcher: ScanDispatcher,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._clock = clock or _utcnow

    async def get_schedule_config(self, repository_id: str) -> ScheduleConfig:
        """Return the stored schedule, or the disabled UTC default.

        Raises:
            RepositoryNotFound: The repository does not exist.
        """
        config = await self._repository.get_schedule_config(repository_id)
        if config is not None:
            return config
        if not await self._repository.repository_exists(repository_id):
            raise RepositoryNotFound(f"Repository {repository_id} not found")
        return ScheduleConfig()

    async def update_schedule_config(
        self, repository_id: str, patch: ScheduleUpdate
    ) -> ScheduleConfig:
        """Merge *patch* into the stored schedule and recompute the next run.

        A preset other than ``custom`` replaces the cron expression.  The
        expression and timezone are validated even when the schedule is
        disabled, and nothing is written if either is invalid.

        Raises:
            RepositoryNotFound: The repository does not exist.
            InvalidCronExpression: Bad cron expression or timezone.
        """
        current = await self.get_schedule_config(repository_id)
        now = self._clock()

        enabled = current.schedule_enabled if patch.schedule_enabled is None else patch.schedule_enabled
        timezone = patch.schedule_timezone or current.schedule_timezone
        if patch.preset is not None:
            requested = patch.schedule_cron if patch.schedule_cron is not None else current.schedule_cron
            cron = cron_for_preset(patch.preset, requested)
        elif patch.schedule_cron is not None:
            cron = patch.schedule_cron.strip() or None
        else:
            cron = current.schedule_cron

        resolve_timezone(timezone)
        next_run = next_fire_time(cron, timezone, now) if cron else None

        updated = ScheduleConfig(
            schedule_enabled=enabled,
            schedule_cron=cron,
            schedule_timezone=timezone,
            last_scheduled_scan=current.last_scheduled_scan,
            next_scheduled_scan=next_run if enabled else None,
        )
        await self._repository.save_schedule_config(repository_id, updated, now=now)
        logger.info(
            "Schedule for %s set to enabled=%s cron=%r tz=%s next=%s",
            repository_id,
            enabled,
            cron,
            timezone,
            updated.next_scheduled_scan,
        )
        return updated

    async def trigger_immediate_scan(self, repository_id: str) -> str:
        """Dispatch a manual scan now; the schedule itself is left alone.

        Raises:
            RepositoryNotFound: The repository does not exist.
            TenantInactive: The owning tenant is disabled.
            ProviderError: The head commit could not be resolved.
            QueueUnavailable: The job could not be enqueued.
        """
        ctx = await self._repository.get_schedule_context(repository_id)
        if ctx is None:
            raise RepositoryNotFound(f"Repository {repository_id} not found")
        if not ctx.tenant_active:
            raise TenantInactive(f"Tenant {ctx.tenant_id} is inactive")

        commit = await self._dispatcher.resolve_commit(ctx)
        return await self._dispatcher.dispatch(ctx, commit, TriggerSource.MANUAL, self._clock())
