# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Turn a repository context into a persisted scan record and a queued job.

Shared by the scheduler loop and the manual "run now" trigger so both paths
build identical job descriptors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta

from diviner.core.constants import ScmProviderKind, TriggerSource
from diviner.core.exceptions import ProviderError, QueueUnavailable
from diviner.models.scan import ScanJobDescriptor, ScanRecordCreate
from diviner.models.schedule import RepositoryScheduleContext
from diviner.queue.service import QueueService
from diviner.scm.base import Commit, ScmProvider
from diviner.storage.repository import SchedulingRepository

logger = logging.getLogger("diviner.scheduler.dispatch")


class ScanDispatcher:
    """Resolve the head commit, record the scan, and enqueue it.

    Args:
        repository: Persistence for scan records.
        queue_service: Queue facade the job is handed to.
        providers: Provider per SCM platform tag.
        dedup_window: Window within which a repeated scheduled scan of the
            same commit reuses the existing scan record.
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        queue_service: QueueService,
        providers: Mapping[ScmProviderKind, ScmProvider],
        *,
        dedup_window: timedelta | None = timedelta(minutes=5),
    ) -> None:
        self._repository = repository
        self._queue_service = queue_service
        self._providers = providers
        self._dedup_window = dedup_window

    async def resolve_commit(self, ctx: RepositoryScheduleContext) -> Commit:
        provider = self._providers.get(ctx.provider)
        if provider is None:
            raise ProviderError(f"No provider registered for {ctx.provider}", provider=str(ctx.provider))
        owner, name = ctx.owner_and_name
        return await provider.get_latest_commit(ctx.credentials, owner, name, ctx.default_branch)

    async def dispatch(
        self,
        ctx: RepositoryScheduleContext,
        commit: Commit,
        triggered_by: TriggerSource,
        now: datetime,
    ) -> str:
        """Create the scan record and enqueue its job; return the scan id.

        Raises:
            QueueUnavailable: The job could not be enqueued.  The scan record
                is marked failed before the error is re-raised.
        """
        config = ctx.scan_config
        if not config.branches:
            config = config.model_copy(update={"branches": (ctx.default_branch,)})

        scan_id = await self._repository.create_scan_record(
            ScanRecordCreate(
                tenant_id=ctx.tenant_id,
                repository_id=ctx.repository_id,
                commit_sha=commit.sha,
                branch=ctx.default_branch,
                triggered_by=triggered_by,
            ),
            now=now,
            dedup_window=self._dedup_window if triggered_by == TriggerSource.SCHEDULED else None,
        )

        descriptor = ScanJobDescriptor(
            scan_id=scan_id,
            tenant_id=ctx.tenant_id,
            repository_id=ctx.repository_id,
            connection_id=ctx.connection_id,
            commit_sha=commit.sha,
            branch=ctx.default_branch,
            clone_url=ctx.clone_url,
            full_name=ctx.full_name,
            triggered_by=triggered_by,
            config=config,
        )
        try:
            await self._queue_service.enqueue_scan(descriptor)
        except QueueUnavailable as exc:
            await self._repository.mark_scan_failed(scan_id, f"Queue unavailable: {exc}", now=now)
            raise

        logger.info(
            "Dispatched %s scan %s for %s at %s",
            triggered_by,
            scan_id,
            ctx.full_name,
            commit.sha[:12],
        )
        return scan_id
