# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Wire settings into a running set of services.

:func:`build_runtime` is the only place that picks concrete backends.  The
API and CLI share one :class:`Runtime` through :func:`get_runtime`, which
tests replace with :func:`set_runtime` and clear with :func:`reset_runtime`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import aiosqlite

from diviner.core.config import Settings
from diviner.core.constants import ScmProviderKind
from diviner.core.exceptions import ConfigurationError, StorageError
from diviner.notifications.email import EmailDigestSender
from diviner.queue.base import JobQueue
from diviner.queue.options import SCAN_JOB_OPTIONS, Backoff
from diviner.queue.service import QueueService
from diviner.scheduler.dispatch import ScanDispatcher
from diviner.scheduler.engine import SchedulerEngine
from diviner.scheduler.maintenance import MaintenanceJob, MaintenanceSweeps
from diviner.scheduler.service import ScheduleService
from diviner.scm.base import ScmProvider
from diviner.scm.providers import build_providers
from diviner.signals.base import SignalBus
from diviner.storage.database import close_db, init_db
from diviner.storage.sqlite import SqliteSchedulingRepository

logger = logging.getLogger("diviner.runtime")

_runtime: Runtime | None = None


@dataclass
class Runtime:
    settings: Settings
    repository: SqliteSchedulingRepository
    job_queue: JobQueue
    signal_bus: SignalBus
    queue_service: QueueService
    dispatcher: ScanDispatcher
    schedule_service: ScheduleService
    engine: SchedulerEngine

    async def aclose(self) -> None:
        """Stop the engine and release the queue and bus connections."""
        await self.engine.stop()
        await self.signal_bus.close()
        await self.job_queue.close()


def create_job_queue(settings: Settings) -> JobQueue:
    if settings.queue_backend == "memory":
        from diviner.queue.memory import MemoryJobQueue

        return MemoryJobQueue(worker_ttl=settings.worker_heartbeat_ttl)
    if settings.queue_backend == "redis":
        from diviner.queue.redis import RedisJobQueue

        return RedisJobQueue(
            settings.redis_url,
            prefix=settings.queue_prefix,
            worker_ttl=settings.worker_heartbeat_ttl,
        )
    raise ConfigurationError(f"Unknown queue backend: {settings.queue_backend!r}")


def create_signal_bus(settings: Settings) -> SignalBus:
    if settings.queue_backend == "memory":
        from diviner.signals.memory import MemorySignalBus

        return MemorySignalBus()
    if settings.queue_backend == "redis":
        from diviner.signals.redis import RedisSignalBus

        return RedisSignalBus(settings.redis_url)
    raise ConfigurationError(f"Unknown queue backend: {settings.queue_backend!r}")


def build_runtime(
    settings: Settings,
    db: aiosqlite.Connection,
    *,
    job_queue: JobQueue | None = None,
    signal_bus: SignalBus | None = None,
    providers: Mapping[ScmProviderKind, ScmProvider] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Runtime:
    """Assemble every service from *settings* on top of an open database."""
    if job_queue is None:
        job_queue = create_job_queue(settings)
    if signal_bus is None:
        signal_bus = create_signal_bus(settings)
    repository = SqliteSchedulingRepository(db)

    scan_options = replace(
        SCAN_JOB_OPTIONS,
        attempts=settings.scan_job_attempts,
        backoff=Backoff(type="exponential", delay=settings.scan_job_backoff_seconds),
        timeout=float(settings.scan_job_timeout_seconds),
    )
    queue_service = QueueService(
        job_queue,
        signal_bus,
        cancellation_channel=settings.cancellation_channel,
        scan_options=scan_options,
        cleanup_delay=settings.cleanup_delay_seconds,
    )
    dispatcher = ScanDispatcher(
        repository,
        queue_service,
        providers if providers is not None else build_providers(settings),
        dedup_window=timedelta(seconds=settings.scan_record_dedup_window),
    )

    maintenance_jobs: list[MaintenanceJob] = []
    if settings.maintenance_enabled:
        sweeps = MaintenanceSweeps(
            repository,
            EmailDigestSender.from_settings(settings),
            stale_finding_days=settings.stale_finding_days,
            cve_lookback_hours=settings.cve_lookback_hours,
            digest_lookback_days=settings.digest_lookback_days,
            digest_copy_to=settings.digest_recipients,
        )
        maintenance_jobs = sweeps.jobs()

    engine = SchedulerEngine(
        repository,
        dispatcher,
        check_interval=settings.scheduler_interval,
        concurrency=settings.scheduler_concurrency,
        maintenance_jobs=maintenance_jobs,
        clock=clock,
    )
    logger.debug(
        "Runtime built (queue=%s, maintenance=%d job(s))",
        settings.queue_backend,
        len(maintenance_jobs),
    )
    return Runtime(
        settings=settings,
        repository=repository,
        job_queue=job_queue,
        signal_bus=signal_bus,
        queue_service=queue_service,
        dispatcher=dispatcher,
        schedule_service=ScheduleService(repository, dispatcher, clock=clock),
        engine=engine,
    )


def get_runtime() -> Runtime:
    """Return the process-wide runtime.

    Raises StorageError if no runtime has been installed yet.
    """
    if _runtime is None:
        raise StorageError("Runtime not initialized. Call set_runtime() first.")
    return _runtime


def set_runtime(runtime: Runtime) -> None:
    global _runtime
    _runtime = runtime


def reset_runtime() -> None:
    global _runtime
    _runtime = None


@asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    """Open the database, build a runtime, and tear both down on exit.

    Used by one-shot CLI commands; the API server manages its own lifespan.
    """
    db = await init_db(settings.db_path, auto_migrate=settings.auto_migrate)
    runtime = build_runtime(settings, db)
    try:
        yield runtime
    finally:
        await runtime.aclose()
        await close_db()
