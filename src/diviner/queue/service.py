# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Queue facade used by every producer of scan work.

The job-id convention (``scan-<id>``, ``notify-<id>``, ``cleanup-<id>``,
``target-scan-<id>``), the retry policy per queue, and the cancellation
protocol are defined here and nowhere else.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from pydantic import BaseModel, Field

from diviner.core.constants import (
    CANCELLED_REASON,
    JobName,
    JobState,
    QueueName,
)
from diviner.core.exceptions import DivinerError, QueueUnavailable, SignalBusError
from diviner.models.scan import (
    CleanupJobPayload,
    NotifyJobPayload,
    ScanJobDescriptor,
    TargetScanJobPayload,
)
from diviner.queue.base import JobHandle, JobQueue
from diviner.queue.options import (
    CLEANUP_JOB_OPTIONS,
    NOTIFY_JOB_OPTIONS,
    SCAN_JOB_OPTIONS,
    TARGET_SCAN_JOB_OPTIONS,
    JobOptions,
)
from diviner.signals.base import SignalBus

logger = logging.getLogger("diviner.queue.service")

# Short names used in health and stats reports.
_QUEUE_LABELS = {
    QueueName.SCAN: "scan",
    QueueName.NOTIFY: "notify",
    QueueName.TARGET_SCAN: "target_scan",
    QueueName.CLEANUP: "cleanup",
}


def scan_job_id(scan_id: str) -> str:
    return f"scan-{scan_id}"


def notify_job_id(scan_id: str) -> str:
    return f"notify-{scan_id}"


def cleanup_job_id(scan_id: str) -> str:
    return f"cleanup-{scan_id}"


def target_scan_job_id(scan_id: str) -> str:
    return f"target-scan-{scan_id}"


class QueueStatus(BaseModel):
    connected: bool
    workers: int = 0


class QueueHealth(BaseModel):
    connected: bool
    queues: dict[str, QueueStatus] = Field(default_factory=dict)


class QueueService:
    """Enqueue, inspect, and cancel scan-related jobs.

    Args:
        job_queue: The queue backend.
        signal_bus: Bus used to tell workers to stop active scans.
        cancellation_channel: Channel the workers listen on.
        scan_options: Retry policy for scan jobs.
        cleanup_delay: Default delay, in seconds, before a cleanup job runs.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        signal_bus: SignalBus,
        *,
        cancellation_channel: str = "scan-cancellation",
        scan_options: JobOptions = SCAN_JOB_OPTIONS,
        cleanup_delay: float = CLEANUP_JOB_OPTIONS.delay,
    ) -> None:
        self._queue = job_queue
        self._bus = signal_bus
        self._channel = cancellation_channel
        self._scan_options = scan_options
        self._cleanup_delay = cleanup_delay

    @property
    def job_queue(self) -> JobQueue:
        return self._queue

    @property
    def scan_options(self) -> JobOptions:
        return self._scan_options

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue_scan(self, job: ScanJobDescriptor) -> JobHandle:
        handle = await self._queue.enqueue(
            QueueName.SCAN,
            JobName.PROCESS_SCAN,
            job.model_dump(mode="json"),
            self._scan_options.with_job_id(scan_job_id(job.scan_id)),
        )
        # The job is in; queue depth is only reported.
        try:
            counts = await self._queue.counts_by_state(QueueName.SCAN)
        except QueueUnavailable as exc:
            logger.warning(
                "Scan job %s queued for %s@%s (queue depth unavailable: %s)",
                handle.job_id,
                job.full_name,
                job.branch,
                exc,
            )
            return handle
        logger.info(
            "Scan job %s queued for %s@%s (waiting=%d active=%d)",
            handle.job_id,
            job.full_name,
            job.branch,
            counts.get(JobState.WAITING, 0),
            counts.get(JobState.ACTIVE, 0),
        )
        return handle

    async def enqueue_notification(self, payload: NotifyJobPayload) -> JobHandle:
        handle = await self._queue.enqueue(
            QueueName.NOTIFY,
            JobName.NOTIFY_SCM,
            payload.model_dump(mode="json"),
            NOTIFY_JOB_OPTIONS.with_job_id(notify_job_id(payload.scan_id)),
        )
        logger.info("Notification job %s queued", handle.job_id)
        return handle

    async def enqueue_cleanup(
        self, payload: CleanupJobPayload, delay: float | None = None
    ) -> JobHandle:
        seconds = self._cleanup_delay if delay is None else delay
        options = replace(CLEANUP_JOB_OPTIONS, job_id=cleanup_job_id(payload.scan_id), delay=seconds)
        handle = await self._queue.enqueue(
            QueueName.CLEANUP,
            JobName.CLEANUP_WORKDIR,
            payload.model_dump(mode="json"),
            options,
        )
        logger.debug("Cleanup job %s scheduled in %.0fs", handle.job_id, seconds)
        return handle

    async def enqueue_target_scan(self, payload: TargetScanJobPayload) -> JobHandle:
        handle = await self._queue.enqueue(
            QueueName.TARGET_SCAN,
            JobName.PROCESS_TARGET_SCAN,
            payload.model_dump(mode="json"),
            TARGET_SCAN_JOB_OPTIONS.with_job_id(target_scan_job_id(payload.scan_id)),
        )
        logger.info("Target scan job %s queued for %s", handle.job_id, payload.target_url)
        return handle

    # ------------------------------------------------------------------
    # Lookup and cancellation
    # ------------------------------------------------------------------

    async def get_scan_job(self, scan_id: str) -> JobHandle | None:
        return await self._queue.get_job(QueueName.SCAN, scan_job_id(scan_id))

    async def get_scan_state(self, scan_id: str) -> JobState | None:
        return await self._queue.get_state(QueueName.SCAN, scan_job_id(scan_id))

    async def cancel_scan(self, scan_id: str) -> bool:
        """Cancel a scan job in whatever state it is in.

        Returns ``False`` only when no job exists for *scan_id*.  Already
        finished jobs count as cancelled and are left untouched.
        """
        return await self._cancel(QueueName.SCAN, scan_job_id(scan_id), scan_id)

    async def cancel_target_scan(self, scan_id: str) -> bool:
        return await self._cancel(QueueName.TARGET_SCAN, target_scan_job_id(scan_id), scan_id)

    async def _cancel(self, queue: QueueName, job_id: str, scan_id: str) -> bool:
        state = await self._queue.get_state(queue, job_id)
        if state is None:
            return False

        if state == JobState.ACTIVE:
            try:
                receivers = await self._bus.publish(self._channel, scan_id)
                logger.debug("Cancellation for %s delivered to %d subscriber(s)", scan_id, receivers)
            except SignalBusError as exc:
                logger.error("Failed to publish cancellation for scan %s: %s", scan_id, exc)
            await self._queue.move_to_failed(queue, job_id, CANCELLED_REASON)
            logger.info("Active job %s cancelled", job_id)
            return True

        if state in (JobState.WAITING, JobState.DELAYED):
            # A concurrent fetch may have taken it; fall back to the active path.
            if not await self._queue.remove(queue, job_id):
                refreshed = await self._queue.get_state(queue, job_id)
                if refreshed == JobState.ACTIVE:
                    return await self._cancel(queue, job_id, scan_id)
            logger.info("Queued job %s removed", job_id)
            return True

        return True

    # ------------------------------------------------------------------
    # Health and maintenance
    # ------------------------------------------------------------------

    async def get_queue_health(self) -> QueueHealth:
        """Report backend connectivity and live worker counts.  Never raises."""
        try:
            connected = await self._queue.ping()
            queues: dict[str, QueueStatus] = {}
            for queue, label in _QUEUE_LABELS.items():
                workers = await self._queue.list_workers(queue) if connected else 0
                queues[label] = QueueStatus(connected=connected, workers=workers)
            return QueueHealth(connected=connected, queues=queues)
        except Exception:
            logger.exception("Queue health check failed")
            return QueueHealth(
                connected=False,
                queues={label: QueueStatus(connected=False) for label in _QUEUE_LABELS.values()},
            )

    async def get_queue_stats(self) -> dict[str, dict[str, int]]:
        stats: dict[str, dict[str, int]] = {}
        for queue, label in _QUEUE_LABELS.items():
            counts = await self._queue.counts_by_state(queue)
            stats[label] = {str(state): count for state, count in counts.items()}
        return stats

    async def get_waiting_jobs(self, limit: int = 100) -> list[JobHandle]:
        return await self._queue.list_jobs(QueueName.SCAN, JobState.WAITING, limit)

    async def get_active_jobs(self, limit: int = 100) -> list[JobHandle]:
        return await self._queue.list_jobs(QueueName.SCAN, JobState.ACTIVE, limit)

    async def retry_failed_jobs(self, limit: int = 1000) -> int:
        """Move failed scan jobs back to waiting, one at a time.

        A job that cannot be retried is logged and skipped.
        """
        failed = await self._queue.list_jobs(QueueName.SCAN, JobState.FAILED, limit)
        retried = 0
        for job in failed:
            try:
                if await self._queue.retry(QueueName.SCAN, job.job_id):
                    retried += 1
            except DivinerError as exc:
                logger.warning("Failed to retry job %s: %s", job.job_id, exc)
        logger.info("Retried %d of %d failed scan job(s)", retried, len(failed))
        return retried

