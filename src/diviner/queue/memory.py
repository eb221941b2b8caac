# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""In-process job queue backend.

This is the default backend and requires no external services.  Entries
live in plain dicts keyed by queue name and job id; every public method
returns a copy so callers never hold references into the store.  Time comes
from an injectable clock so tests can step through delays and retention.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from diviner.core.constants import JobState
from diviner.queue.base import JobHandle, JobQueue
from diviner.queue.options import (
    COMPLETED_RETENTION_SECONDS,
    FAILED_RETENTION_SECONDS,
    REMOVED_RETENTION_SECONDS,
    JobOptions,
)

logger = logging.getLogger("diviner.queue.memory")

_RETENTION = {
    JobState.COMPLETED: COMPLETED_RETENTION_SECONDS,
    JobState.FAILED: FAILED_RETENTION_SECONDS,
    JobState.REMOVED: REMOVED_RETENTION_SECONDS,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _snapshot(job: JobHandle) -> JobHandle:
    return replace(job, data=dict(job.data))


@dataclass
class _Entry:
    """A stored job plus its position in the waiting order."""

    job: JobHandle
    seq: int


class MemoryJobQueue(JobQueue):
    """Dict-backed job queue.

    Args:
        clock: Returns the current aware datetime.  Defaults to UTC now.
        worker_ttl: Seconds after which a silent worker stops counting.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        worker_ttl: int = 30,
    ) -> None:
        self._clock = clock or _utcnow
        self._worker_ttl = worker_ttl
        self._queues: dict[str, dict[str, _Entry]] = {}
        self._workers: dict[str, dict[str, datetime]] = {}
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> JobHandle:
        opts = options or JobOptions()
        async with self._lock:
            store = self._store(queue)
            self._prune(store)
            seq = next(self._seq)
            job_id = opts.job_id or str(seq)

            existing = store.get(job_id)
            if existing is not None and existing.job.is_live:
                logger.debug("Job %s already live in %s, skipping enqueue", job_id, queue)
                return _snapshot(existing.job)

            now = self._clock()
            job = JobHandle(
                job_id=job_id,
                queue=queue,
                name=job_type,
                data=dict(payload),
                state=JobState.WAITING,
                options=opts,
                created_at=now,
            )
            if opts.delay > 0:
                job.state = JobState.DELAYED
                job.ready_at = now + timedelta(seconds=opts.delay)
            store[job_id] = _Entry(job=job, seq=seq)
            return _snapshot(job)

    async def get_job(self, queue: str, job_id: str) -> JobHandle | None:
        entry = self._store(queue).get(job_id)
        return _snapshot(entry.job) if entry is not None else None

    async def remove(self, queue: str, job_id: str) -> bool:
        async with self._lock:
            entry = self._store(queue).get(job_id)
            if entry is None or entry.job.state not in (JobState.WAITING, JobState.DELAYED):
                return False
            entry.job.state = JobState.REMOVED
            entry.job.finished_at = self._clock()
            return True

    async def retry(self, queue: str, job_id: str) -> bool:
        async with self._lock:
            entry = self._store(queue).get(job_id)
            if entry is None or entry.job.state != JobState.FAILED:
                return False
            job = entry.job
            job.state = JobState.WAITING
            job.attempts_made = 0
            job.failed_reason = None
            job.finished_at = None
            job.processed_at = None
            job.worker_id = None
            entry.seq = next(self._seq)
            return True

    async def move_to_failed(self, queue: str, job_id: str, reason: str) -> bool:
        async with self._lock:
            entry = self._store(queue).get(job_id)
            if entry is None or not entry.job.is_live:
                return False
            self._finish(entry.job, JobState.FAILED, failed_reason=reason)
            return True

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def counts_by_state(self, queue: str) -> dict[JobState, int]:
        store = self._store(queue)
        self._prune(store)
        counts = {state: 0 for state in JobState if state != JobState.REMOVED}
        for entry in store.values():
            if entry.job.state in counts:
                counts[entry.job.state] += 1
        return counts

    async def list_jobs(
        self, queue: str, state: JobState, limit: int = 100
    ) -> list[JobHandle]:
        store = self._store(queue)
        self._prune(store)
        matching = sorted(
            (e for e in store.values() if e.job.state == state),
            key=lambda e: e.seq,
        )
        return [_snapshot(e.job) for e in matching[:limit]]

    async def list_workers(self, queue: str) -> int:
        cutoff = self._clock() - timedelta(seconds=self._worker_ttl)
        workers = self._workers.get(queue, {})
        return sum(1 for seen in workers.values() if seen >= cutoff)

    async def ping(self) -> bool:
        return not self._closed

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def fetch_next(self, queue: str, worker_id: str) -> JobHandle | None:
        async with self._lock:
            self._promote(queue)
            waiting = [e for e in self._store(queue).values() if e.job.state == JobState.WAITING]
            if not waiting:
                return None
            entry = min(waiting, key=lambda e: (e.job.options.priority, e.seq))
            job = entry.job
            job.state = JobState.ACTIVE
            job.attempts_made += 1
            job.processed_at = self._clock()
            job.worker_id = worker_id
            return _snapshot(job)

    async def complete(self, queue: str, job_id: str, result: Any = None) -> bool:
        async with self._lock:
            entry = self._store(queue).get(job_id)
            if entry is None or entry.job.state != JobState.ACTIVE:
                return False
            self._finish(entry.job, JobState.COMPLETED, return_value=result)
            return True

    async def fail(self, queue: str, job_id: str, reason: str) -> JobState | None:
        async with self._lock:
            entry = self._store(queue).get(job_id)
            if entry is None or entry.job.state != JobState.ACTIVE:
                return None
            job = entry.job
            if job.attempts_made >= job.options.attempts:
                self._finish(job, JobState.FAILED, failed_reason=reason)
                return job.state

            job.failed_reason = reason
            job.worker_id = None
            backoff = job.options.backoff
            delay = backoff.delay_for(job.attempts_made) if backoff else 0.0
            if delay > 0:
                job.state = JobState.DELAYED
                job.ready_at = self._clock() + timedelta(seconds=delay)
            else:
                job.state = JobState.WAITING
                entry.seq = next(self._seq)
            return job.state

    async def promote_delayed(self, queue: str) -> int:
        async with self._lock:
            return self._promote(queue)

    async def register_worker(self, queue: str, worker_id: str) -> None:
        self._workers.setdefault(queue, {})[worker_id] = self._clock()

    async def unregister_worker(self, queue: str, worker_id: str) -> None:
        self._workers.get(queue, {}).pop(worker_id, None)

    async def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _store(self, queue: str) -> dict[str, _Entry]:
        return self._queues.setdefault(queue, {})

    def _finish(self, job: JobHandle, state: JobState, **fields: Any) -> None:
        job.state = state
        job.finished_at = self._clock()
        for name, value in fields.items():
            setattr(job, name, value)

    def _promote(self, queue: str) -> int:
        now = self._clock()
        promoted = 0
        for entry in self._store(queue).values():
            job = entry.job
            if job.state == JobState.DELAYED and job.ready_at is not None and job.ready_at <= now:
                job.state = JobState.WAITING
                job.ready_at = None
                entry.seq = next(self._seq)
                promoted += 1
        return promoted

    def _prune(self, store: dict[str, _Entry]) -> None:
        """Drop finished entries older than their retention window."""
        now = self._clock()
        expired = [
            job_id
            for job_id, entry in store.items()
            if entry.job.state in _RETENTION
            and entry.job.finished_at is not None
            and now - entry.job.finished_at > timedelta(seconds=_RETENTION[entry.job.state])
        ]
        for job_id in expired:
            del store[job_id]
