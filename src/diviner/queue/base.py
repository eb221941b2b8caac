# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Abstract job queue interface and the job snapshot type.

A queue entry is identified by ``(queue, job_id)``.  At most one *live*
(waiting, active or delayed) entry exists per id: enqueueing an id that is
already live returns the existing entry unchanged.  Entries move through::

    waiting -> active -> completed | failed
    waiting -> delayed -> waiting
    active  -> delayed            (failed attempt with retries left)
    waiting | delayed -> removed
    failed  -> waiting            (manual retry)

There is no ``active -> removed`` transition; active jobs are stopped
through the cancellation signal bus.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from diviner.core.constants import LIVE_STATES, JobState
from diviner.queue.options import JobOptions


@dataclass
class JobHandle:
    """A point-in-time snapshot of a queue entry."""

    job_id: str
    queue: str
    name: str
    data: dict[str, Any]
    state: JobState
    options: JobOptions = field(default_factory=JobOptions)
    attempts_made: int = 0
    created_at: datetime | None = None
    processed_at: datetime | None = None
    finished_at: datetime | None = None
    ready_at: datetime | None = None
    failed_reason: str | None = None
    return_value: Any = None
    worker_id: str | None = None

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "queue": self.queue,
            "name": self.name,
            "state": str(self.state),
            "attempts_made": self.attempts_made,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "ready_at": self.ready_at.isoformat() if self.ready_at else None,
            "failed_reason": self.failed_reason,
        }


class JobQueue(abc.ABC):
    """Base class for durable, named job queues.

    Every method raises :class:`~diviner.core.exceptions.QueueUnavailable`
    when the backend cannot be reached.
    """

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> JobHandle:
        """Add a job, or return the live entry already holding ``options.job_id``."""

    @abc.abstractmethod
    async def get_job(self, queue: str, job_id: str) -> JobHandle | None:
        """Return a snapshot of the entry, or ``None`` if it is unknown."""

    async def get_state(self, queue: str, job_id: str) -> JobState | None:
        job = await self.get_job(queue, job_id)
        return job.state if job is not None else None

    @abc.abstractmethod
    async def remove(self, queue: str, job_id: str) -> bool:
        """Remove a waiting or delayed entry.

        Returns:
            ``True`` if the entry was removed.  Active and finished entries
            are left alone and ``False`` is returned.
        """

    @abc.abstractmethod
    async def retry(self, queue: str, job_id: str) -> bool:
        """Move a failed entry back to waiting with its attempt count reset."""

    @abc.abstractmethod
    async def move_to_failed(self, queue: str, job_id: str, reason: str) -> bool:
        """Force a live entry into ``failed`` without consuming a retry."""

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def counts_by_state(self, queue: str) -> dict[JobState, int]:
        """Return the number of entries per state (removed entries excluded)."""

    @abc.abstractmethod
    async def list_jobs(
        self, queue: str, state: JobState, limit: int = 100
    ) -> list[JobHandle]:
        """Return up to *limit* entries in *state*, oldest first."""

    @abc.abstractmethod
    async def list_workers(self, queue: str) -> int:
        """Return the number of workers that heartbeated recently."""

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Return ``True`` if the backend is reachable."""

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def fetch_next(self, queue: str, worker_id: str) -> JobHandle | None:
        """Promote due delayed entries, then move the next waiting entry to active."""

    @abc.abstractmethod
    async def complete(self, queue: str, job_id: str, result: Any = None) -> bool:
        """Mark an active entry completed.  ``False`` if it is no longer active."""

    @abc.abstractmethod
    async def fail(self, queue: str, job_id: str, reason: str) -> JobState | None:
        """Record a failed attempt, scheduling a retry if attempts remain.

        Returns:
            The resulting state (``delayed``/``waiting`` when retried,
            ``failed`` when exhausted), or ``None`` if the entry was not
            active.
        """

    @abc.abstractmethod
    async def promote_delayed(self, queue: str) -> int:
        """Move every delayed entry whose delay has elapsed to waiting."""

    @abc.abstractmethod
    async def register_worker(self, queue: str, worker_id: str) -> None:
        """Record (or refresh) a worker's heartbeat."""

    async def heartbeat(self, queue: str, worker_id: str) -> None:
        await self.register_worker(queue, worker_id)

    @abc.abstractmethod
    async def unregister_worker(self, queue: str, worker_id: str) -> None:
        """Forget a worker that is shutting down."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release any resources held by the backend."""
