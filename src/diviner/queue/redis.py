# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Redis job queue backend using the ``redis`` async client.

Key layout, per queue (``{prefix}:queue:{name}:``)::

    job:{id}    hash     serialized JobHandle
    wait        zset     waiting ids, score = priority * 1e12 + sequence
    delayed     zset     delayed ids, score = ready time (epoch ms)
    active      zset     active ids, score = start time (epoch ms)
    completed   zset     completed ids, score = finish time (epoch ms)
    failed      zset     failed ids, score = finish time (epoch ms)
    workers     zset     worker ids, score = last heartbeat (epoch ms)
    seq         string   monotonically increasing enqueue sequence

State transitions run as WATCH/MULTI transactions on the job hash, so a
concurrent ``remove`` and ``fetch_next`` on the same entry cannot both win.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Awaitable, Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from diviner.core.constants import LIVE_STATES, JobState
from diviner.core.exceptions import QueueUnavailable
from diviner.queue.base import JobHandle, JobQueue
from diviner.queue.options import (
    COMPLETED_RETENTION_SECONDS,
    FAILED_RETENTION_SECONDS,
    REMOVED_RETENTION_SECONDS,
    JobOptions,
)

logger = logging.getLogger("diviner.queue.redis")

T = TypeVar("T")

_PRIORITY_WEIGHT = 1_000_000_000_000

_STATE_SETS = {
    JobState.WAITING: "wait",
    JobState.DELAYED: "delayed",
    JobState.ACTIVE: "active",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}

_RETENTION = {
    JobState.COMPLETED: COMPLETED_RETENTION_SECONDS,
    JobState.FAILED: FAILED_RETENTION_SECONDS,
    JobState.REMOVED: REMOVED_RETENTION_SECONDS,
}

# A transition decides from the current job what to return and, optionally,
# which writes to queue inside MULTI.
Writes = Callable[[Any], None]
Decision = tuple[T, Writes | None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _iso(moment: datetime | None) -> str:
    return moment.isoformat() if moment is not None else ""


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def encode_job(job: JobHandle) -> dict[str, str]:
    """Flatten a :class:`JobHandle` into string hash fields."""
    return {
        "name": job.name,
        "data": json.dumps(job.data),
        "state": str(job.state),
        "options": json.dumps(job.options.to_dict()),
        "attempts_made": str(job.attempts_made),
        "created_at": _iso(job.created_at),
        "processed_at": _iso(job.processed_at),
        "finished_at": _iso(job.finished_at),
        "ready_at": _iso(job.ready_at),
        "failed_reason": job.failed_reason or "",
        "return_value": json.dumps(job.return_value, default=str),
        "worker_id": job.worker_id or "",
    }


def decode_job(queue: str, job_id: str, raw: dict[str, str]) -> JobHandle:
    """Rebuild a :class:`JobHandle` from its hash fields."""
    return JobHandle(
        job_id=job_id,
        queue=queue,
        name=raw.get("name", ""),
        data=json.loads(raw.get("data") or "{}"),
        state=JobState(raw["state"]),
        options=JobOptions.from_dict(json.loads(raw.get("options") or "{}")),
        attempts_made=int(raw.get("attempts_made") or 0),
        created_at=_parse_dt(raw.get("created_at")),
        processed_at=_parse_dt(raw.get("processed_at")),
        finished_at=_parse_dt(raw.get("finished_at")),
        ready_at=_parse_dt(raw.get("ready_at")),
        failed_reason=raw.get("failed_reason") or None,
        return_value=json.loads(raw.get("return_value") or "null"),
        worker_id=raw.get("worker_id") or None,
    )


@contextlib.contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise QueueUnavailable(f"Redis queue backend unavailable during {operation}: {exc}") from exc


class RedisJobQueue(JobQueue):
    """Redis-backed job queue.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
        prefix: Key namespace shared by every queue of this deployment.
        worker_ttl: Seconds after which a silent worker stops counting.
        client: An existing ``redis.asyncio.Redis`` client to use instead of
            connecting to *redis_url*.  It must decode responses.
        clock: Returns the current aware datetime.  Defaults to UTC now.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "diviner",
        worker_ttl: int = 30,
        client: aioredis.Redis | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client: aioredis.Redis = client or aioredis.from_url(
            redis_url, decode_responses=True
        )
        self._prefix = prefix
        self._worker_ttl = worker_ttl
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def key(self, queue: str, suffix: str) -> str:
        return f"{self._prefix}:queue:{queue}:{suffix}"

    def job_key(self, queue: str, job_id: str) -> str:
        return self.key(queue, f"job:{job_id}")

    def _state_key(self, queue: str, state: JobState) -> str | None:
        suffix = _STATE_SETS.get(state)
        return self.key(queue, suffix) if suffix else None

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
        with _translate_errors("enqueue"):
            job_id = opts.job_id or str(await self._client.incr(self.key(queue, "ids")))

            async def decide(pipe: Any, current: JobHandle | None) -> Decision[JobHandle]:
                if current is not None and current.state in LIVE_STATES:
                    logger.debug("Job %s already live in %s, skipping enqueue", job_id, queue)
                    return current, None

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
                seq = await pipe.incr(self.key(queue, "seq"))
                previous = current.state if current is not None else None

                def writes(p: Any) -> None:
                    key = self.job_key(queue, job_id)
                    p.delete(key)
                    self._queue_move(p, queue, job_id, previous, job, seq)

                return job, writes

            return await self._transition(queue, job_id, decide)

    async def get_job(self, queue: str, job_id: str) -> JobHandle | None:
        with _translate_errors("get_job"):
            raw = await self._client.hgetall(self.job_key(queue, job_id))
        return decode_job(queue, job_id, raw) if raw else None

    async def remove(self, queue: str, job_id: str) -> bool:
        async def decide(pipe: Any, current: JobHandle | None) -> Decision[bool]:
            if current is None or current.state not in (JobState.WAITING, JobState.DELAYED):
                return False, None
            previous = current.state
            current.state = JobState.REMOVED
            current.finished_at = self._clock()

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, previous, current)

            return True, writes

        with _translate_errors("remove"):
            return await self._transition(queue, job_id, decide)

    async def retry(self, queue: str, job_id: str) -> bool:
        async def decide(pipe: Any, current: JobHandle | None) -> Decision[bool]:
            if current is None or current.state != JobState.FAILED:
                return False, None
            current.state = JobState.WAITING
            current.attempts_made = 0
            current.failed_reason = None
            current.finished_at = None
            current.processed_at = None
            current.worker_id = None
            seq = await pipe.incr(self.key(queue, "seq"))

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, JobState.FAILED, current, seq)

            return True, writes

        with _translate_errors("retry"):
            return await self._transition(queue, job_id, decide)

    async def move_to_failed(self, queue: str, job_id: str, reason: str) -> bool:
        async def decide(pipe: Any, current: JobHandle | None) -> Decision[bool]:
            if current is None or current.state not in LIVE_STATES:
                return False, None
            previous = current.state
            current.state = JobState.FAILED
            current.failed_reason = reason
            current.finished_at = self._clock()

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, previous, current)

            return True, writes

        with _translate_errors("move_to_failed"):
            return await self._transition(queue, job_id, decide)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def counts_by_state(self, queue: str) -> dict[JobState, int]:
        states = list(_STATE_SETS)
        with _translate_errors("counts_by_state"):
            await self._prune(queue)
            async with self._client.pipeline(transaction=False) as pipe:
                for state in states:
                    pipe.zcard(self.key(queue, _STATE_SETS[state]))
                results = await pipe.execute()
        return {state: int(count) for state, count in zip(states, results, strict=True)}

    async def list_jobs(
        self, queue: str, state: JobState, limit: int = 100
    ) -> list[JobHandle]:
        """Return up to *limit* entries in *state*.

        Removed entries are not indexed, so ``JobState.REMOVED`` always
        yields an empty list.
        """
        set_key = self._state_key(queue, state)
        if set_key is None:
            return []
        jobs: list[JobHandle] = []
        with _translate_errors("list_jobs"):
            job_ids = await self._client.zrange(set_key, 0, limit - 1)
            for job_id in job_ids:
                raw = await self._client.hgetall(self.job_key(queue, job_id))
                if raw:
                    jobs.append(decode_job(queue, job_id, raw))
        return jobs

    async def list_workers(self, queue: str) -> int:
        cutoff = _ms(self._clock()) - self._worker_ttl * 1000
        workers_key = self.key(queue, "workers")
        with _translate_errors("list_workers"):
            await self._client.zremrangebyscore(workers_key, "-inf", cutoff)
            return int(await self._client.zcard(workers_key))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def fetch_next(self, queue: str, worker_id: str) -> JobHandle | None:
        await self.promote_delayed(queue)
        wait_key = self.key(queue, "wait")

        with _translate_errors("fetch_next"):
            while True:
                head = await self._client.zrange(wait_key, 0, 0)
                if not head:
                    return None
                job = await self._transition(
                    queue, head[0], self._claim(queue, head[0], worker_id), also_watch=(wait_key,)
                )
                if job is not None:
                    return job

    def _claim(
        self, queue: str, job_id: str, worker_id: str
    ) -> Callable[[Any, JobHandle | None], Awaitable[Decision[JobHandle | None]]]:
        """Build the decision that moves the head of the wait set to active."""
        wait_key = self.key(queue, "wait")

        async def decide(pipe: Any, current: JobHandle | None) -> Decision[JobHandle | None]:
            if current is None or current.state != JobState.WAITING:
                # Index entry outlived its job; drop it.
                return None, lambda p: p.zrem(wait_key, job_id)
            current.state = JobState.ACTIVE
            current.attempts_made += 1
            current.processed_at = self._clock()
            current.worker_id = worker_id

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, JobState.WAITING, current)

            return current, writes

        return decide

    async def complete(self, queue: str, job_id: str, result: Any = None) -> bool:
        async def decide(pipe: Any, current: JobHandle | None) -> Decision[bool]:
            if current is None or current.state != JobState.ACTIVE:
                return False, None
            current.state = JobState.COMPLETED
            current.return_value = result
            current.finished_at = self._clock()

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, JobState.ACTIVE, current)

            return True, writes

        with _translate_errors("complete"):
            return await self._transition(queue, job_id, decide)

    async def fail(self, queue: str, job_id: str, reason: str) -> JobState | None:
        async def decide(pipe: Any, current: JobHandle | None) -> Decision[JobState | None]:
            if current is None or current.state != JobState.ACTIVE:
                return None, None
            current.failed_reason = reason
            seq: int | None = None
            if current.attempts_made >= current.options.attempts:
                current.state = JobState.FAILED
                current.finished_at = self._clock()
            else:
                current.worker_id = None
                backoff = current.options.backoff
                delay = backoff.delay_for(current.attempts_made) if backoff else 0.0
                if delay > 0:
                    current.state = JobState.DELAYED
                    current.ready_at = self._clock() + timedelta(seconds=delay)
                else:
                    current.state = JobState.WAITING
                    seq = await pipe.incr(self.key(queue, "seq"))

            def writes(p: Any) -> None:
                self._queue_move(p, queue, job_id, JobState.ACTIVE, current, seq)

            return current.state, writes

        with _translate_errors("fail"):
            return await self._transition(queue, job_id, decide)

    async def promote_delayed(self, queue: str) -> int:
        now = self._clock()

        async def decide(pipe: Any, current: JobHandle | None) -> Decision[bool]:
            if (
                current is None
                or current.state != JobState.DELAYED
                or (current.ready_at is not None and current.ready_at > now)
            ):
                return False, None
            current.state = JobState.WAITING
            current.ready_at = None
            seq = await pipe.incr(self.key(queue, "seq"))

            def writes(p: Any) -> None:
                self._queue_move(p, queue, current.job_id, JobState.DELAYED, current, seq)

            return True, writes

        promoted = 0
        with _translate_errors("promote_delayed"):
            due = await self._client.zrangebyscore(self.key(queue, "delayed"), "-inf", _ms(now))
            for job_id in due:
                if await self._transition(queue, job_id, decide):
                    promoted += 1
        return promoted

    async def register_worker(self, queue: str, worker_id: str) -> None:
        with _translate_errors("register_worker"):
            await self._client.zadd(self.key(queue, "workers"), {worker_id: _ms(self._clock())})

    async def unregister_worker(self, queue: str, worker_id: str) -> None:
        with _translate_errors("unregister_worker"):
            await self._client.zrem(self.key(queue, "workers"), worker_id)

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        queue: str,
        job_id: str,
        decide: Callable[[Any, JobHandle | None], Awaitable[Decision[T]]],
        *,
        also_watch: tuple[str, ...] = (),
    ) -> T:
        """Read a job under WATCH, let *decide* pick the writes, commit atomically.

        Retries from the top when another client touched the job hash or any
        key in *also_watch*.
        """
        key = self.job_key(queue, job_id)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key, *also_watch)
                    raw = await pipe.hgetall(key)
                    current = decode_job(queue, job_id, raw) if raw else None
                    outcome, writes = await decide(pipe, current)
                    if writes is None:
                        await pipe.unwatch()
                        return outcome
                    pipe.multi()
                    writes(pipe)
                    await pipe.execute()
                    return outcome
                except WatchError:
                    logger.debug("Job %s in %s changed concurrently, retrying", job_id, queue)
                    continue

    def _queue_move(
        self,
        pipe: Any,
        queue: str,
        job_id: str,
        previous: JobState | None,
        job: JobHandle,
        seq: int | None = None,
    ) -> None:
        """Queue the hash update and state-set move for *job* on *pipe*."""
        key = self.job_key(queue, job_id)
        pipe.hset(key, mapping=encode_job(job))

        old_set = self._state_key(queue, previous) if previous is not None else None
        if old_set is not None:
            pipe.zrem(old_set, job_id)

        new_set = self._state_key(queue, job.state)
        if job.state == JobState.WAITING:
            score = job.options.priority * _PRIORITY_WEIGHT + (seq or 0)
        elif job.state == JobState.DELAYED and job.ready_at is not None:
            score = _ms(job.ready_at)
        else:
            score = _ms(job.finished_at or job.processed_at or self._clock())
        if new_set is not None:
            pipe.zadd(new_set, {job_id: score})

        retention = _RETENTION.get(job.state)
        if retention is not None:
            pipe.expire(key, retention)
        else:
            pipe.persist(key)

    async def _prune(self, queue: str) -> None:
        """Drop index entries whose job hashes have expired."""
        now_ms = _ms(self._clock())
        for state in (JobState.COMPLETED, JobState.FAILED):
            cutoff = now_ms - _RETENTION[state] * 1000
            await self._client.zremrangebyscore(self.key(queue, _STATE_SETS[state]), "-inf", cutoff)
