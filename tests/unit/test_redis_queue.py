# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the Redis job queue backend against an in-test fake client."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from diviner.core.constants import JobState
from diviner.core.exceptions import QueueUnavailable
from diviner.queue.base import JobHandle
from diviner.queue.options import DEFAULT_JOB_OPTIONS, Backoff, JobOptions
from diviner.queue.redis import RedisJobQueue, decode_job, encode_job

Q = "scan-jobs"


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the queue backend.

    Every write bumps a per-key version so pipelines can honour WATCH.
    Callables in ``before_exec`` run, one per transaction, right before a
    pipeline commits.
    """

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.versions: dict[str, int] = {}
        self.before_exec: list[Callable[[], Awaitable[None]]] = []
        self.aborted = 0

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    async def incr(self, key: str) -> int:
        self._touch(key)
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        self._touch(key)
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def delete(self, key: str) -> int:
        self._touch(key)
        self.ttls.pop(key, None)
        return 1 if self.hashes.pop(key, None) is not None else 0

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def persist(self, key: str) -> bool:
        return self.ttls.pop(key, None) is not None

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self._touch(key)
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrem(self, key: str, *members: str) -> int:
        self._touch(key)
        zset = self.zsets.get(key, {})
        return sum(1 for m in members if zset.pop(m, None) is not None)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    def _sorted(self, key: str) -> list[tuple[str, float]]:
        return sorted(self.zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]))

    async def zrange(self, key: str, start: int, end: int) -> list[str]:
        members = [m for m, _ in self._sorted(key)]
        return members[start : end + 1]

    async def zrangebyscore(self, key: str, low: Any, high: Any) -> list[str]:
        return [m for m, s in self._sorted(key) if s <= float(high)]

    async def zremrangebyscore(self, key: str, low: Any, high: Any) -> int:
        doomed = [m for m, s in self._sorted(key) if s <= float(high)]
        if doomed:
            self._touch(key)
        for member in doomed:
            del self.zsets[key][member]
        return len(doomed)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


class FakePipeline:
    """Runs commands immediately while watching, buffers them otherwise."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._immediate = False
        self._buffer: list[tuple[str, tuple, dict]] = []
        self._watched: dict[str, int] = {}

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._buffer.clear()
        self._watched.clear()

    async def watch(self, *keys: str) -> None:
        self._immediate = True
        self._watched = {key: self._redis.versions.get(key, 0) for key in keys}

    async def unwatch(self) -> None:
        self._immediate = False
        self._watched.clear()

    def multi(self) -> None:
        self._immediate = False

    async def execute(self) -> list[Any]:
        buffered, self._buffer = self._buffer, []
        watched, self._watched = self._watched, {}
        if self._redis.before_exec:
            await self._redis.before_exec.pop(0)()
        if any(self._redis.versions.get(key, 0) != seen for key, seen in watched.items()):
            self._redis.aborted += 1
            raise WatchError("Watched variable changed.")
        return [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in buffered]

    def __getattr__(self, name: str) -> Any:
        target = getattr(self._redis, name)

        def call(*args: Any, **kwargs: Any) -> Any:
            if self._immediate:
                return target(*args, **kwargs)
            self._buffer.append((name, args, kwargs))
            return self

        return call


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_queue(fake_redis: FakeRedis, clock) -> RedisJobQueue:
    return RedisJobQueue(client=fake_redis, prefix="test", clock=clock)


class TestEncoding:
    def test_key_layout(self, redis_queue: RedisJobQueue) -> None:
        assert redis_queue.job_key(Q, "scan-1") == "test:queue:scan-jobs:job:scan-1"
        assert redis_queue.key(Q, "wait") == "test:queue:scan-jobs:wait"

    def test_hash_fields_survive_decoding(self, clock) -> None:
        job = JobHandle(
            job_id="scan-1",
            queue=Q,
            name="process-scan",
            data={"scan_id": "1", "branches": ["main"]},
            state=JobState.DELAYED,
            options=DEFAULT_JOB_OPTIONS.with_job_id("scan-1"),
            attempts_made=2,
            created_at=clock(),
            ready_at=clock() + timedelta(seconds=10),
            failed_reason="boom",
        )
        raw = encode_job(job)
        assert all(isinstance(v, str) for v in raw.values())

        decoded = decode_job(Q, "scan-1", raw)
        assert decoded.data == job.data
        assert decoded.options.backoff == Backoff(type="exponential", delay=5.0)
        assert decoded.ready_at == job.ready_at
        assert decoded.processed_at is None
        assert decoded.worker_id is None


class TestTransitions:
    async def test_enqueue_indexes_waiting_job(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis
    ) -> None:
        job = await redis_queue.enqueue(Q, "process-scan", {"scan_id": "1"}, JobOptions(job_id="scan-1"))
        assert job.state == JobState.WAITING
        assert "scan-1" in fake_redis.zsets["test:queue:scan-jobs:wait"]
        stored = await redis_queue.get_job(Q, "scan-1")
        assert stored is not None and stored.data == {"scan_id": "1"}

    async def test_live_duplicate_is_a_noop(self, redis_queue: RedisJobQueue) -> None:
        opts = JobOptions(job_id="scan-1")
        await redis_queue.enqueue(Q, "process-scan", {"n": 1}, opts)
        again = await redis_queue.enqueue(Q, "process-scan", {"n": 2}, opts)
        assert again.data == {"n": 1}
        counts = await redis_queue.counts_by_state(Q)
        assert counts[JobState.WAITING] == 1

    async def test_priority_then_fifo(self, redis_queue: RedisJobQueue) -> None:
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="late", priority=2))
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="a", priority=1))
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="b", priority=1))
        order = [(await redis_queue.fetch_next(Q, "w")).job_id for _ in range(3)]
        assert order == ["a", "b", "late"]
        assert await redis_queue.fetch_next(Q, "w") is None

    async def test_complete_sets_retention(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis
    ) -> None:
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="j1"))
        fetched = await redis_queue.fetch_next(Q, "w1")
        assert fetched.attempts_made == 1 and fetched.worker_id == "w1"

        assert await redis_queue.complete(Q, "j1", {"ok": True})
        job = await redis_queue.get_job(Q, "j1")
        assert job.state == JobState.COMPLETED
        assert job.return_value == {"ok": True}
        assert fake_redis.ttls["test:queue:scan-jobs:job:j1"] == 86_400
        assert "j1" not in fake_redis.zsets["test:queue:scan-jobs:active"]

    async def test_failed_attempt_is_delayed_then_promoted(
        self, redis_queue: RedisJobQueue, clock
    ) -> None:
        await redis_queue.enqueue(Q, "t", {}, DEFAULT_JOB_OPTIONS.with_job_id("j1"))
        await redis_queue.fetch_next(Q, "w")
        assert await redis_queue.fail(Q, "j1", "boom") == JobState.DELAYED
        assert await redis_queue.fetch_next(Q, "w") is None

        clock.advance(seconds=5)
        again = await redis_queue.fetch_next(Q, "w")
        assert again is not None and again.attempts_made == 2

    async def test_remove_and_retry(self, redis_queue: RedisJobQueue) -> None:
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="gone"))
        assert await redis_queue.remove(Q, "gone")
        assert await redis_queue.get_state(Q, "gone") == JobState.REMOVED
        assert await redis_queue.fetch_next(Q, "w") is None

        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="j1"))
        await redis_queue.fetch_next(Q, "w")
        assert await redis_queue.move_to_failed(Q, "j1", "cancelled")
        assert await redis_queue.retry(Q, "j1")
        job = await redis_queue.get_job(Q, "j1")
        assert job.state == JobState.WAITING and job.attempts_made == 0

    async def test_workers(self, redis_queue: RedisJobQueue, clock) -> None:
        await redis_queue.register_worker(Q, "w1")
        assert await redis_queue.list_workers(Q) == 1
        clock.advance(seconds=60)
        assert await redis_queue.list_workers(Q) == 0


class TestAtomicity:
    WAIT = "test:queue:scan-jobs:wait"

    async def test_failed_claim_leaves_job_fetchable(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis
    ) -> None:
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="scan-1"))

        async def connection_drops() -> None:
            raise RedisConnectionError("connection reset")

        fake_redis.before_exec.append(connection_drops)
        with pytest.raises(QueueUnavailable):
            await redis_queue.fetch_next(Q, "w1")

        assert await redis_queue.get_state(Q, "scan-1") == JobState.WAITING
        assert "scan-1" in fake_redis.zsets[self.WAIT]
        job = await redis_queue.fetch_next(Q, "w1")
        assert job is not None
        assert job.job_id == "scan-1" and job.attempts_made == 1

    async def test_stale_wait_entry_is_dropped(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis
    ) -> None:
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="scan-1"))
        fake_redis.zsets[self.WAIT]["ghost"] = 0

        job = await redis_queue.fetch_next(Q, "w1")

        assert job is not None and job.job_id == "scan-1"
        assert "ghost" not in fake_redis.zsets[self.WAIT]

    async def test_racing_enqueue_of_same_id_keeps_one_job(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis, clock
    ) -> None:
        rival = RedisJobQueue(client=fake_redis, prefix="test", clock=clock)

        async def rival_enqueues() -> None:
            await rival.enqueue(Q, "t", {"by": "rival"}, JobOptions(job_id="scan-1"))

        fake_redis.before_exec.append(rival_enqueues)
        job = await redis_queue.enqueue(Q, "t", {"by": "us"}, JobOptions(job_id="scan-1"))

        assert fake_redis.aborted == 1
        assert job.data == {"by": "rival"}
        assert list(fake_redis.zsets[self.WAIT]) == ["scan-1"]
        counts = await redis_queue.counts_by_state(Q)
        assert counts[JobState.WAITING] == 1

    async def test_racing_fetch_claims_job_once(
        self, redis_queue: RedisJobQueue, fake_redis: FakeRedis, clock
    ) -> None:
        rival = RedisJobQueue(client=fake_redis, prefix="test", clock=clock)
        await redis_queue.enqueue(Q, "t", {}, JobOptions(job_id="scan-1"))

        async def rival_fetches() -> None:
            await rival.fetch_next(Q, "w2")

        fake_redis.before_exec.append(rival_fetches)
        assert await redis_queue.fetch_next(Q, "w1") is None

        assert fake_redis.aborted == 1
        job = await redis_queue.get_job(Q, "scan-1")
        assert job.state == JobState.ACTIVE
        assert job.worker_id == "w2" and job.attempts_made == 1


class TestErrors:
    async def test_ping_reports_unreachable(self) -> None:
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")
        assert await RedisJobQueue(client=client).ping() is False

    async def test_errors_become_queue_unavailable(self) -> None:
        client = AsyncMock()
        client.hgetall.side_effect = RedisConnectionError("refused")
        with pytest.raises(QueueUnavailable):
            await RedisJobQueue(client=client).get_job(Q, "j1")

    async def test_register_worker(self, clock) -> None:
        client = AsyncMock()
        await RedisJobQueue(client=client, prefix="p", clock=clock).register_worker(Q, "w1")
        client.zadd.assert_awaited_once()
        key, mapping = client.zadd.await_args.args
        assert key == "p:queue:scan-jobs:workers"
        assert list(mapping) == ["w1"]
