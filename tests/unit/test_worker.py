# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the queue worker: outcomes, timeouts, and cancellation."""

from __future__ import annotations

import asyncio

from diviner.core.constants import JobState, QueueName
from diviner.queue.base import JobHandle
from diviner.queue.memory import MemoryJobQueue
from diviner.queue.options import DEFAULT_JOB_OPTIONS, JobOptions
from diviner.queue.service import QueueService
from diviner.queue.worker import JobContext, QueueWorker
from diviner.signals.memory import MemorySignalBus

Q = QueueName.SCAN


def _worker(job_queue: MemoryJobQueue, signal_bus: MemorySignalBus, handler) -> QueueWorker:
    return QueueWorker(job_queue, signal_bus, Q, handler, worker_id="worker-test", poll_interval=0.01)


class TestProcessing:
    async def test_success_stores_return_value(
        self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus
    ) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> dict:
            return {"scanned": job.data["scan_id"]}

        await job_queue.enqueue(Q, "process-scan", {"scan_id": "1"}, JobOptions(job_id="scan-1"))
        worker = _worker(job_queue, signal_bus, handler)

        assert await worker.run_once() is True
        job = await job_queue.get_job(Q, "scan-1")
        assert job.state == JobState.COMPLETED
        assert job.return_value == {"scanned": "1"}

    async def test_empty_queue(self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> None:
            raise AssertionError("should not run")

        assert await _worker(job_queue, signal_bus, handler).run_once() is False

    async def test_exception_consumes_an_attempt(
        self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus
    ) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> None:
            raise RuntimeError("clone failed")

        await job_queue.enqueue(Q, "process-scan", {"scan_id": "1"}, DEFAULT_JOB_OPTIONS.with_job_id("scan-1"))
        await _worker(job_queue, signal_bus, handler).run_once()

        job = await job_queue.get_job(Q, "scan-1")
        assert job.state == JobState.DELAYED
        assert job.failed_reason == "clone failed"

    async def test_timeout(self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> None:
            await asyncio.sleep(10)

        await job_queue.enqueue(
            Q, "process-scan", {"scan_id": "1"}, JobOptions(job_id="scan-1", timeout=0.05)
        )
        await _worker(job_queue, signal_bus, handler).run_once()

        job = await job_queue.get_job(Q, "scan-1")
        assert job.state == JobState.FAILED
        assert job.failed_reason == "timeout"


class TestCancellation:
    async def test_cancel_signal_stops_running_scan(
        self,
        job_queue: MemoryJobQueue,
        signal_bus: MemorySignalBus,
        queue_service: QueueService,
    ) -> None:
        started = asyncio.Event()
        observed: list[bool] = []

        async def handler(job: JobHandle, ctx: JobContext) -> None:
            started.set()
            try:
                await asyncio.sleep(10)
            finally:
                observed.append(ctx.cancelled)

        await job_queue.enqueue(Q, "process-scan", {"scan_id": "42"}, JobOptions(job_id="scan-42"))
        worker = _worker(job_queue, signal_bus, handler)
        await worker.start()
        try:
            await asyncio.wait_for(started.wait(), timeout=1)
            assert worker.active_scan_ids == ["42"]

            assert await queue_service.cancel_scan("42") is True
            for _ in range(50):
                if not worker.active_scan_ids:
                    break
                await asyncio.sleep(0.01)
        finally:
            await worker.stop()

        assert observed == [True]
        assert worker.active_scan_ids == []
        job = await job_queue.get_job(Q, "scan-42")
        assert job.state == JobState.FAILED
        assert job.failed_reason == "cancelled"

    async def test_foreign_scan_is_ignored(
        self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus
    ) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> None:
            return None

        worker = _worker(job_queue, signal_bus, handler)
        await worker.handle_cancellation("not-mine")
        assert worker.active_scan_ids == []


class TestLifecycle:
    async def test_start_registers_and_stop_unregisters(
        self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus
    ) -> None:
        async def handler(job: JobHandle, ctx: JobContext) -> None:
            return None

        worker = _worker(job_queue, signal_bus, handler)
        await worker.start()
        assert worker.running
        assert await job_queue.list_workers(Q) == 1
        assert await signal_bus.publish("scan-cancellation", "x") == 1

        await worker.stop()
        assert not worker.running
        assert await job_queue.list_workers(Q) == 0
        assert await signal_bus.publish("scan-cancellation", "x") == 0

    async def test_loop_drains_queue(
        self, job_queue: MemoryJobQueue, signal_bus: MemorySignalBus
    ) -> None:
        done = asyncio.Event()
        seen: list[str] = []

        async def handler(job: JobHandle, ctx: JobContext) -> None:
            seen.append(job.job_id)
            if len(seen) == 2:
                done.set()

        for i in range(2):
            await job_queue.enqueue(Q, "process-scan", {"scan_id": str(i)}, JobOptions(job_id=f"scan-{i}"))
        worker = _worker(job_queue, signal_bus, handler)
        await worker.start()
        try:
            await asyncio.wait_for(done.wait(), timeout=1)
        finally:
            await worker.stop()
        assert seen == ["scan-0", "scan-1"]
