# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Queue consumer that runs job handlers and honours cancellation signals.

A worker pulls one job at a time from a single queue.  When a cancellation
message names a scan the worker is currently running, the handler task is
cancelled; messages for scans held elsewhere are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from diviner.core.exceptions import QueueUnavailable
from diviner.queue.base import JobHandle, JobQueue
from diviner.signals.base import SignalBus, Subscription

logger = logging.getLogger("diviner.queue.worker")


class JobContext:
    """Per-job state shared between the worker and the running handler."""

    def __init__(self, job: JobHandle) -> None:
        self.job = job
        self.cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def scan_id(self) -> str | None:
        value = self.job.data.get("scan_id")
        return str(value) if value is not None else None


JobHandler = Callable[[JobHandle, JobContext], Awaitable[Any]]


class QueueWorker:
    """Pull jobs from one queue and run *handler* on each.

    Args:
        job_queue: The queue backend.
        signal_bus: Bus carrying cancellation signals.
        queue_name: Queue to consume.
        handler: Coroutine run per job; its return value is stored on the
            completed entry and any exception fails the attempt.
        worker_id: Identity reported for liveness.  Random when omitted.
        cancellation_channel: Channel carrying scan ids to cancel.
        poll_interval: Seconds to sleep when the queue is empty.
        heartbeat_interval: Seconds between liveness heartbeats.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        signal_bus: SignalBus,
        queue_name: str,
        handler: JobHandler,
        *,
        worker_id: str | None = None,
        cancellation_channel: str = "scan-cancellation",
        poll_interval: float = 1.0,
        heartbeat_interval: float = 10.0,
    ) -> None:
        self._queue = job_queue
        self._bus = signal_bus
        self._queue_name = queue_name
        self._handler = handler
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._channel = cancellation_channel
        self._poll_interval = poll_interval
        self._heartbeat_interval = heartbeat_interval
        self._active: dict[str, tuple[JobContext, asyncio.Task[Any]]] = {}
        self._subscription: Subscription | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_scan_ids(self) -> list[str]:
        return list(self._active)

    async def start(self) -> None:
        if self._running:
            return
        await self._queue.register_worker(self._queue_name, self.worker_id)
        self._subscription = await self._bus.subscribe(self._channel, self.handle_cancellation)
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(), name=f"{self.worker_id}:loop"),
            asyncio.create_task(self._heartbeat(), name=f"{self.worker_id}:heartbeat"),
        ]
        logger.info("Worker %s consuming %s", self.worker_id, self._queue_name)

    async def stop(self) -> None:
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        with contextlib.suppress(QueueUnavailable):
            await self._queue.unregister_worker(self._queue_name, self.worker_id)
        logger.info("Worker %s stopped", self.worker_id)

    async def run_once(self) -> bool:
        """Fetch and process a single job.  Returns ``False`` if none was waiting."""
        job = await self._queue.fetch_next(self._queue_name, self.worker_id)
        if job is None:
            return False
        await self.process(job)
        return True

    async def process(self, job: JobHandle) -> None:
        """Run the handler for an already-active *job* and record the outcome."""
        ctx = JobContext(job)
        key = ctx.scan_id or job.job_id
        task = asyncio.create_task(self._handler(job, ctx))
        self._active[key] = (ctx, task)
        try:
            async with asyncio.timeout(job.options.timeout):
                result = await task
        except asyncio.CancelledError:
            if not ctx.cancelled:
                raise
            logger.info("Job %s cancelled while running", job.job_id)
        except TimeoutError:
            logger.warning("Job %s timed out after %ss", job.job_id, job.options.timeout)
            await self._queue.fail(self._queue_name, job.job_id, "timeout")
        except Exception as exc:
            logger.exception("Job %s failed", job.job_id)
            state = await self._queue.fail(self._queue_name, job.job_id, str(exc))
            logger.debug("Job %s is now %s", job.job_id, state)
        else:
            if not await self._queue.complete(self._queue_name, job.job_id, result):
                logger.warning("Job %s finished but was no longer active", job.job_id)
        finally:
            self._active.pop(key, None)

    async def handle_cancellation(self, scan_id: str) -> None:
        entry = self._active.get(scan_id)
        if entry is None:
            logger.debug("Ignoring cancellation for scan %s not held by %s", scan_id, self.worker_id)
            return
        ctx, task = entry
        ctx.cancel_event.set()
        task.cancel()
        logger.info("Cancelling scan %s on %s", scan_id, self.worker_id)

    async def _loop(self) -> None:
        while self._running:
            try:
                processed = await self.run_once()
            except QueueUnavailable as exc:
                logger.warning("Queue unavailable, backing off: %s", exc)
                processed = False
            except Exception:
                logger.exception("Worker %s iteration failed", self.worker_id)
                processed = False
            if not processed:
                await asyncio.sleep(self._poll_interval)

    async def _heartbeat(self) -> None:
        while self._running:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self._queue.heartbeat(self._queue_name, self.worker_id)
            except QueueUnavailable as exc:
                logger.warning("Heartbeat for %s failed: %s", self.worker_id, exc)
