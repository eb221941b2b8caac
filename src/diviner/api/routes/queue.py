# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Queue inspection and maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from diviner.api.deps import queue_service_dep
from diviner.queue.service import QueueService

router = APIRouter()


class QueueStatsResponse(BaseModel):
    queues: dict[str, dict[str, int]]


class QueueJobResponse(BaseModel):
    job_id: str
    name: str
    state: str
    attempts_made: int
    created_at: str
    failed_reason: str | None = None


class RetryFailedResponse(BaseModel):
    retried: int


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def queue_stats(
    queue_service: QueueService = Depends(queue_service_dep),
) -> QueueStatsResponse:
    """Per-queue job counts by state."""
    return QueueStatsResponse(queues=await queue_service.get_queue_stats())


@router.get("/queue/jobs", response_model=list[QueueJobResponse])
async def queue_jobs(
    state: str = Query("waiting", pattern="^(waiting|active)$"),
    limit: int = Query(100, ge=1, le=1000),
    queue_service: QueueService = Depends(queue_service_dep),
) -> list[QueueJobResponse]:
    """List waiting or active scan jobs."""
    if state == "active":
        jobs = await queue_service.get_active_jobs(limit)
    else:
        jobs = await queue_service.get_waiting_jobs(limit)
    return [
        QueueJobResponse(
            job_id=job.job_id,
            name=job.name,
            state=str(job.state),
            attempts_made=job.attempts_made,
            created_at=job.created_at.isoformat(),
            failed_reason=job.failed_reason,
        )
        for job in jobs
    ]


@router.post("/queue/retry-failed", response_model=RetryFailedResponse)
async def retry_failed(
    queue_service: QueueService = Depends(queue_service_dep),
) -> RetryFailedResponse:
    """Move every failed scan job back to waiting."""
    return RetryFailedResponse(retried=await queue_service.retry_failed_jobs())
