# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Scan job state and cancellation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from diviner.api.deps import queue_service_dep
from diviner.queue.service import QueueService

router = APIRouter()


class ScanStateResponse(BaseModel):
    scan_id: str
    state: str
    attempts_made: int
    failed_reason: str | None = None


class CancelResponse(BaseModel):
    scan_id: str
    cancelled: bool


@router.get("/scans/{scan_id}/state", response_model=ScanStateResponse)
async def scan_state(
    scan_id: str,
    queue_service: QueueService = Depends(queue_service_dep),
) -> ScanStateResponse:
    job = await queue_service.get_scan_job(scan_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"No queued job for scan {scan_id}")
    return ScanStateResponse(
        scan_id=scan_id,
        state=str(job.state),
        attempts_made=job.attempts_made,
        failed_reason=job.failed_reason,
    )


@router.post("/scans/{scan_id}/cancel", response_model=CancelResponse)
async def cancel_scan(
    scan_id: str,
    queue_service: QueueService = Depends(queue_service_dep),
) -> CancelResponse:
    """Cancel a scan whether it is queued or running."""
    cancelled = await queue_service.cancel_scan(scan_id)
    if not cancelled:
        raise HTTPException(status_code=404, detail=f"No queued job for scan {scan_id}")
    return CancelResponse(scan_id=scan_id, cancelled=True)
