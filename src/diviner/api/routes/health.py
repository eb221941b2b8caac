# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from diviner import __version__
from diviner.api.deps import queue_service_dep
from diviner.queue.service import QueueService, QueueStatus

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str


class ReadyResponse(BaseModel):
    status: str
    queue: str
    queues: dict[str, QueueStatus] = {}


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", service="diviner", version=__version__)


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    queue_service: QueueService = Depends(queue_service_dep),
) -> ReadyResponse | JSONResponse:
    report = await queue_service.get_queue_health()
    if report.connected:
        return ReadyResponse(status="ready", queue="connected", queues=report.queues)
    body = ReadyResponse(status="not_ready", queue="disconnected", queues=report.queues)
    return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
