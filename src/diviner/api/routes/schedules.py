# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Per-repository scan schedule endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from diviner.api.deps import schedule_service_dep
from diviner.core.constants import SchedulePreset
from diviner.models.schedule import ScheduleConfig, ScheduleUpdate
from diviner.scheduler.service import ScheduleService

router = APIRouter()


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class ScheduleResponse(BaseModel):
    repository_id: str
    enabled: bool
    cron: str | None
    timezone: str
    preset: SchedulePreset | None
    last_run: str | None
    next_run: str | None


class RunNowResponse(BaseModel):
    repository_id: str
    scan_id: str


def _to_response(repository_id: str, config: ScheduleConfig) -> ScheduleResponse:
    return ScheduleResponse(
        repository_id=repository_id,
        enabled=config.schedule_enabled,
        cron=config.schedule_cron,
        timezone=config.schedule_timezone,
        preset=config.preset,
        last_run=config.last_scheduled_scan.isoformat() if config.last_scheduled_scan else None,
        next_run=config.next_scheduled_scan.isoformat() if config.next_scheduled_scan else None,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/repositories/{repository_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    repository_id: str,
    service: ScheduleService = Depends(schedule_service_dep),
) -> ScheduleResponse:
    return _to_response(repository_id, await service.get_schedule_config(repository_id))


@router.put("/repositories/{repository_id}/schedule", response_model=ScheduleResponse)
async def update_schedule(
    repository_id: str,
    body: ScheduleUpdate,
    service: ScheduleService = Depends(schedule_service_dep),
) -> ScheduleResponse:
    """Change a repository's schedule; the next run is recomputed immediately."""
    config = await service.update_schedule_config(repository_id, body)
    return _to_response(repository_id, config)


@router.post(
    "/repositories/{repository_id}/schedule/run-now",
    response_model=RunNowResponse,
    status_code=202,
)
async def run_now(
    repository_id: str,
    service: ScheduleService = Depends(schedule_service_dep),
) -> RunNowResponse:
    """Dispatch a manual scan of the repository's default branch."""
    scan_id = await service.trigger_immediate_scan(repository_id)
    return RunNowResponse(repository_id=repository_id, scan_id=scan_id)
