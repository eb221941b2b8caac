# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""FastAPI dependencies resolving services from the shared runtime."""

from __future__ import annotations

from fastapi import HTTPException

from diviner.core.exceptions import StorageError
from diviner.queue.service import QueueService
from diviner.runtime import Runtime, get_runtime
from diviner.scheduler.service import ScheduleService


def runtime_dep() -> Runtime:
    try:
        return get_runtime()
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def queue_service_dep() -> QueueService:
    return runtime_dep().queue_service


def schedule_service_dep() -> ScheduleService:
    return runtime_dep().schedule_service
