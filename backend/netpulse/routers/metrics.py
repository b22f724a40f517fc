"""Router exposing background job health."""

from __future__ import annotations

from fastapi import APIRouter

from .. import schemas
from ..services.scheduler_monitor import SchedulerMonitor

router = APIRouter()


@router.get("/scheduler", response_model=schemas.SchedulerHealthResponse)
def get_scheduler_health() -> schemas.SchedulerHealthResponse:
    snapshot = SchedulerMonitor.snapshot()
    return schemas.SchedulerHealthResponse(
        jobs={name: schemas.SchedulerJobHealth(**status) for name, status in snapshot.items()}
    )
