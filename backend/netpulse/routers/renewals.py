"""Router for triggering the subscription renewal batch manually."""

from __future__ import annotations

from datetime import timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_access_server, get_notification_clients
from ..services import (
    AccessServerClient,
    NetworkAccessProvisioner,
    NotificationService,
    RenewalProcessor,
)
from ..services.scheduler_monitor import JOB_RENEWALS, SchedulerMonitor

router = APIRouter()


@router.post("/run", response_model=schemas.RenewalSummaryRead)
def run_renewals(
    payload: schemas.RenewalRunRequest | None = None,
    db: Session = Depends(get_db),
    access_server: AccessServerClient = Depends(get_access_server),
    notification_clients=Depends(get_notification_clients),
) -> schemas.RenewalSummaryRead:
    payload = payload or schemas.RenewalRunRequest()
    reference_time = payload.reference_time
    if reference_time is not None and reference_time.tzinfo is None:
        reference_time = reference_time.replace(tzinfo=timezone.utc)
    processor = RenewalProcessor(
        db,
        NetworkAccessProvisioner(db, access_server),
        NotificationService(db, notification_clients),
    )
    summary = processor.process_renewals(
        reference_time=reference_time, client_ids=payload.client_ids
    )
    SchedulerMonitor.record_summary(JOB_RENEWALS, summary.to_dict())
    return schemas.RenewalSummaryRead(**summary.to_dict())
