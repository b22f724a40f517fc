"""Persistence of operational metric events for renewal and sync dashboards."""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)

EVENT_SYNC_PUSH = "network_access.sync_push"
EVENT_RENEWAL_BATCH = "renewals.batch"


class MetricOutcome(str):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


class ObservabilityService:
    """Records metric events on a separate session so callers' transactions stay untouched."""

    @staticmethod
    def record_event(
        db: Session,
        event_type: str,
        outcome: str,
        *,
        duration_ms: float | None = None,
        tags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        event = models.OperationalMetricEvent(
            event_type=event_type,
            outcome=outcome,
            duration_ms=Decimal(str(round(duration_ms, 3))) if duration_ms is not None else None,
            tags=tags or {},
            details=metadata or None,
        )
        ObservabilityService._persist(db, event)

    @staticmethod
    def timed_event(db: Session, event_type: str, *, tags: dict[str, Any] | None = None):
        """Context manager measuring the wrapped block.

        The yielded timer exposes ``details`` so the block can attach a summary
        to the recorded event.
        """

        class _Timer:
            def __init__(self) -> None:
                self.details: dict[str, Any] = {}

            def __enter__(self):
                self._start = time.perf_counter()
                return self

            def __exit__(self, exc_type, exc, tb):
                duration = (time.perf_counter() - self._start) * 1000
                outcome = MetricOutcome.ERROR if exc else MetricOutcome.SUCCESS
                details = dict(self.details)
                if exc:
                    details["exception"] = str(exc)
                ObservabilityService.record_event(
                    db,
                    event_type,
                    outcome,
                    duration_ms=duration,
                    tags=tags,
                    metadata=details or None,
                )
                return False

        return _Timer()

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            engine = db.get_bind()
            with Session(bind=engine) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures should not break flows
            LOGGER.exception("Failed to persist operational metric event")
