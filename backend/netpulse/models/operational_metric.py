"""Operational metric events emitted by batch jobs and sync pushes."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, JSON, Numeric, String, func
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON

from ..database import Base
from ..db_types import GUID, UTCDateTime


class OperationalMetricEvent(Base):
    """Timing and outcome of one renewal batch or access server push."""

    __tablename__ = "operational_metric_events"

    id = Column("event_id", GUID(), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(120), nullable=False, index=True)
    outcome = Column(String(32), nullable=False, index=True)
    duration_ms = Column(Numeric(14, 3), nullable=True)
    tags = Column("labels", JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=False, default=dict)
    details = Column("details", JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=True)
    created_at = Column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
