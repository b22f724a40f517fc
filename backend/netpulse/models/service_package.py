"""Service packages sold to subscribers."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, UTCDateTime

DEFAULT_SESSION_TIMEOUT = 86400
DEFAULT_IDLE_TIMEOUT = 1800
DEFAULT_BILLING_PERIOD_DAYS = 30


class ServicePackage(Base):
    """Bandwidth plan with its price and access server session limits."""

    __tablename__ = "service_packages"
    __table_args__ = (
        CheckConstraint("monthly_rate >= 0", name="service_packages_rate_non_negative"),
        CheckConstraint("billing_period_days > 0", name="service_packages_period_positive"),
    )

    id = Column("package_id", GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    speed = Column(String(32), nullable=False)
    monthly_rate = Column(Numeric(12, 2), nullable=False)
    session_timeout = Column(Integer, nullable=False, default=DEFAULT_SESSION_TIMEOUT)
    idle_timeout = Column(Integer, nullable=False, default=DEFAULT_IDLE_TIMEOUT)
    billing_period_days = Column(Integer, nullable=False, default=DEFAULT_BILLING_PERIOD_DAYS)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())

    clients = relationship("ClientAccount", back_populates="service_package")
