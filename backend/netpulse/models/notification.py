"""Delivery log for outbound subscriber notifications."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Column,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    func,
)

from ..database import Base
from ..db_types import GUID, UTCDateTime


class NotificationType(str, enum.Enum):
    RENEWAL_SUCCESS = "renewal_success"
    TOPUP_REMINDER = "topup_reminder"
    SERVICE_SUSPENDED = "service_suspended"


NOTIFICATION_TYPE_ENUM = SAEnum(
    NotificationType,
    name="notification_type_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class DeliveryStatus(str, enum.Enum):
    """Delivery status reported by the outbound messaging provider."""

    SENT = "sent"
    FAILED = "failed"


DELIVERY_STATUS_ENUM = SAEnum(
    DeliveryStatus,
    name="notification_delivery_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class NotificationLog(Base):
    """Outcome of each notification attempt."""

    __tablename__ = "notification_logs"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    client_id = Column(GUID(), nullable=True)
    notification_type = Column(NOTIFICATION_TYPE_ENUM, nullable=False)
    delivery_status = Column(DELIVERY_STATUS_ENUM, nullable=False)
    channel = Column(String(50), nullable=False)
    destination = Column(String(255), nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    response_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    payload = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())


Index("notification_logs_client_idx", NotificationLog.client_id)
Index("notification_logs_created_at_idx", NotificationLog.created_at)
