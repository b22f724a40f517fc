"""Remote routers (NAS) that enforce subscriber sessions."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Column, Enum as SAEnum, JSON, String, Text, func
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON

from ..database import Base
from ..db_types import GUID, INET, UTCDateTime


class RouterConnectionStatus(str, enum.Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    CONFIGURATION_FAILED = "configuration_failed"


ROUTER_CONNECTION_STATUS_ENUM = SAEnum(
    RouterConnectionStatus,
    name="router_connection_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class AccessRouter(Base):
    """Router registered with the access server, with its last diagnostics."""

    __tablename__ = "access_routers"

    id = Column("router_id", GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False)
    ip_address = Column(INET(), nullable=True)
    connection_status = Column(
        ROUTER_CONNECTION_STATUS_ENUM,
        nullable=False,
        default=RouterConnectionStatus.PENDING,
    )
    sync_status = Column(String(32), nullable=True)
    last_sync_at = Column(UTCDateTime(), nullable=True)
    last_error = Column(Text, nullable=True)
    last_diagnostics = Column(JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
