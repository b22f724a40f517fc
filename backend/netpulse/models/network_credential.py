"""Network access credentials mirrored on the remote access server."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, UTCDateTime


class CredentialSyncStatus(str, enum.Enum):
    """Confirmation state of the last push for a credential."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


CREDENTIAL_SYNC_STATUS_ENUM = SAEnum(
    CredentialSyncStatus,
    name="credential_sync_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class NetworkCredential(Base):
    """Login and bandwidth profile of a subscriber. One row per client."""

    __tablename__ = "network_credentials"

    id = Column("credential_id", GUID(), primary_key=True, default=uuid.uuid4)
    client_id = Column(
        GUID(),
        ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    username = Column(String(120), nullable=False, unique=True)
    secret = Column(String(120), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    download_kbps = Column(Integer, nullable=False)
    upload_kbps = Column(Integer, nullable=False)
    session_timeout_sec = Column(Integer, nullable=False)
    idle_timeout_sec = Column(Integer, nullable=False)
    group_name = Column(String(64), nullable=False, default="default")
    sync_status = Column(
        CREDENTIAL_SYNC_STATUS_ENUM,
        nullable=False,
        default=CredentialSyncStatus.PENDING,
    )
    last_synced_at = Column(UTCDateTime(), nullable=True)
    last_sync_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    client = relationship("ClientAccount", back_populates="network_credential")
