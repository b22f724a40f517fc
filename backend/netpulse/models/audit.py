"""Append-only audit trail of network access synchronisation."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Column, Enum as SAEnum, Index, JSON, String, Text, func
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON

from ..database import Base
from ..db_types import GUID, UTCDateTime


class SyncAction(str, enum.Enum):
    """Provisioning actions recorded in the audit trail."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    UPDATE_QOS = "update_qos"
    CLIENT_CALLBACK = "client_callback"
    ROUTER_CALLBACK = "router_callback"


SYNC_ACTION_ENUM = SAEnum(
    SyncAction,
    name="sync_action_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class SyncAuditEntry(Base):
    """Outcome of a provisioning push or an access server callback.

    Rows are written once and never updated. Client and router ids are plain
    columns, without foreign keys, so the history survives account removal.
    """

    __tablename__ = "sync_audit_entries"

    id = Column("entry_id", GUID(), primary_key=True, default=uuid.uuid4)
    client_id = Column(GUID(), nullable=True)
    router_id = Column(GUID(), nullable=True)
    action = Column(SYNC_ACTION_ENUM, nullable=False)
    payload = Column(JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=True)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    source = Column(String(32), nullable=False, default="provisioner")
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())


Index("sync_audit_entries_client_idx", SyncAuditEntry.client_id, SyncAuditEntry.created_at)
Index("sync_audit_entries_router_idx", SyncAuditEntry.router_id)
