"""Schemas for network access provisioning and access server callbacks."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..models.audit import SyncAction
from ..models.client_account import SubscriptionStatus
from ..models.network_credential import CredentialSyncStatus
from ..models.router import RouterConnectionStatus


class BandwidthRead(BaseModel):
    download_kbps: int
    upload_kbps: int
    is_default: bool = False


class ProvisioningResponse(BaseModel):
    """Local state after a provisioning call; remote confirmation arrives later."""

    client_id: str
    action: SyncAction
    subscription_status: SubscriptionStatus
    is_active: Optional[bool] = None
    sync_requested: bool
    bandwidth: Optional[BandwidthRead] = None
    error: Optional[str] = None
    audit_entry_id: Optional[str] = None


class NetworkCredentialRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: str
    username: str
    is_active: bool
    download_kbps: int
    upload_kbps: int
    session_timeout_sec: int
    idle_timeout_sec: int
    sync_status: CredentialSyncStatus
    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None


class SyncCallbackPayload(BaseModel):
    """Acknowledgement sent by the access server after applying a push."""

    client_id: Optional[str] = None
    router_id: Optional[str] = None
    sync_status: Literal["synced", "failed"] = Field(
        ..., validation_alias=AliasChoices("sync_status", "status")
    )
    action: Optional[str] = None
    connection_status: Optional[RouterConnectionStatus] = None
    error_message: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class CallbackPathRead(BaseModel):
    scope: str
    target_id: str
    applied: bool
    error: Optional[str] = None


class SyncCallbackResponse(BaseModel):
    success: bool
    partial: bool
    client: Optional[CallbackPathRead] = None
    router: Optional[CallbackPathRead] = None
    warnings: list[str] = Field(default_factory=list)
