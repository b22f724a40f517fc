"""Application of access server acknowledgements to local state."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from .errors import NotFoundError, SyncCallbackError

LOGGER = logging.getLogger(__name__)

SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_FAILED = "failed"


@dataclass
class CallbackPathOutcome:
    """Result of applying one scope (client or router) of a callback."""

    scope: str
    target_id: str
    applied: bool
    error: Optional[str] = None


@dataclass
class SyncCallbackResult:
    client: Optional[CallbackPathOutcome] = None
    router: Optional[CallbackPathOutcome] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def outcomes(self) -> list[CallbackPathOutcome]:
        return [item for item in (self.client, self.router) if item is not None]

    @property
    def success(self) -> bool:
        return all(item.applied for item in self.outcomes)

    @property
    def partial(self) -> bool:
        applied = [item.applied for item in self.outcomes]
        return any(applied) and not all(applied)


def _parse_identifier(raw: Optional[str], field_name: str, warnings: list[str]) -> Optional[str]:
    if raw is None or not str(raw).strip():
        return None
    try:
        return str(uuid.UUID(str(raw).strip()))
    except ValueError:
        message = f"Ignoring invalid {field_name}: {raw!r}"
        LOGGER.warning(message)
        warnings.append(message)
        return None


class SyncCallbackHandler:
    """Processes ``synced``/``failed`` callbacks for clients and routers.

    The client and router paths commit independently. A failure in one is
    rolled back, audited and reported without blocking the other.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def handle(self, payload: schemas.SyncCallbackPayload) -> SyncCallbackResult:
        result = SyncCallbackResult()
        client_id = _parse_identifier(payload.client_id, "client_id", result.warnings)
        router_id = _parse_identifier(payload.router_id, "router_id", result.warnings)
        if client_id is None and router_id is None:
            raise SyncCallbackError("Callback must reference a valid client_id or router_id")

        synced = payload.sync_status == SYNC_STATUS_SYNCED
        received_at = payload.timestamp or datetime.now(timezone.utc)

        if router_id is not None:
            result.router = self._apply_path(
                "router",
                router_id,
                lambda: self._apply_router(router_id, payload, synced, received_at),
                lambda error: self._audit(
                    payload,
                    action=models.SyncAction.ROUTER_CALLBACK,
                    router_id=router_id,
                    success=False,
                    error=error,
                ),
            )
        if client_id is not None:
            result.client = self._apply_path(
                "client",
                client_id,
                lambda: self._apply_client(client_id, payload, synced, received_at),
                lambda error: self._audit(
                    payload,
                    action=models.SyncAction.CLIENT_CALLBACK,
                    client_id=client_id,
                    success=False,
                    error=error,
                ),
            )
        return result

    def _apply_path(
        self,
        scope: str,
        target_id: str,
        apply: Callable[[], None],
        audit_failure: Callable[[str], None],
    ) -> CallbackPathOutcome:
        try:
            apply()
            self.db.commit()
            return CallbackPathOutcome(scope=scope, target_id=target_id, applied=True)
        except Exception as exc:
            self.db.rollback()
            if isinstance(exc, NotFoundError):
                LOGGER.warning("Sync callback for %s %s skipped: %s", scope, target_id, exc)
            else:
                LOGGER.exception("Failed to apply sync callback for %s %s", scope, target_id)
            try:
                audit_failure(str(exc))
                self.db.commit()
            except Exception:  # pragma: no cover - audit is best effort at this point
                self.db.rollback()
                LOGGER.exception("Could not audit failed callback for %s %s", scope, target_id)
            return CallbackPathOutcome(
                scope=scope, target_id=target_id, applied=False, error=str(exc)
            )

    def _apply_router(
        self,
        router_id: str,
        payload: schemas.SyncCallbackPayload,
        synced: bool,
        received_at: datetime,
    ) -> None:
        router = self.db.get(models.AccessRouter, router_id)
        if router is None:
            raise NotFoundError(f"Router {router_id} not found")

        router.connection_status = payload.connection_status or (
            models.RouterConnectionStatus.CONNECTED
            if synced
            else models.RouterConnectionStatus.CONFIGURATION_FAILED
        )
        router.sync_status = payload.sync_status
        router.last_sync_at = received_at
        router.last_error = None if synced else payload.error_message
        router.last_diagnostics = payload.details or payload.model_dump(mode="json")
        self._audit(
            payload,
            action=models.SyncAction.ROUTER_CALLBACK,
            router_id=router_id,
            success=synced,
            error=payload.error_message,
        )

    def _apply_client(
        self,
        client_id: str,
        payload: schemas.SyncCallbackPayload,
        synced: bool,
        received_at: datetime,
    ) -> None:
        client = self.db.get(models.ClientAccount, client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        credential = (
            self.db.query(models.NetworkCredential)
            .filter(models.NetworkCredential.client_id == client_id)
            .one_or_none()
        )
        if credential is None:
            raise NotFoundError(f"Client {client_id} has no network credential")

        is_disconnect = payload.action == models.SyncAction.DISCONNECT.value
        credential.last_synced_at = received_at
        credential.is_active = synced and not is_disconnect
        if synced:
            credential.sync_status = models.CredentialSyncStatus.SYNCED
            credential.last_sync_error = None
            client.disconnection_scheduled_at = None
            if is_disconnect:
                client.subscription_status = models.SubscriptionStatus.SUSPENDED
            elif payload.action == models.SyncAction.CONNECT.value:
                client.subscription_status = models.SubscriptionStatus.ACTIVE
        else:
            credential.sync_status = models.CredentialSyncStatus.FAILED
            credential.last_sync_error = payload.error_message or "Access server reported failure"

        self._audit(
            payload,
            action=models.SyncAction.CLIENT_CALLBACK,
            client_id=client_id,
            success=synced,
            error=payload.error_message,
        )

    def _audit(
        self,
        payload: schemas.SyncCallbackPayload,
        *,
        action: models.SyncAction,
        success: bool,
        error: Optional[str],
        client_id: Optional[str] = None,
        router_id: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = payload.model_dump(mode="json", exclude_none=True)
        self.db.add(
            models.SyncAuditEntry(
                client_id=client_id,
                router_id=router_id,
                action=action,
                payload=details,
                success=success,
                error_message=error,
                source="callback",
            )
        )
