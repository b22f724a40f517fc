"""Provisioning of subscriber network access credentials.

Local state is committed first and is the source of truth. The access server
push happens afterwards, is never awaited for confirmation and never rolls
back the local change; :mod:`.sync_callbacks` records the eventual outcome.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.orm import Session

from .. import models
from .access_server import (
    AccessServerClient,
    build_access_server_client_from_env,
    mask_secret,
)
from .errors import NotFoundError, SyncPushFailure
from .observability import EVENT_SYNC_PUSH, MetricOutcome, ObservabilityService
from .speed import BandwidthProfile, SpeedConverter

LOGGER = logging.getLogger(__name__)

PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"
SECRET_ALPHABET = string.ascii_letters + string.digits
SECRET_LENGTH = 12
DEFAULT_GROUP = "default"

_client_locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
_client_locks_guard = threading.Lock()


@contextmanager
def client_lock(client_id: str) -> Iterator[None]:
    """Serialise lifecycle changes for one client within this process.

    Re-entrant, so a renewal holding the lock may call the provisioner.
    """
    with _client_locks_guard:
        lock = _client_locks[str(client_id)]
    with lock:
        yield


def build_username(full_name: str, client_id: str) -> str:
    compact = re.sub(r"\s+", "", full_name or "").lower()
    return f"{compact}_{str(client_id)[:8]}"


def generate_secret(length: int = SECRET_LENGTH) -> str:
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))


@dataclass
class ProvisioningResult:
    """Outcome of a provisioning call.

    ``pushed`` only says the access server accepted the request; confirmation
    arrives later through the sync callback.
    """

    client_id: str
    action: models.SyncAction
    subscription_status: models.SubscriptionStatus
    is_active: Optional[bool]
    pushed: bool
    bandwidth: Optional[BandwidthProfile] = None
    error: Optional[str] = None
    audit_entry_id: Optional[str] = None


class NetworkAccessProvisioner:
    """Creates, updates and deactivates credentials and requests remote sync."""

    def __init__(self, db: Session, access_server: AccessServerClient | None = None) -> None:
        self.db = db
        self.access_server = access_server or build_access_server_client_from_env()

    def connect(self, client_id: str) -> ProvisioningResult:
        with client_lock(client_id):
            client = self.load_client(client_id, for_update=True)
            credential, profile = self.stage_connect(client)
            self.db.commit()
            return self.push(client, credential, models.SyncAction.CONNECT, bandwidth=profile)

    def disconnect(self, client_id: str) -> ProvisioningResult:
        with client_lock(client_id):
            client = self.load_client(client_id, for_update=True)
            credential = self.stage_disconnect(client)
            self.db.commit()
            return self.push(
                client, credential, models.SyncAction.DISCONNECT, priority=PRIORITY_HIGH
            )

    def update_qos(self, client_id: str) -> ProvisioningResult:
        with client_lock(client_id):
            client = self.load_client(client_id, for_update=True)
            package = client.service_package
            credential = self._find_credential(client.id)
            if package is None or credential is None:
                raise NotFoundError("Client or service package not found")
            profile = SpeedConverter.parse(package.speed)
            self._apply_package(credential, package, profile)
            self.db.commit()
            return self.push(client, credential, models.SyncAction.UPDATE_QOS, bandwidth=profile)

    def stage_connect(
        self, client: models.ClientAccount
    ) -> tuple[models.NetworkCredential, BandwidthProfile]:
        """Activate the client's credential and subscription without committing."""

        package = client.service_package
        if package is None:
            raise NotFoundError(f"Client {client.id} has no service package")
        profile = SpeedConverter.parse(package.speed)

        credential = self._find_credential(client.id)
        if credential is None:
            credential = models.NetworkCredential(
                client_id=client.id,
                username=build_username(client.full_name, client.id),
                secret=generate_secret(),
                group_name=DEFAULT_GROUP,
            )
            self.db.add(credential)
            LOGGER.info("Creating network credential %s for client %s", credential.username, client.id)

        credential.is_active = True
        self._apply_package(credential, package, profile)
        client.subscription_status = models.SubscriptionStatus.ACTIVE
        self.db.flush()
        return credential, profile

    def stage_disconnect(self, client: models.ClientAccount) -> Optional[models.NetworkCredential]:
        credential = self._find_credential(client.id)
        if credential is not None:
            credential.is_active = False
            credential.sync_status = models.CredentialSyncStatus.PENDING
        else:
            LOGGER.info("Client %s has no network credential to deactivate", client.id)
        client.subscription_status = models.SubscriptionStatus.SUSPENDED
        self.db.flush()
        return credential

    def push(
        self,
        client: models.ClientAccount,
        credential: Optional[models.NetworkCredential],
        action: models.SyncAction,
        *,
        bandwidth: Optional[BandwidthProfile] = None,
        priority: str = PRIORITY_NORMAL,
    ) -> ProvisioningResult:
        """Push committed state to the access server and audit the attempt."""

        client_id = str(client.id)
        payload = self._build_payload(client_id, credential, action, priority)
        started = perf_counter()
        error: Optional[str] = None
        try:
            self.access_server.push_sync(payload)
        except SyncPushFailure as exc:
            error = str(exc)
            LOGGER.warning("Access server push %s for client %s failed: %s", action.value, client_id, exc)
        except Exception as exc:  # pragma: no cover
            error = str(exc)
            LOGGER.exception("Unexpected error pushing %s for client %s", action.value, client_id)
        duration_ms = (perf_counter() - started) * 1000

        if credential is not None and error is not None:
            credential.sync_status = models.CredentialSyncStatus.FAILED
            credential.last_sync_error = error

        entry = models.SyncAuditEntry(
            client_id=client_id,
            action=action,
            payload=mask_secret(payload),
            success=error is None,
            error_message=error,
            source="provisioner",
        )
        self.db.add(entry)
        self.db.commit()

        ObservabilityService.record_event(
            self.db,
            EVENT_SYNC_PUSH,
            MetricOutcome.SUCCESS if error is None else MetricOutcome.FAILED,
            duration_ms=duration_ms,
            tags={"action": action.value, "transport": self.access_server.name},
        )

        return ProvisioningResult(
            client_id=client_id,
            action=action,
            subscription_status=client.subscription_status,
            is_active=credential.is_active if credential is not None else None,
            pushed=error is None,
            bandwidth=bandwidth,
            error=error,
            audit_entry_id=str(entry.id),
        )

    def load_client(self, client_id: str, *, for_update: bool = False) -> models.ClientAccount:
        query = self.db.query(models.ClientAccount).filter(models.ClientAccount.id == str(client_id))
        if for_update and getattr(getattr(self.db, "bind", None), "dialect", None):
            if getattr(self.db.bind.dialect, "supports_for_update", False):
                query = query.with_for_update()
        client = query.first()
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    def _find_credential(self, client_id: str) -> Optional[models.NetworkCredential]:
        return (
            self.db.query(models.NetworkCredential)
            .filter(models.NetworkCredential.client_id == str(client_id))
            .one_or_none()
        )

    @staticmethod
    def _apply_package(
        credential: models.NetworkCredential,
        package: models.ServicePackage,
        profile: BandwidthProfile,
    ) -> None:
        credential.download_kbps = profile.download_kbps
        credential.upload_kbps = profile.upload_kbps
        credential.session_timeout_sec = package.session_timeout
        credential.idle_timeout_sec = package.idle_timeout
        credential.sync_status = models.CredentialSyncStatus.PENDING
        credential.last_sync_error = None

    @staticmethod
    def _build_payload(
        client_id: str,
        credential: Optional[models.NetworkCredential],
        action: models.SyncAction,
        priority: str,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": action.value,
            "client_id": client_id,
            "priority": priority,
            "requested_at": datetime.now(timezone.utc).isoformat(),
        }
        if credential is None:
            payload["username"] = None
            payload["is_active"] = False
            return payload

        profile = BandwidthProfile(credential.download_kbps, credential.upload_kbps)
        payload.update(
            {
                "username": credential.username,
                "password": credential.secret,
                "group": credential.group_name,
                "is_active": bool(credential.is_active),
                "download_kbps": credential.download_kbps,
                "upload_kbps": credential.upload_kbps,
                "attributes": {
                    "Mikrotik-Rate-Limit": profile.rate_limit,
                    "Session-Timeout": credential.session_timeout_sec,
                    "Idle-Timeout": credential.idle_timeout_sec,
                },
            }
        )
        return payload
