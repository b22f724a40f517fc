"""Clients that push provisioning changes to the remote access server."""

from __future__ import annotations

import abc
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..settings import AccessServerSettings
from .errors import SyncPushFailure

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 100
MASKED_SECRET = "***"


def mask_secret(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``payload`` safe to keep in memory or write to the audit log."""
    if "password" not in payload:
        return dict(payload)
    return {**payload, "password": MASKED_SECRET}


@dataclass
class SyncPushResult:
    """Acknowledgement returned by the access server for a push."""

    status_code: int
    request_id: Optional[str] = None


class AccessServerClient(abc.ABC):
    """Interface implemented by transports that reach the access server."""

    name: str

    @abc.abstractmethod
    def push_sync(self, payload: dict[str, Any]) -> SyncPushResult:
        """Send ``payload`` and return the acknowledgement.

        Raises ``SyncPushFailure`` when the server is unreachable or rejects
        the request.
        """


class ConsoleAccessServerClient(AccessServerClient):
    """Development fallback that only logs pushes.

    With ``record=True`` the most recent pushes are kept in ``pushes`` with the
    credential secret masked.
    """

    name = "console"

    def __init__(self, *, record: bool = False, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        self.record = record
        self.pushes: deque[dict[str, Any]] = deque(maxlen=max_records)

    def push_sync(self, payload: dict[str, Any]) -> SyncPushResult:
        if self.record:
            self.pushes.append(mask_secret(payload))
        LOGGER.info(
            "[console] access server %s for client %s",
            payload.get("action"),
            payload.get("client_id"),
        )
        return SyncPushResult(status_code=202, request_id="console")


class HttpAccessServerClient(AccessServerClient):
    """Posts provisioning payloads to the access server webhook."""

    name = "webhook"

    def __init__(
        self,
        *,
        webhook_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def push_sync(self, payload: dict[str, Any]) -> SyncPushResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if payload.get("priority") == "high":
            headers["X-Priority"] = "high"
        try:
            response = self._client.post(self.webhook_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise SyncPushFailure(f"Access server unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise SyncPushFailure(
                response.text or f"Access server answered HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return SyncPushResult(
            status_code=response.status_code,
            request_id=response.headers.get("x-request-id"),
        )


def build_access_server_client_from_env(
    settings: AccessServerSettings | None = None,
) -> AccessServerClient:
    """Return the webhook client when configured, otherwise the console fallback."""

    settings = settings or AccessServerSettings.from_env()
    if not settings.webhook_url:
        LOGGER.warning(
            "ACCESS_SERVER_WEBHOOK_URL is not configured; provisioning pushes will only be logged."
        )
        return ConsoleAccessServerClient()
    return HttpAccessServerClient(
        webhook_url=settings.webhook_url,
        api_key=settings.api_key,
        timeout=settings.timeout,
    )
