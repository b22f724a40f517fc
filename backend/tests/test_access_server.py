from __future__ import annotations

import json

import httpx
import pytest

from backend.netpulse.services.access_server import (
    ConsoleAccessServerClient,
    HttpAccessServerClient,
    build_access_server_client_from_env,
)
from backend.netpulse.services.errors import SyncPushFailure
from backend.netpulse.settings import AccessServerSettings

WEBHOOK_URL = "https://radius.example.com/api/sync"


def _client(handler) -> HttpAccessServerClient:
    return HttpAccessServerClient(
        webhook_url=WEBHOOK_URL,
        api_key="radius-key",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_push_sends_payload_with_auth_and_priority_headers():
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, headers={"x-request-id": "req-1"})

    result = _client(_handler).push_sync(
        {"action": "disconnect", "client_id": "abc", "priority": "high"}
    )

    assert result.status_code == 202
    assert result.request_id == "req-1"
    request = captured[0]
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["Authorization"] == "Bearer radius-key"
    assert request.headers["X-Priority"] == "high"
    assert json.loads(request.content)["action"] == "disconnect"


def test_normal_priority_push_has_no_priority_header():
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200)

    _client(_handler).push_sync({"action": "connect", "priority": "normal"})

    assert "X-Priority" not in captured[0].headers


def test_rejected_push_raises_sync_push_failure():
    client = _client(lambda request: httpx.Response(500, text="radius down"))

    with pytest.raises(SyncPushFailure) as excinfo:
        client.push_sync({"action": "connect"})

    assert excinfo.value.status_code == 500
    assert "radius down" in str(excinfo.value)


def test_unreachable_server_raises_sync_push_failure():
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(SyncPushFailure, match="unreachable"):
        _client(_handler).push_sync({"action": "connect"})


def test_builder_falls_back_to_console_without_webhook_url():
    client = build_access_server_client_from_env(AccessServerSettings())

    assert isinstance(client, ConsoleAccessServerClient)
    result = client.push_sync({"action": "connect", "client_id": "abc", "password": "s3cret"})
    assert result.status_code == 202
    assert not client.pushes


def test_recording_console_client_masks_secret_and_keeps_recent_pushes():
    client = ConsoleAccessServerClient(record=True, max_records=2)

    for index in range(3):
        client.push_sync({"action": "connect", "client_id": str(index), "password": "s3cret"})

    assert [push["client_id"] for push in client.pushes] == ["1", "2"]
    assert all(push["password"] == "***" for push in client.pushes)


def test_builder_reads_environment(monkeypatch):
    monkeypatch.setenv("ACCESS_SERVER_WEBHOOK_URL", WEBHOOK_URL)
    monkeypatch.setenv("ACCESS_SERVER_TIMEOUT", "not-a-number")

    client = build_access_server_client_from_env()

    assert isinstance(client, HttpAccessServerClient)
    assert client.webhook_url == WEBHOOK_URL
    assert client.timeout == 10.0
