from __future__ import annotations

from datetime import timedelta

import pytest

from backend.netpulse import models, schemas
from backend.netpulse.services.errors import SyncCallbackError
from backend.netpulse.services.sync_callbacks import SyncCallbackHandler


@pytest.fixture
def connected_client(db_session, provisioner, make_client):
    client = make_client()
    provisioner.connect(str(client.id))
    return str(client.id)


@pytest.fixture
def router(db_session):
    router = models.AccessRouter(name="Westlands NAS", ip_address="10.10.0.1")
    db_session.add(router)
    db_session.commit()
    return str(router.id)


def _payload(**values) -> schemas.SyncCallbackPayload:
    return schemas.SyncCallbackPayload.model_validate(values)


def _credential(db_session, client_id):
    return (
        db_session.query(models.NetworkCredential)
        .filter(models.NetworkCredential.client_id == client_id)
        .one()
    )


def _callback_audit(db_session):
    return (
        db_session.query(models.SyncAuditEntry)
        .filter(models.SyncAuditEntry.source == "callback")
        .all()
    )


def test_synced_client_callback_confirms_credential(db_session, connected_client):
    client = db_session.get(models.ClientAccount, connected_client)
    client.disconnection_scheduled_at = client.subscription_end_date
    db_session.commit()

    result = SyncCallbackHandler(db_session).handle(
        _payload(client_id=connected_client, sync_status="synced", action="connect")
    )

    assert result.success is True
    db_session.expire_all()
    credential = _credential(db_session, connected_client)
    assert credential.is_active is True
    assert credential.sync_status == models.CredentialSyncStatus.SYNCED
    assert credential.last_synced_at is not None
    client = db_session.get(models.ClientAccount, connected_client)
    assert client.disconnection_scheduled_at is None
    entries = _callback_audit(db_session)
    assert len(entries) == 1
    assert entries[0].action == models.SyncAction.CLIENT_CALLBACK
    assert entries[0].success is True


def test_failed_client_callback_deactivates_and_records_error(db_session, connected_client):
    result = SyncCallbackHandler(db_session).handle(
        _payload(
            client_id=connected_client,
            status="failed",
            error_message="NAS rejected attributes",
        )
    )

    assert result.success is True
    db_session.expire_all()
    credential = _credential(db_session, connected_client)
    assert credential.is_active is False
    assert credential.sync_status == models.CredentialSyncStatus.FAILED
    assert credential.last_sync_error == "NAS rejected attributes"
    entry = _callback_audit(db_session)[0]
    assert entry.success is False
    assert entry.error_message == "NAS rejected attributes"


def test_synced_disconnect_callback_keeps_credential_inactive(
    db_session, provisioner, connected_client
):
    provisioner.disconnect(connected_client)

    SyncCallbackHandler(db_session).handle(
        _payload(client_id=connected_client, sync_status="synced", action="disconnect")
    )

    db_session.expire_all()
    assert _credential(db_session, connected_client).is_active is False
    client = db_session.get(models.ClientAccount, connected_client)
    assert client.subscription_status == models.SubscriptionStatus.SUSPENDED


def test_router_callback_updates_status_and_diagnostics(db_session, router):
    details = {"interfaces": 4, "uptime": "3d"}

    SyncCallbackHandler(db_session).handle(
        _payload(router_id=router, sync_status="synced", details=details)
    )
    db_session.expire_all()
    stored = db_session.get(models.AccessRouter, router)
    assert stored.connection_status == models.RouterConnectionStatus.CONNECTED
    assert stored.last_diagnostics == details

    SyncCallbackHandler(db_session).handle(
        _payload(router_id=router, sync_status="failed", error_message="bad secret")
    )
    db_session.expire_all()
    stored = db_session.get(models.AccessRouter, router)
    assert stored.connection_status == models.RouterConnectionStatus.CONFIGURATION_FAILED
    assert stored.last_error == "bad secret"
    assert stored.last_diagnostics["error_message"] == "bad secret"


def test_router_callback_honours_reported_connection_status(db_session, router):
    SyncCallbackHandler(db_session).handle(
        _payload(router_id=router, sync_status="synced", connection_status="pending")
    )

    db_session.expire_all()
    stored = db_session.get(models.AccessRouter, router)
    assert stored.connection_status == models.RouterConnectionStatus.PENDING
    assert stored.sync_status == "synced"


def test_sync_callback_endpoint_rejects_unknown_connection_status(client, router):
    response = client.post(
        "/radius/sync-callback",
        json={"router_id": router, "status": "synced", "connection_status": "online"},
    )

    assert response.status_code == 422


def test_partial_failure_is_surfaced_without_blocking_other_path(db_session, router):
    missing_client = "00000000-0000-4000-8000-000000000001"

    result = SyncCallbackHandler(db_session).handle(
        _payload(client_id=missing_client, router_id=router, sync_status="synced")
    )

    assert result.router.applied is True
    assert result.client.applied is False
    assert "not found" in result.client.error
    assert result.partial is True
    assert result.success is False
    db_session.expire_all()
    assert db_session.get(models.AccessRouter, router).connection_status == (
        models.RouterConnectionStatus.CONNECTED
    )
    failures = [entry for entry in _callback_audit(db_session) if not entry.success]
    assert [entry.client_id for entry in failures] == [missing_client]


def test_invalid_identifiers_are_rejected():
    with pytest.raises(SyncCallbackError):
        SyncCallbackHandler(None).handle(_payload(client_id="not-a-uuid", sync_status="synced"))


def test_callback_timestamp_is_used_for_last_synced_at(db_session, connected_client, now):
    reported = now - timedelta(minutes=5)

    SyncCallbackHandler(db_session).handle(
        _payload(client_id=connected_client, sync_status="synced", timestamp=reported)
    )

    db_session.expire_all()
    assert _credential(db_session, connected_client).last_synced_at == reported


def test_sync_callback_endpoint(client, connected_client, router):
    response = client.post(
        "/radius/sync-callback",
        json={"client_id": connected_client, "router_id": router, "status": "synced"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["client"]["applied"] is True
    assert body["router"]["applied"] is True


def test_sync_callback_endpoint_reports_partial_failure(client, router):
    response = client.post(
        "/radius/sync-callback",
        json={
            "client_id": "00000000-0000-4000-8000-000000000002",
            "router_id": router,
            "sync_status": "synced",
        },
    )

    assert response.status_code == 207
    body = response.json()
    assert body["partial"] is True
    assert body["client"]["applied"] is False


def test_sync_callback_endpoint_rejects_missing_identifiers(client):
    response = client.post("/radius/sync-callback", json={"sync_status": "synced"})

    assert response.status_code == 400


def test_sync_callback_endpoint_validates_status(client, connected_client):
    response = client.post(
        "/radius/sync-callback", json={"client_id": connected_client, "sync_status": "maybe"}
    )

    assert response.status_code == 422
