from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from backend.netpulse import models
from backend.netpulse.services.access_server import AccessServerClient
from backend.netpulse.services.errors import NotFoundError, SyncPushFailure
from backend.netpulse.services.network_access import (
    NetworkAccessProvisioner,
    build_username,
    client_lock,
)


class FailingAccessServer(AccessServerClient):
    name = "failing"

    def __init__(self) -> None:
        self.attempts = 0

    def push_sync(self, payload):
        self.attempts += 1
        raise SyncPushFailure("access server unavailable", status_code=503)


def _credentials(db_session, client_id):
    return (
        db_session.query(models.NetworkCredential)
        .filter(models.NetworkCredential.client_id == str(client_id))
        .all()
    )


def _audit(db_session, client_id):
    return (
        db_session.query(models.SyncAuditEntry)
        .filter(models.SyncAuditEntry.client_id == str(client_id))
        .order_by(models.SyncAuditEntry.created_at)
        .all()
    )


def test_build_username_is_deterministic():
    client_id = "3f2b9c1e-0000-4000-8000-000000000000"

    assert build_username("Jane  Wanjiku Otieno", client_id) == "janewanjikuotieno_3f2b9c1e"
    assert build_username("Jane  Wanjiku Otieno", client_id) == build_username(
        "Jane Wanjiku Otieno", client_id
    )


def test_connect_creates_credential_and_pushes(db_session, provisioner, access_server, make_client):
    client = make_client(status=models.SubscriptionStatus.PENDING)
    client_id = str(client.id)

    result = provisioner.connect(client_id)

    assert result.pushed is True
    assert result.subscription_status == models.SubscriptionStatus.ACTIVE
    assert (result.bandwidth.download_kbps, result.bandwidth.upload_kbps) == (10000, 5000)

    db_session.expire_all()
    credential = _credentials(db_session, client_id)[0]
    assert credential.is_active is True
    assert credential.username.endswith(client_id[:8])
    assert len(credential.secret) == 12
    assert credential.session_timeout_sec == 86400
    assert credential.idle_timeout_sec == 1800
    assert credential.sync_status == models.CredentialSyncStatus.PENDING
    assert db_session.get(models.ClientAccount, client_id).subscription_status == (
        models.SubscriptionStatus.ACTIVE
    )

    payload = access_server.pushes[-1]
    assert payload["action"] == "connect"
    assert payload["priority"] == "normal"
    assert payload["attributes"]["Mikrotik-Rate-Limit"] == "5000k/10000k"
    assert payload["password"] == "***"
    assert credential.secret and credential.secret != "***"


def test_connect_twice_reuses_single_credential(db_session, provisioner, make_client):
    client_id = str(make_client().id)

    provisioner.connect(client_id)
    db_session.expire_all()
    first = _credentials(db_session, client_id)[0]
    username, secret = first.username, first.secret

    provisioner.connect(client_id)
    db_session.expire_all()
    credentials = _credentials(db_session, client_id)

    assert len(credentials) == 1
    assert (credentials[0].username, credentials[0].secret) == (username, secret)
    assert len(_audit(db_session, client_id)) == 2


def test_disconnect_deactivates_and_pushes_with_high_priority(
    db_session, provisioner, access_server, make_client
):
    client_id = str(make_client().id)
    provisioner.connect(client_id)

    result = provisioner.disconnect(client_id)

    assert result.subscription_status == models.SubscriptionStatus.SUSPENDED
    assert result.is_active is False
    assert access_server.pushes[-1]["action"] == "disconnect"
    assert access_server.pushes[-1]["priority"] == "high"
    db_session.expire_all()
    credentials = _credentials(db_session, client_id)
    assert len(credentials) == 1
    assert credentials[0].is_active is False


def test_disconnect_without_credential_still_suspends(db_session, provisioner, make_client):
    client_id = str(make_client().id)

    result = provisioner.disconnect(client_id)

    assert result.is_active is None
    assert result.subscription_status == models.SubscriptionStatus.SUSPENDED
    assert len(_audit(db_session, client_id)) == 1


def test_update_qos_recomputes_bandwidth_without_changing_activation(
    db_session, provisioner, access_server, make_client
):
    client = make_client()
    client_id = str(client.id)
    provisioner.connect(client_id)
    provisioner.disconnect(client_id)

    faster = models.ServicePackage(name="Home 25", speed="25 Mbps", monthly_rate=Decimal("2500"))
    db_session.add(faster)
    db_session.flush()
    client = db_session.get(models.ClientAccount, client_id)
    client.service_package = faster
    db_session.commit()

    result = provisioner.update_qos(client_id)

    assert result.action == models.SyncAction.UPDATE_QOS
    assert result.is_active is False
    assert result.subscription_status == models.SubscriptionStatus.SUSPENDED
    assert access_server.pushes[-1]["download_kbps"] == 25000
    assert access_server.pushes[-1]["upload_kbps"] == 12500


def test_update_qos_requires_credential_and_package(provisioner, make_client):
    client_id = str(make_client().id)

    with pytest.raises(NotFoundError, match="Client or service package not found"):
        provisioner.update_qos(client_id)


def test_connect_unknown_client_raises(provisioner):
    with pytest.raises(NotFoundError):
        provisioner.connect("00000000-0000-4000-8000-000000000000")


def test_connect_without_package_raises(provisioner, make_client):
    client_id = str(make_client(package=None).id)

    with pytest.raises(NotFoundError):
        provisioner.connect(client_id)


def test_push_failure_keeps_local_state_and_audits(db_session, make_client):
    failing = FailingAccessServer()
    provisioner = NetworkAccessProvisioner(db_session, failing)
    client_id = str(make_client(status=models.SubscriptionStatus.PENDING).id)

    result = provisioner.connect(client_id)

    assert failing.attempts == 1
    assert result.pushed is False
    assert "unavailable" in result.error
    db_session.expire_all()
    client = db_session.get(models.ClientAccount, client_id)
    credential = _credentials(db_session, client_id)[0]
    assert client.subscription_status == models.SubscriptionStatus.ACTIVE
    assert credential.is_active is True
    assert credential.sync_status == models.CredentialSyncStatus.FAILED
    entries = _audit(db_session, client_id)
    assert len(entries) == 1
    assert entries[0].success is False
    assert entries[0].payload["password"] == "***"


def test_sync_push_records_operational_metric(db_session, provisioner, make_client):
    provisioner.connect(str(make_client().id))

    events = db_session.query(models.OperationalMetricEvent).all()

    assert [event.event_type for event in events] == ["network_access.sync_push"]
    assert events[0].outcome == "success"
    assert events[0].tags == {"action": "connect", "transport": "console"}


def test_client_lock_is_reentrant_and_serialises_threads():
    order: list[str] = []
    entered = threading.Event()
    release = threading.Event()

    def _holder():
        with client_lock("client-1"):
            with client_lock("client-1"):
                entered.set()
                release.wait(1)
                order.append("holder")

    def _waiter():
        entered.wait(1)
        with client_lock("client-1"):
            order.append("waiter")

    threads = [threading.Thread(target=_holder), threading.Thread(target=_waiter)]
    for thread in threads:
        thread.start()
    entered.wait(1)
    release.set()
    for thread in threads:
        thread.join(2)

    assert order == ["holder", "waiter"]
