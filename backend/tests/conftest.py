from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "0"
os.environ["ENABLE_RENEWAL_SCHEDULER"] = "0"

from backend.netpulse import models  # noqa: E402
from backend.netpulse.database import Base, get_db  # noqa: E402
from backend.netpulse.dependencies import (  # noqa: E402
    get_access_server,
    get_checkout_service,
    get_notification_clients,
)
from backend.netpulse.main import app  # noqa: E402
from backend.netpulse.services.access_server import ConsoleAccessServerClient  # noqa: E402
from backend.netpulse.services.network_access import NetworkAccessProvisioner  # noqa: E402
from backend.netpulse.services.notifications import (  # noqa: E402
    CHANNEL_EMAIL,
    CHANNEL_SMS,
    ConsoleNotificationClient,
)
from backend.netpulse.services.payment_gateway import (  # noqa: E402
    STATUS_PENDING,
    ChargeInitiation,
    ChargeStatus,
    MobileMoneyGateway,
)
from backend.netpulse.services.payment_monitor import PaymentStatusMonitor  # noqa: E402
from backend.netpulse.services.payments import CheckoutService  # noqa: E402
from backend.netpulse.services.scheduler_monitor import SchedulerMonitor  # noqa: E402
from backend.netpulse.settings import MonitorSettings  # noqa: E402


class FakeGateway(MobileMoneyGateway):
    """Gateway double returning queued statuses; the last one repeats."""

    name = "fake"

    def __init__(self, statuses: list[ChargeStatus | Exception] | None = None) -> None:
        self.statuses = list(statuses or [])
        self.charges: list[dict] = []
        self.polls: list[str] = []
        self.fail_initiation: Exception | None = None

    def initiate_charge(self, phone, amount, reference) -> ChargeInitiation:
        if self.fail_initiation is not None:
            raise self.fail_initiation
        self.charges.append({"phone": phone, "amount": amount, "reference": reference})
        return ChargeInitiation(checkout_request_id=f"ws_CO_{len(self.charges):04d}")

    def get_status(self, checkout_request_id: str) -> ChargeStatus:
        self.polls.append(checkout_request_id)
        if not self.statuses:
            return ChargeStatus(status=STATUS_PENDING)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_scheduler_monitor() -> Generator[None, None, None]:
    SchedulerMonitor.reset()
    yield
    SchedulerMonitor.reset()


@pytest.fixture
def access_server() -> ConsoleAccessServerClient:
    return ConsoleAccessServerClient(record=True)


@pytest.fixture
def notification_clients() -> dict:
    return {CHANNEL_EMAIL: ConsoleNotificationClient(), CHANNEL_SMS: ConsoleNotificationClient()}


@pytest.fixture
def provisioner(db_session, access_server) -> NetworkAccessProvisioner:
    return NetworkAccessProvisioner(db_session, access_server)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def monitor_settings() -> MonitorSettings:
    return MonitorSettings(initial_delay=0.0, poll_interval=0.01, max_attempts=20, timeout=2.0)


@pytest.fixture
def checkout_service(
    fake_gateway, monitor_settings, access_server, session_factory
) -> Generator[CheckoutService, None, None]:
    service = CheckoutService(
        fake_gateway,
        PaymentStatusMonitor(fake_gateway, settings=monitor_settings),
        access_server=access_server,
        session_factory=session_factory,
    )
    yield service
    service.monitor.stop_all()


@pytest.fixture
def client(
    db_session: Session, access_server, notification_clients, checkout_service
) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_access_server] = lambda: access_server
    app.dependency_overrides[get_notification_clients] = lambda: notification_clients
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def service_package(db_session) -> models.ServicePackage:
    package = models.ServicePackage(
        name="Home 10",
        speed="10 Mbps",
        monthly_rate=Decimal("1500.00"),
        session_timeout=86400,
        idle_timeout=1800,
        billing_period_days=30,
    )
    db_session.add(package)
    db_session.commit()
    return package


@pytest.fixture
def make_client(db_session, service_package, now) -> Callable[..., models.ClientAccount]:
    counter = {"value": 0}

    def _make_client(
        *,
        full_name: str | None = None,
        balance: Decimal | str = "0",
        status: models.SubscriptionStatus = models.SubscriptionStatus.ACTIVE,
        end_in: timedelta | None = timedelta(days=10),
        phone: str | None = None,
        package: models.ServicePackage | None = service_package,
        monthly_rate: Decimal | str | None = None,
    ) -> models.ClientAccount:
        counter["value"] += 1
        index = counter["value"]
        client = models.ClientAccount(
            full_name=full_name or f"Jane Wanjiku {index}",
            email=f"client{index}@example.com",
            phone=phone or f"07120000{index:02d}",
            subscription_status=status,
            wallet_balance=Decimal(str(balance)),
            monthly_rate=Decimal(
                str(monthly_rate if monthly_rate is not None else "1500.00")
            ),
            subscription_end_date=(now + end_in) if end_in is not None else None,
            service_package=package,
        )
        db_session.add(client)
        db_session.commit()
        return client

    return _make_client


@pytest.fixture
def gateway_factory() -> Callable[..., FakeGateway]:
    return FakeGateway
