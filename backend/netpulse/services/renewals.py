"""Batch renewal of prepaid subscriptions nearing expiry."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .. import models
from ..database import session_scope
from ..models.service_package import DEFAULT_BILLING_PERIOD_DAYS
from ..settings import RenewalSettings
from .access_server import AccessServerClient, build_access_server_client_from_env
from .errors import InsufficientBalanceError
from .network_access import NetworkAccessProvisioner, ProvisioningResult, client_lock
from .notifications import NotificationService
from .observability import EVENT_RENEWAL_BATCH, ObservabilityService
from .scheduler_monitor import JOB_RENEWALS, SchedulerMonitor

LOGGER = logging.getLogger(__name__)

RENEWAL_LOOKAHEAD = timedelta(hours=24)
DEFAULT_BILLING_PERIOD = timedelta(days=DEFAULT_BILLING_PERIOD_DAYS)
CURRENCY = "KES"

OUTCOME_RENEWED = "renewed"
OUTCOME_SUSPENDED = "suspended"
OUTCOME_WARNED = "warned"
OUTCOME_SKIPPED = "skipped"


@dataclass
class RenewalSummary:
    """Counters reported after a renewal batch."""

    processed: int = 0
    renewed: int = 0
    suspended: int = 0
    warned: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "renewed": self.renewed,
            "suspended": self.suspended,
            "warned": self.warned,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _billing_period(client: models.ClientAccount) -> timedelta:
    package = client.service_package
    if package is None or not package.billing_period_days:
        return DEFAULT_BILLING_PERIOD
    return timedelta(days=package.billing_period_days)


def apply_renewal(
    db: Session,
    client: models.ClientAccount,
    provisioner: NetworkAccessProvisioner,
    *,
    reference_time: datetime,
) -> models.NetworkCredential:
    """Debit one period from the wallet, extend the subscription and stage a connect.

    Nothing is committed. Raises ``InsufficientBalanceError`` without touching
    the client when the wallet does not cover the monthly rate.
    """

    rate = Decimal(client.monthly_rate or 0)
    balance = Decimal(client.wallet_balance or 0)
    if balance < rate:
        raise InsufficientBalanceError(str(client.id), balance, rate)

    current_end = client.subscription_end_date
    base = current_end if current_end is not None and current_end > reference_time else reference_time
    new_end = base + _billing_period(client)
    new_balance = balance - rate

    client.wallet_balance = new_balance
    client.subscription_end_date = new_end
    client.disconnection_scheduled_at = None
    db.add(
        models.WalletTransaction(
            client_id=client.id,
            transaction_type=models.WalletTransactionType.DEBIT,
            amount=rate,
            balance_after=new_balance,
            description="Subscription renewal",
            reference=f"renewal:{new_end.date().isoformat()}",
        )
    )
    credential, _ = provisioner.stage_connect(client)
    return credential


class RenewalProcessor:
    """Renews, warns or suspends active clients whose subscription ends within 24 hours."""

    def __init__(
        self,
        db: Session,
        provisioner: NetworkAccessProvisioner | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        self.db = db
        self.provisioner = provisioner or NetworkAccessProvisioner(db)
        self.notifier = notifier or NotificationService(db)

    def process_renewals(
        self,
        *,
        reference_time: Optional[datetime] = None,
        client_ids: Optional[Iterable[str]] = None,
    ) -> RenewalSummary:
        now = reference_time or datetime.now(timezone.utc)
        summary = RenewalSummary()

        with ObservabilityService.timed_event(self.db, EVENT_RENEWAL_BATCH) as timer:
            for client_id in self._select_candidates(now, client_ids):
                summary.processed += 1
                try:
                    outcome = self._process_client(client_id, now)
                except Exception as exc:
                    self.db.rollback()
                    summary.failed += 1
                    LOGGER.exception("Renewal failed for client %s", client_id)
                    SchedulerMonitor.record_error(JOB_RENEWALS, f"client {client_id}: {exc}")
                    continue
                if outcome == OUTCOME_RENEWED:
                    summary.renewed += 1
                elif outcome == OUTCOME_SUSPENDED:
                    summary.suspended += 1
                elif outcome == OUTCOME_WARNED:
                    summary.warned += 1
                else:
                    summary.skipped += 1
            timer.details = summary.to_dict()

        LOGGER.info("Renewal batch finished: %s", summary.to_dict())
        return summary

    def _select_candidates(
        self, now: datetime, client_ids: Optional[Iterable[str]]
    ) -> list[str]:
        query = (
            self.db.query(models.ClientAccount.id)
            .filter(models.ClientAccount.subscription_status == models.SubscriptionStatus.ACTIVE)
            .filter(models.ClientAccount.subscription_end_date.isnot(None))
            .filter(models.ClientAccount.subscription_end_date <= now + RENEWAL_LOOKAHEAD)
        )
        if client_ids is not None:
            query = query.filter(models.ClientAccount.id.in_([str(item) for item in client_ids]))
        rows = query.order_by(models.ClientAccount.subscription_end_date).all()
        # Release the read transaction before per-client locking.
        self.db.commit()
        return [str(row[0]) for row in rows]

    def _process_client(self, client_id: str, now: datetime) -> str:
        with client_lock(client_id):
            client = self.provisioner.load_client(client_id, for_update=True)
            end_date = client.subscription_end_date
            if (
                client.subscription_status != models.SubscriptionStatus.ACTIVE
                or end_date is None
                or end_date > now + RENEWAL_LOOKAHEAD
            ):
                self.db.rollback()
                return OUTCOME_SKIPPED

            try:
                credential = apply_renewal(self.db, client, self.provisioner, reference_time=now)
            except InsufficientBalanceError as exc:
                LOGGER.info("Cannot renew client %s: %s", client_id, exc)
                if end_date <= now:
                    self._suspend(client)
                    return OUTCOME_SUSPENDED
                self._warn(client, end_date)
                return OUTCOME_WARNED

            self.db.commit()
            result = self.provisioner.push(client, credential, models.SyncAction.CONNECT)
            self._notify_renewed(client, result)
            return OUTCOME_RENEWED

    def _suspend(self, client: models.ClientAccount) -> None:
        credential = self.provisioner.stage_disconnect(client)
        self.db.commit()
        self.provisioner.push(
            client, credential, models.SyncAction.DISCONNECT, priority="high"
        )
        self.notifier.notify_client(
            client,
            models.NotificationType.SERVICE_SUSPENDED,
            "Internet service suspended",
            (
                f"Hi {client.full_name}, your internet subscription has expired and the "
                f"service is suspended. Top up {CURRENCY} {client.monthly_rate} to reconnect."
            ),
        )
        self.db.commit()

    def _warn(self, client: models.ClientAccount, end_date: datetime) -> None:
        if client.disconnection_scheduled_at == end_date:
            self.db.rollback()
            return
        client.disconnection_scheduled_at = end_date
        shortfall = Decimal(client.monthly_rate or 0) - Decimal(client.wallet_balance or 0)
        self.notifier.notify_client(
            client,
            models.NotificationType.TOPUP_REMINDER,
            "Subscription expiring soon",
            (
                f"Hi {client.full_name}, your internet subscription expires on "
                f"{end_date.strftime('%d/%m/%Y %H:%M')} UTC. Top up at least "
                f"{CURRENCY} {shortfall} to renew automatically."
            ),
        )
        self.db.commit()

    def _notify_renewed(self, client: models.ClientAccount, result: ProvisioningResult) -> None:
        if not result.pushed:
            LOGGER.warning(
                "Client %s renewed but access server push failed: %s", client.id, result.error
            )
        self.notifier.notify_client(
            client,
            models.NotificationType.RENEWAL_SUCCESS,
            "Subscription renewed",
            (
                f"Hi {client.full_name}, your internet subscription has been renewed until "
                f"{client.subscription_end_date.strftime('%d/%m/%Y')}. Wallet balance: "
                f"{CURRENCY} {client.wallet_balance}."
            ),
        )
        self.db.commit()


def run_renewal_cycle(
    *,
    access_server: AccessServerClient | None = None,
    notifier_clients=None,
) -> RenewalSummary | None:
    """Run one batch in its own session and record scheduler health."""

    try:
        with session_scope() as session:
            provisioner = NetworkAccessProvisioner(
                session, access_server or build_access_server_client_from_env()
            )
            processor = RenewalProcessor(
                session, provisioner, NotificationService(session, notifier_clients)
            )
            summary = processor.process_renewals()
            SchedulerMonitor.record_summary(JOB_RENEWALS, summary.to_dict())
            return summary
    except Exception as exc:  # pragma: no cover
        LOGGER.exception("Renewal cycle failed: %s", exc)
        SchedulerMonitor.record_error(JOB_RENEWALS, str(exc))
        return None
    finally:
        SchedulerMonitor.record_tick(JOB_RENEWALS)


_renewal_thread: Optional[threading.Thread] = None
_renewal_stop = threading.Event()


def _renewal_worker(settings: RenewalSettings) -> None:
    if settings.run_on_start:
        run_renewal_cycle()
    while not _renewal_stop.wait(settings.interval_minutes * 60):
        run_renewal_cycle()


def start_renewal_scheduler() -> None:
    """Start the background worker that renews subscriptions periodically."""

    global _renewal_thread
    if _renewal_thread and _renewal_thread.is_alive():
        return
    settings = RenewalSettings.from_env()
    _renewal_stop.clear()
    _renewal_thread = threading.Thread(
        target=_renewal_worker, args=(settings,), name="renewal-scheduler", daemon=True
    )
    _renewal_thread.start()
    LOGGER.info("Renewal scheduler started (every %s minutes)", settings.interval_minutes)


def stop_renewal_scheduler() -> None:
    """Stop the renewal background worker."""

    _renewal_stop.set()
    if _renewal_thread and _renewal_thread.is_alive():
        _renewal_thread.join(timeout=5)
        LOGGER.info("Renewal scheduler stopped")
