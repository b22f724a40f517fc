"""Command line entry-point to run one subscription renewal batch."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from typing import Optional

from ..database import session_scope
from ..services.access_server import (
    ConsoleAccessServerClient,
    build_access_server_client_from_env,
)
from ..services.network_access import NetworkAccessProvisioner
from ..services.notifications import (
    CHANNEL_EMAIL,
    CHANNEL_SMS,
    ConsoleNotificationClient,
    NotificationService,
    build_notification_clients_from_env,
)
from ..services.renewals import RenewalProcessor
from ..services.scheduler_monitor import JOB_RENEWALS, SchedulerMonitor

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_reference_time(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 timestamp: {raw}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Renew, warn or suspend subscriptions expiring within 24 hours."
    )
    parser.add_argument(
        "--reference-time",
        type=_parse_reference_time,
        help="Evaluate expiry against this ISO-8601 instant instead of now (UTC if naive).",
    )
    parser.add_argument(
        "--client-id",
        action="append",
        dest="client_ids",
        help="Only process this client; may be repeated.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log access server pushes and notifications instead of sending them.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print additional debugging information.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    if args.dry_run:
        LOGGER.info("Running with --dry-run: pushes and notifications go to the console.")
        access_server = ConsoleAccessServerClient()
        clients = {
            CHANNEL_EMAIL: ConsoleNotificationClient(),
            CHANNEL_SMS: ConsoleNotificationClient(),
        }
    else:
        access_server = build_access_server_client_from_env()
        clients = build_notification_clients_from_env()

    with session_scope() as session:
        processor = RenewalProcessor(
            session,
            NetworkAccessProvisioner(session, access_server),
            NotificationService(session, clients),
        )
        summary = processor.process_renewals(
            reference_time=args.reference_time, client_ids=args.client_ids
        )
        SchedulerMonitor.record_summary(JOB_RENEWALS, summary.to_dict())
        LOGGER.info("Renewal summary: %s", summary.to_dict())

    return 1 if summary.failed else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
