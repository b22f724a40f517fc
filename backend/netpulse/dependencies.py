"""Process-wide collaborators injected into routers through ``Depends``."""

from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, status

from .database import SessionLocal
from .services import (
    AccessServerClient,
    CheckoutService,
    ConfigurationError,
    PaymentStatusMonitor,
    build_access_server_client_from_env,
    build_gateway_from_env,
    build_notification_clients_from_env,
)
from .services.notifications import NotificationClient

LOGGER = logging.getLogger(__name__)

_checkout_lock = threading.Lock()
_checkout_service: Optional[CheckoutService] = None


@lru_cache(maxsize=1)
def get_access_server() -> AccessServerClient:
    return build_access_server_client_from_env()


def get_checkout_service() -> CheckoutService:
    """Return the shared checkout service, building the gateway on first use."""

    global _checkout_service
    with _checkout_lock:
        if _checkout_service is None:
            try:
                gateway = build_gateway_from_env()
            except ConfigurationError as exc:
                LOGGER.error("Mobile-money gateway is not configured: %s", exc)
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Mobile-money gateway is not configured",
                ) from exc
            _checkout_service = CheckoutService(
                gateway,
                PaymentStatusMonitor(gateway),
                access_server=get_access_server(),
                session_factory=SessionLocal,
            )
        return _checkout_service


def shutdown_checkout_service() -> None:
    """Cancel in-flight payment monitors without firing their callbacks."""

    global _checkout_service
    with _checkout_lock:
        service, _checkout_service = _checkout_service, None
    if service is not None:
        service.monitor.stop_all()


@lru_cache(maxsize=1)
def get_notification_clients() -> dict[str, NotificationClient]:
    return build_notification_clients_from_env()
