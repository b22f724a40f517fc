"""Routers package."""

from .metrics import router as metrics_router
from .network_access import router as network_access_router
from .payments import router as payments_router
from .renewals import router as renewals_router
from .sync_callbacks import router as sync_callbacks_router

__all__ = [
    "metrics_router",
    "network_access_router",
    "payments_router",
    "renewals_router",
    "sync_callbacks_router",
]
