"""Expose SQLAlchemy models for convenient imports."""

from .audit import SyncAction, SyncAuditEntry
from .client_account import ClientAccount, SubscriptionStatus
from .network_credential import CredentialSyncStatus, NetworkCredential
from .notification import DeliveryStatus, NotificationLog, NotificationType
from .operational_metric import OperationalMetricEvent
from .payment import (
    PaymentMethod,
    PendingCharge,
    PendingChargeStatus,
    ServicePayment,
    UnmatchedPayment,
    WalletTransaction,
    WalletTransactionType,
)
from .router import AccessRouter, RouterConnectionStatus
from .service_package import ServicePackage

__all__ = [
    "AccessRouter",
    "ClientAccount",
    "CredentialSyncStatus",
    "DeliveryStatus",
    "NetworkCredential",
    "NotificationLog",
    "NotificationType",
    "OperationalMetricEvent",
    "PaymentMethod",
    "PendingCharge",
    "PendingChargeStatus",
    "RouterConnectionStatus",
    "ServicePackage",
    "ServicePayment",
    "SubscriptionStatus",
    "SyncAction",
    "SyncAuditEntry",
    "UnmatchedPayment",
    "WalletTransaction",
    "WalletTransactionType",
]
