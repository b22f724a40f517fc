"""Service layer encapsulating business logic for API routers."""

from .access_server import (
    AccessServerClient,
    ConsoleAccessServerClient,
    HttpAccessServerClient,
    build_access_server_client_from_env,
)
from .errors import (
    CheckoutError,
    ConfigurationError,
    DuplicateCallbackError,
    GatewayError,
    GatewayTransientError,
    InsufficientBalanceError,
    NetpulseError,
    NotFoundError,
    SyncCallbackError,
    SyncPushFailure,
)
from .network_access import NetworkAccessProvisioner, ProvisioningResult
from .notifications import NotificationService, build_notification_clients_from_env
from .payment_gateway import ChargeStatus, MobileMoneyGateway, build_gateway_from_env
from .payment_monitor import MonitorCallbacks, MonitorOutcome, PaymentStatusMonitor
from .payments import (
    CheckoutService,
    PaymentProcessingResult,
    PaymentRequest,
    PaymentService,
)
from .reconciliation import PaymentReconciler
from .renewals import (
    RenewalProcessor,
    RenewalSummary,
    start_renewal_scheduler,
    stop_renewal_scheduler,
)
from .speed import BandwidthProfile, SpeedConverter
from .sync_callbacks import SyncCallbackHandler, SyncCallbackResult

__all__ = [
    "AccessServerClient",
    "BandwidthProfile",
    "ChargeStatus",
    "CheckoutError",
    "CheckoutService",
    "ConfigurationError",
    "ConsoleAccessServerClient",
    "DuplicateCallbackError",
    "GatewayError",
    "GatewayTransientError",
    "HttpAccessServerClient",
    "InsufficientBalanceError",
    "MobileMoneyGateway",
    "MonitorCallbacks",
    "MonitorOutcome",
    "NetpulseError",
    "NetworkAccessProvisioner",
    "NotFoundError",
    "NotificationService",
    "PaymentProcessingResult",
    "PaymentReconciler",
    "PaymentRequest",
    "PaymentService",
    "PaymentStatusMonitor",
    "ProvisioningResult",
    "RenewalProcessor",
    "RenewalSummary",
    "SpeedConverter",
    "SyncCallbackHandler",
    "SyncCallbackResult",
    "SyncCallbackError",
    "SyncPushFailure",
    "build_access_server_client_from_env",
    "build_gateway_from_env",
    "build_notification_clients_from_env",
    "start_renewal_scheduler",
    "stop_renewal_scheduler",
]
