"""Expose Pydantic schemas for convenient imports."""

from .common import PaginatedResponse
from .metrics import SchedulerHealthResponse, SchedulerJobHealth
from .network_access import (
    BandwidthRead,
    CallbackPathRead,
    NetworkCredentialRead,
    ProvisioningResponse,
    SyncCallbackPayload,
    SyncCallbackResponse,
)
from .payment import (
    CheckoutCreate,
    GatewayAcknowledgement,
    PaymentProcessRequest,
    PaymentProcessResponse,
    PendingChargeRead,
    SyncSummary,
    UnmatchedPaymentListResponse,
    UnmatchedPaymentMatch,
    UnmatchedPaymentRead,
)
from .renewal import RenewalRunRequest, RenewalSummaryRead

__all__ = [
    "BandwidthRead",
    "CallbackPathRead",
    "CheckoutCreate",
    "GatewayAcknowledgement",
    "NetworkCredentialRead",
    "PaginatedResponse",
    "PaymentProcessRequest",
    "PaymentProcessResponse",
    "PendingChargeRead",
    "ProvisioningResponse",
    "RenewalRunRequest",
    "RenewalSummaryRead",
    "SchedulerHealthResponse",
    "SchedulerJobHealth",
    "SyncCallbackPayload",
    "SyncCallbackResponse",
    "SyncSummary",
    "UnmatchedPaymentListResponse",
    "UnmatchedPaymentMatch",
    "UnmatchedPaymentRead",
]
