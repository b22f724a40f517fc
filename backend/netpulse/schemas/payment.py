"""Schemas for checkout, payment processing and reconciliation."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.payment import PaymentMethod, PendingChargeStatus
from .common import PaginatedResponse


class CheckoutCreate(BaseModel):
    """Request to start a mobile-money charge for a client."""

    client_id: str = Field(..., description="Client whose wallet receives the payment")
    amount: Decimal = Field(..., gt=0, description="Amount to charge")
    phone: Optional[str] = Field(
        default=None, description="Payer phone; defaults to the client's phone"
    )


class PendingChargeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    checkout_request_id: Optional[str] = None
    amount: Decimal
    phone: str
    status: PendingChargeStatus
    status_message: Optional[str] = None
    receipt_number: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    monitoring: bool = False


class PaymentProcessRequest(BaseModel):
    """Direct invocation of the standard payment-processing path."""

    client_id: str
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.MPESA
    reference: Optional[str] = Field(default=None, max_length=120)
    receipt_number: Optional[str] = Field(default=None, max_length=64)
    note: Optional[str] = None


class SyncSummary(BaseModel):
    pushed: bool
    error: Optional[str] = None


class PaymentProcessResponse(BaseModel):
    success: bool
    payment_id: Optional[str] = None
    new_balance: Optional[Decimal] = None
    auto_renewed: bool = False
    sync: Optional[SyncSummary] = None
    error: Optional[str] = None
    code: Optional[str] = None


class UnmatchedPaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: Decimal
    receipt_number: Optional[str] = None
    reference_number: Optional[str] = None
    phone: Optional[str] = None
    payer_name: Optional[str] = None
    description: Optional[str] = None
    received_at: datetime


class UnmatchedPaymentListResponse(PaginatedResponse[UnmatchedPaymentRead]):
    """Paginated unmatched payments."""


class UnmatchedPaymentMatch(BaseModel):
    client_id: str = Field(..., description="Client that should receive the payment")


class GatewayAcknowledgement(BaseModel):
    """Response body expected by the Daraja webhooks."""

    ResultCode: int = 0
    ResultDesc: str = "Accepted"
    details: Optional[dict[str, Any]] = None
