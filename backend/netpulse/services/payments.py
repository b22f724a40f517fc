"""Payment processing, mobile-money checkout and gateway webhook handling."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..database import session_scope
from .access_server import AccessServerClient
from .errors import CheckoutError, GatewayError, NetpulseError, NotFoundError
from .network_access import NetworkAccessProvisioner, ProvisioningResult, client_lock
from .payment_gateway import (
    STATUS_COMPLETED,
    ChargeStatus,
    MobileMoneyGateway,
    normalize_msisdn,
    parse_result_code,
)
from .payment_monitor import MonitorCallbacks, PaymentStatusMonitor
from .renewals import apply_renewal

LOGGER = logging.getLogger(__name__)

ERROR_INVALID_AMOUNT = "INVALID_AMOUNT"
ERROR_CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
ERROR_DUPLICATE_RECEIPT = "DUPLICATE_RECEIPT"
ERROR_PROCESSING = "PROCESSING_ERROR"


@dataclass
class PaymentRequest:
    """Input of the standard payment-processing path."""

    client_id: str
    amount: Decimal | float | str
    method: models.PaymentMethod = models.PaymentMethod.MPESA
    reference: Optional[str] = None
    receipt_number: Optional[str] = None
    note: Optional[str] = None
    paid_at: Optional[datetime] = None


@dataclass
class PaymentProcessingResult:
    """Outcome of the standard payment-processing path.

    Business failures are reported here instead of raised so callers such as
    the reconciler can decide what to keep.
    """

    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    payment_id: Optional[str] = None
    new_balance: Optional[Decimal] = None
    auto_renewed: bool = False
    sync: Optional[ProvisioningResult] = None

    @classmethod
    def failure(cls, code: str, error: str) -> "PaymentProcessingResult":
        return cls(success=False, code=code, error=error)


@dataclass
class C2BOutcome:
    matched: bool
    client_id: Optional[str] = None
    unmatched_id: Optional[str] = None
    result: Optional[PaymentProcessingResult] = None


def _normalize_amount(value: Decimal | float | str) -> Decimal:
    cents = Decimal("0.01")
    return Decimal(str(value)).quantize(cents, rounding=ROUND_HALF_UP)


def _phone_variants(phone: Optional[str]) -> list[str]:
    try:
        msisdn = normalize_msisdn(phone or "")
    except ValueError:
        return [phone] if phone else []
    local = "0" + msisdn[3:]
    return [msisdn, f"+{msisdn}", local]


class PaymentService:
    """Wallet crediting shared by checkout, webhooks and reconciliation."""

    @staticmethod
    def process_payment(
        db: Session,
        request: PaymentRequest,
        *,
        provisioner: NetworkAccessProvisioner | None = None,
        reference_time: Optional[datetime] = None,
    ) -> PaymentProcessingResult:
        """Record a payment, credit the wallet and auto-renew an expired subscription.

        Auto-renewal happens when the new balance covers the monthly rate and
        the subscription end date is unset or already passed.
        """

        try:
            amount = _normalize_amount(request.amount)
        except (InvalidOperation, ValueError):
            return PaymentProcessingResult.failure(ERROR_INVALID_AMOUNT, "Amount is not a number")
        if amount <= 0:
            return PaymentProcessingResult.failure(
                ERROR_INVALID_AMOUNT, "Amount must be greater than zero"
            )
        try:
            client_id = str(uuid.UUID(str(request.client_id)))
        except ValueError:
            return PaymentProcessingResult.failure(ERROR_CLIENT_NOT_FOUND, "Client not found")

        now = reference_time or datetime.now(timezone.utc)
        with client_lock(client_id):
            provisioner = provisioner or NetworkAccessProvisioner(db)
            try:
                client = provisioner.load_client(client_id, for_update=True)
            except NotFoundError:
                return PaymentProcessingResult.failure(ERROR_CLIENT_NOT_FOUND, "Client not found")

            if request.receipt_number and (
                db.query(models.ServicePayment.id)
                .filter(models.ServicePayment.receipt_number == request.receipt_number)
                .first()
            ):
                db.rollback()
                return PaymentProcessingResult.failure(
                    ERROR_DUPLICATE_RECEIPT,
                    f"Receipt {request.receipt_number} has already been processed",
                )

            credential: Optional[models.NetworkCredential] = None
            auto_renewed = False
            try:
                payment = models.ServicePayment(
                    client_id=client.id,
                    amount=amount,
                    method=request.method,
                    reference=request.reference,
                    receipt_number=request.receipt_number,
                    note=request.note,
                    paid_at=request.paid_at or now,
                )
                db.add(payment)
                new_balance = Decimal(client.wallet_balance or 0) + amount
                client.wallet_balance = new_balance
                db.add(
                    models.WalletTransaction(
                        client_id=client.id,
                        transaction_type=models.WalletTransactionType.CREDIT,
                        amount=amount,
                        balance_after=new_balance,
                        description=f"{request.method.value} payment",
                        reference=request.receipt_number or request.reference,
                    )
                )

                end_date = client.subscription_end_date
                expired = end_date is None or end_date <= now
                if expired and new_balance >= Decimal(client.monthly_rate or 0):
                    if client.service_package is None:
                        LOGGER.warning(
                            "Client %s has funds to renew but no service package", client_id
                        )
                    else:
                        credential = apply_renewal(db, client, provisioner, reference_time=now)
                        auto_renewed = True
                db.flush()
                payment_id = str(payment.id)
                final_balance = Decimal(client.wallet_balance)
                db.commit()
            except (SQLAlchemyError, NetpulseError) as exc:
                db.rollback()
                LOGGER.exception("Failed to process payment for client %s", client_id)
                return PaymentProcessingResult.failure(ERROR_PROCESSING, str(exc))

            LOGGER.info(
                "Credited %s to client %s (balance %s, auto_renewed=%s)",
                amount,
                client_id,
                final_balance,
                auto_renewed,
            )
            sync = None
            if auto_renewed:
                sync = provisioner.push(client, credential, models.SyncAction.CONNECT)

        return PaymentProcessingResult(
            success=True,
            payment_id=payment_id,
            new_balance=final_balance,
            auto_renewed=auto_renewed,
            sync=sync,
        )

    @staticmethod
    def record_c2b_payment(
        db: Session,
        payload: dict[str, Any],
        *,
        provisioner: NetworkAccessProvisioner | None = None,
    ) -> C2BOutcome:
        """Handle a paybill confirmation, parking it as unmatched when no client fits."""

        receipt = payload.get("TransID")
        amount = payload.get("TransAmount")
        bill_reference = (payload.get("BillRefNumber") or "").strip() or None
        phone = payload.get("MSISDN")

        client = PaymentService._match_client(db, bill_reference, phone)
        if client is not None:
            result = PaymentService.process_payment(
                db,
                PaymentRequest(
                    client_id=str(client.id),
                    amount=amount,
                    method=models.PaymentMethod.MPESA,
                    reference=bill_reference,
                    receipt_number=receipt,
                ),
                provisioner=provisioner,
            )
            if result.success or result.code == ERROR_DUPLICATE_RECEIPT:
                return C2BOutcome(matched=True, client_id=str(client.id), result=result)
            LOGGER.warning(
                "Paybill payment %s for client %s could not be processed: %s",
                receipt,
                client.id,
                result.error,
            )
            description = f"Processing failed: {result.error}"
        else:
            description = "No client matched the bill reference or phone number"

        if receipt and (
            db.query(models.UnmatchedPayment.id)
            .filter(models.UnmatchedPayment.receipt_number == receipt)
            .first()
        ):
            return C2BOutcome(matched=False)

        unmatched = models.UnmatchedPayment(
            amount=_normalize_amount(amount or 0),
            receipt_number=receipt,
            reference_number=bill_reference,
            phone=phone,
            payer_name=" ".join(
                part for part in (payload.get("FirstName"), payload.get("LastName")) if part
            )
            or None,
            description=description,
        )
        db.add(unmatched)
        db.commit()
        LOGGER.info("Recorded unmatched payment %s (receipt %s)", unmatched.id, receipt)
        return C2BOutcome(matched=False, unmatched_id=str(unmatched.id))

    @staticmethod
    def _match_client(
        db: Session, bill_reference: Optional[str], phone: Optional[str]
    ) -> Optional[models.ClientAccount]:
        if bill_reference:
            try:
                client_id = str(uuid.UUID(bill_reference))
            except ValueError:
                client_id = None
            if client_id:
                client = db.get(models.ClientAccount, client_id)
                if client is not None:
                    return client
        variants = _phone_variants(phone)
        if not variants:
            return None
        matches = (
            db.query(models.ClientAccount)
            .filter(models.ClientAccount.phone.in_(variants))
            .limit(2)
            .all()
        )
        if len(matches) != 1:
            return None
        return matches[0]


def parse_stk_callback(payload: dict[str, Any]) -> tuple[str, ChargeStatus]:
    """Extract the checkout id and status from a Daraja STK result callback."""

    callback = (payload.get("Body") or {}).get("stkCallback") or {}
    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id:
        raise ValueError("Callback is missing CheckoutRequestID")

    status = parse_result_code(callback.get("ResultCode"), callback.get("ResultDesc"), raw=payload)
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    metadata = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}
    if status.status == STATUS_COMPLETED:
        status.receipt_number = metadata.get("MpesaReceiptNumber")
        if metadata.get("Amount") is not None:
            status.amount = _normalize_amount(metadata["Amount"])
    return checkout_request_id, status


class CheckoutService:
    """Starts mobile-money charges and settles them once the gateway confirms."""

    def __init__(
        self,
        gateway: MobileMoneyGateway,
        monitor: PaymentStatusMonitor,
        *,
        access_server: AccessServerClient | None = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ) -> None:
        self.gateway = gateway
        self.monitor = monitor
        self.access_server = access_server
        self.session_factory = session_factory

    def initiate_checkout(
        self,
        db: Session,
        *,
        client_id: str,
        amount: Decimal | float | str,
        phone: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> models.PendingCharge:
        try:
            normalized = _normalize_amount(amount)
        except (InvalidOperation, ValueError) as exc:
            raise CheckoutError("Amount is not a number") from exc
        if normalized <= 0:
            raise CheckoutError("Amount must be greater than zero")

        client = db.get(models.ClientAccount, str(client_id))
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        payer_phone = phone or client.phone
        if not payer_phone:
            raise CheckoutError("A phone number is required for mobile-money checkout")

        charge = models.PendingCharge(client_id=client.id, amount=normalized, phone=payer_phone)
        db.add(charge)
        db.commit()
        payment_id = str(charge.id)

        try:
            initiation = self.gateway.initiate_charge(
                payer_phone, normalized, reference=payment_id.split("-")[0].upper()
            )
        except (GatewayError, ValueError) as exc:
            charge.status = models.PendingChargeStatus.FAILED
            charge.status_message = str(exc)
            charge.resolved_at = datetime.now(timezone.utc)
            db.commit()
            LOGGER.warning("Checkout %s could not be initiated: %s", payment_id, exc)
            raise CheckoutError(f"Payment gateway rejected the charge: {exc}") from exc

        charge.checkout_request_id = initiation.checkout_request_id
        db.commit()
        self.monitor.start_monitoring(
            payment_id,
            initiation.checkout_request_id,
            self.callbacks_for(payment_id),
            timeout=timeout,
        )
        return charge

    def callbacks_for(self, payment_id: str) -> MonitorCallbacks:
        return MonitorCallbacks(
            on_success=lambda status: self.complete_charge(payment_id, status),
            on_failure=lambda status: self.fail_charge(payment_id, status),
            on_timeout=lambda: self.expire_charge(payment_id),
        )

    def handle_stk_callback(self, payload: dict[str, Any]) -> bool:
        """Apply a gateway result webhook. Duplicates and unknown ids are ignored.

        A success that arrives after the charge was closed as failed or timed
        out is still credited.
        """

        checkout_request_id, status = parse_stk_callback(payload)
        if self.monitor.notify_result(checkout_request_id, status):
            return True

        with session_scope(self.session_factory) as session:
            charge = (
                session.query(models.PendingCharge)
                .filter(models.PendingCharge.checkout_request_id == checkout_request_id)
                .one_or_none()
            )
            if charge is None or charge.status == models.PendingChargeStatus.COMPLETED:
                LOGGER.debug("Ignoring STK callback for %s", checkout_request_id)
                return False
            payment_id = str(charge.id)
            late = charge.status == models.PendingChargeStatus.FAILED

        if late:
            if not status.is_completed:
                return False
            LOGGER.warning(
                "Checkout %s confirmed by the gateway after it was closed; crediting it now",
                payment_id,
            )
            return self.complete_charge(payment_id, status, reopen=True) is not None
        if status.is_completed:
            return self.complete_charge(payment_id, status) is not None
        if status.is_failed:
            return self.fail_charge(payment_id, status)
        return False

    def complete_charge(
        self, payment_id: str, status: ChargeStatus, *, reopen: bool = False
    ) -> Optional[PaymentProcessingResult]:
        """Mark the charge completed and credit it through the standard payment path.

        ``reopen`` also accepts a charge already closed as failed.
        """
        with session_scope(self.session_factory) as session:
            charge = self._claim_pending(session, payment_id, reopen=reopen)
            if charge is None:
                return None
            charge.status = models.PendingChargeStatus.COMPLETED
            charge.status_message = status.message
            charge.receipt_number = status.receipt_number
            charge.resolved_at = datetime.now(timezone.utc)
            session.commit()

            amount = status.amount or Decimal(charge.amount)
            result = PaymentService.process_payment(
                session,
                PaymentRequest(
                    client_id=str(charge.client_id),
                    amount=amount,
                    method=models.PaymentMethod.MPESA,
                    reference=charge.checkout_request_id,
                    receipt_number=status.receipt_number,
                ),
                provisioner=NetworkAccessProvisioner(session, self.access_server),
            )
            if not result.success and result.code != ERROR_DUPLICATE_RECEIPT:
                LOGGER.error(
                    "Confirmed payment %s could not be credited: %s", payment_id, result.error
                )
                session.add(
                    models.UnmatchedPayment(
                        amount=amount,
                        receipt_number=status.receipt_number,
                        reference_number=charge.checkout_request_id,
                        phone=charge.phone,
                        description=f"Checkout {payment_id} confirmed but not credited: {result.error}",
                    )
                )
            return result

    def fail_charge(self, payment_id: str, status: ChargeStatus) -> bool:
        return self._close_charge(payment_id, status.message or "Payment failed")

    def expire_charge(self, payment_id: str) -> bool:
        return self._close_charge(payment_id, "Timed out waiting for payment confirmation")

    def _close_charge(self, payment_id: str, message: str) -> bool:
        with session_scope(self.session_factory) as session:
            charge = self._claim_pending(session, payment_id)
            if charge is None:
                return False
            charge.status = models.PendingChargeStatus.FAILED
            charge.status_message = message
            charge.resolved_at = datetime.now(timezone.utc)
            LOGGER.info("Checkout %s closed: %s", payment_id, message)
            return True

    @staticmethod
    def _claim_pending(
        session: Session, payment_id: str, *, reopen: bool = False
    ) -> Optional[models.PendingCharge]:
        charge = session.get(models.PendingCharge, payment_id)
        if charge is None:
            LOGGER.warning("Pending charge %s not found", payment_id)
            return None
        claimable = {models.PendingChargeStatus.PENDING}
        if reopen:
            claimable.add(models.PendingChargeStatus.FAILED)
        if charge.status not in claimable:
            LOGGER.debug("Pending charge %s already %s", payment_id, charge.status.value)
            return None
        return charge
