"""Router exposing checkout, payment processing and reconciliation operations."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..dependencies import get_access_server, get_checkout_service
from ..services import (
    AccessServerClient,
    CheckoutError,
    CheckoutService,
    GatewayError,
    NetworkAccessProvisioner,
    NotFoundError,
    PaymentProcessingResult,
    PaymentReconciler,
    PaymentRequest,
    PaymentService,
)
from ..services.payments import (
    ERROR_CLIENT_NOT_FOUND,
    ERROR_DUPLICATE_RECEIPT,
    ERROR_INVALID_AMOUNT,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()

FAILURE_STATUS_CODES = {
    ERROR_INVALID_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ERROR_CLIENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ERROR_DUPLICATE_RECEIPT: status.HTTP_409_CONFLICT,
}


def _processing_response(result: PaymentProcessingResult):
    body = schemas.PaymentProcessResponse(
        success=result.success,
        payment_id=result.payment_id,
        new_balance=result.new_balance,
        auto_renewed=result.auto_renewed,
        sync=(
            schemas.SyncSummary(pushed=result.sync.pushed, error=result.sync.error)
            if result.sync is not None
            else None
        ),
        error=result.error,
        code=result.code,
    )
    if result.success:
        return body
    status_code = FAILURE_STATUS_CODES.get(
        result.code or "", status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _charge_read(
    charge: models.PendingCharge, checkout: CheckoutService | None = None
) -> schemas.PendingChargeRead:
    data = schemas.PendingChargeRead.model_validate(charge)
    if checkout is not None:
        data.monitoring = checkout.monitor.is_monitoring(str(charge.id))
    return data


@router.post(
    "/checkout",
    response_model=schemas.PendingChargeRead,
    status_code=status.HTTP_201_CREATED,
)
def create_checkout(
    payload: schemas.CheckoutCreate,
    db: Session = Depends(get_db),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> schemas.PendingChargeRead:
    """Send a charge prompt to the payer's phone and monitor it in the background."""

    try:
        charge = checkout.initiate_checkout(
            db, client_id=payload.client_id, amount=payload.amount, phone=payload.phone
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CheckoutError as exc:
        status_code = (
            status.HTTP_502_BAD_GATEWAY
            if isinstance(exc.__cause__, GatewayError)
            else status.HTTP_400_BAD_REQUEST
        )
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    return _charge_read(charge, checkout)


@router.get("/checkout/{payment_id}", response_model=schemas.PendingChargeRead)
def get_checkout(payment_id: str, db: Session = Depends(get_db)) -> schemas.PendingChargeRead:
    charge = db.get(models.PendingCharge, payment_id)
    if charge is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout not found")
    return _charge_read(charge)


@router.delete("/checkout/{payment_id}/monitor", status_code=status.HTTP_204_NO_CONTENT)
def stop_checkout_monitor(
    payment_id: str, checkout: CheckoutService = Depends(get_checkout_service)
) -> Response:
    if not checkout.monitor.stop_monitoring(payment_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Checkout is not being monitored"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/process", response_model=schemas.PaymentProcessResponse)
def process_payment(
    payload: schemas.PaymentProcessRequest,
    db: Session = Depends(get_db),
    access_server: AccessServerClient = Depends(get_access_server),
):
    result = PaymentService.process_payment(
        db,
        PaymentRequest(
            client_id=payload.client_id,
            amount=payload.amount,
            method=payload.method,
            reference=payload.reference,
            receipt_number=payload.receipt_number,
            note=payload.note,
        ),
        provisioner=NetworkAccessProvisioner(db, access_server),
    )
    return _processing_response(result)


@router.post("/mpesa/stk-callback", response_model=schemas.GatewayAcknowledgement)
def receive_stk_callback(
    payload: dict[str, Any] = Body(...),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> schemas.GatewayAcknowledgement:
    try:
        applied = checkout.handle_stk_callback(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.GatewayAcknowledgement(details={"applied": applied})


@router.post("/mpesa/c2b-confirmation", response_model=schemas.GatewayAcknowledgement)
def receive_c2b_confirmation(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    access_server: AccessServerClient = Depends(get_access_server),
) -> schemas.GatewayAcknowledgement:
    outcome = PaymentService.record_c2b_payment(
        db, payload, provisioner=NetworkAccessProvisioner(db, access_server)
    )
    return schemas.GatewayAcknowledgement(
        details={
            "matched": outcome.matched,
            "client_id": outcome.client_id,
            "unmatched_id": outcome.unmatched_id,
        }
    )


@router.get("/unmatched", response_model=schemas.UnmatchedPaymentListResponse)
def list_unmatched_payments(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> schemas.UnmatchedPaymentListResponse:
    items, total = PaymentReconciler(db).list_unmatched(skip=skip, limit=limit)
    return schemas.UnmatchedPaymentListResponse.from_rows(
        items,
        total,
        skip=skip,
        limit=limit,
        convert=schemas.UnmatchedPaymentRead.model_validate,
    )


@router.post("/unmatched/{unmatched_id}/match", response_model=schemas.PaymentProcessResponse)
def match_unmatched_payment(
    unmatched_id: str,
    payload: schemas.UnmatchedPaymentMatch,
    db: Session = Depends(get_db),
    access_server: AccessServerClient = Depends(get_access_server),
):
    reconciler = PaymentReconciler(db, NetworkAccessProvisioner(db, access_server))
    try:
        result = reconciler.match_payment_to_client(unmatched_id, payload.client_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _processing_response(result)
