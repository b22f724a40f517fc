"""Operator-driven reconciliation of unattributed payments."""

from __future__ import annotations

import logging
from typing import Iterable, Tuple

from sqlalchemy.orm import Session

from .. import models
from .errors import NotFoundError
from .network_access import NetworkAccessProvisioner
from .payments import PaymentProcessingResult, PaymentRequest, PaymentService

LOGGER = logging.getLogger(__name__)


class PaymentReconciler:
    """Re-drives unmatched payments through the standard payment path."""

    def __init__(self, db: Session, provisioner: NetworkAccessProvisioner | None = None) -> None:
        self.db = db
        self.provisioner = provisioner

    def list_unmatched(
        self, *, skip: int = 0, limit: int = 50
    ) -> Tuple[Iterable[models.UnmatchedPayment], int]:
        query = self.db.query(models.UnmatchedPayment)
        total = query.count()
        items = (
            query.order_by(models.UnmatchedPayment.received_at.desc())
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    def match_payment_to_client(
        self, unmatched_payment_id: str, client_id: str
    ) -> PaymentProcessingResult:
        """Credit ``client_id`` with an unmatched payment.

        The unmatched record is deleted only when processing succeeds; on a
        reported failure it is left in place so the operator can retry.
        """
        unmatched = self.db.get(models.UnmatchedPayment, str(unmatched_payment_id))
        if unmatched is None:
            raise NotFoundError(f"Unmatched payment {unmatched_payment_id} not found")

        request = PaymentRequest(
            client_id=client_id,
            amount=unmatched.amount,
            method=models.PaymentMethod.MPESA,
            reference=unmatched.reference_number,
            receipt_number=unmatched.receipt_number,
            note=f"Reconciled from unmatched payment {unmatched.id}",
        )
        result = PaymentService.process_payment(self.db, request, provisioner=self.provisioner)
        if not result.success:
            LOGGER.warning(
                "Unmatched payment %s was not applied to client %s: %s",
                unmatched_payment_id,
                client_id,
                result.error,
            )
            return result

        unmatched = self.db.get(models.UnmatchedPayment, str(unmatched_payment_id))
        if unmatched is not None:
            self.db.delete(unmatched)
            self.db.commit()
        LOGGER.info(
            "Unmatched payment %s applied to client %s as payment %s",
            unmatched_payment_id,
            client_id,
            result.payment_id,
        )
        return result
