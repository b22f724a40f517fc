"""Payment, wallet and checkout models."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, UTCDateTime


def _enum(enum_cls: type[enum.Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
    )


class PaymentMethod(str, enum.Enum):
    """Supported payment methods."""

    MPESA = "mpesa"
    BANK = "bank"
    CASH = "cash"


PAYMENT_METHOD_ENUM = _enum(PaymentMethod, "payment_method_enum")


class PendingChargeStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


PENDING_CHARGE_STATUS_ENUM = _enum(PendingChargeStatus, "pending_charge_status_enum")


class WalletTransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


WALLET_TRANSACTION_TYPE_ENUM = _enum(WalletTransactionType, "wallet_transaction_type_enum")


class PendingCharge(Base):
    """A mobile-money charge awaiting confirmation from the gateway."""

    __tablename__ = "pending_charges"
    __table_args__ = (CheckConstraint("amount > 0", name="pending_charges_amount_positive"),)

    id = Column("payment_id", GUID(), primary_key=True, default=uuid.uuid4)
    checkout_request_id = Column(String(120), nullable=True, unique=True)
    client_id = Column(
        GUID(),
        ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    phone = Column(String(32), nullable=False)
    status = Column(
        PENDING_CHARGE_STATUS_ENUM,
        nullable=False,
        default=PendingChargeStatus.PENDING,
    )
    status_message = Column(Text, nullable=True)
    receipt_number = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    resolved_at = Column(UTCDateTime(), nullable=True)

    client = relationship("ClientAccount")


class ServicePayment(Base):
    """Payment credited to a client's wallet."""

    __tablename__ = "service_payments"
    __table_args__ = (CheckConstraint("amount > 0", name="service_payments_amount_positive"),)

    id = Column("payment_id", GUID(), primary_key=True, default=uuid.uuid4)
    client_id = Column(
        GUID(),
        ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(PAYMENT_METHOD_ENUM, nullable=False, default=PaymentMethod.MPESA)
    reference = Column(String(120), nullable=True)
    receipt_number = Column(String(64), nullable=True, unique=True)
    note = Column(Text, nullable=True)
    paid_at = Column(UTCDateTime(), nullable=False, server_default=func.now())

    client = relationship("ClientAccount", back_populates="payments")


class WalletTransaction(Base):
    """Append-only ledger of wallet movements."""

    __tablename__ = "wallet_transactions"

    id = Column("transaction_id", GUID(), primary_key=True, default=uuid.uuid4)
    client_id = Column(
        GUID(),
        ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_type = Column(WALLET_TRANSACTION_TYPE_ENUM, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=True)
    reference = Column(String(120), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())

    client = relationship("ClientAccount", back_populates="wallet_transactions")


class UnmatchedPayment(Base):
    """Incoming payment that could not be attributed to a client."""

    __tablename__ = "unmatched_payments"

    id = Column("unmatched_id", GUID(), primary_key=True, default=uuid.uuid4)
    amount = Column(Numeric(12, 2), nullable=False)
    receipt_number = Column(String(64), nullable=True)
    reference_number = Column(String(120), nullable=True)
    phone = Column(String(32), nullable=True)
    payer_name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    received_at = Column(UTCDateTime(), nullable=False, server_default=func.now())


Index("service_payments_client_idx", ServicePayment.client_id, ServicePayment.paid_at)
Index("wallet_transactions_client_idx", WalletTransaction.client_id, WalletTransaction.created_at)
Index("pending_charges_client_idx", PendingCharge.client_id)
Index("unmatched_payments_received_idx", UnmatchedPayment.received_at)
