"""Subscriber accounts owned by the billing domain."""

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
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, UTCDateTime


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle states of a subscription."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DISCONNECTED = "disconnected"


SUBSCRIPTION_STATUS_ENUM = SAEnum(
    SubscriptionStatus,
    name="subscription_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class ClientAccount(Base):
    """Subscriber with a prepaid wallet and a service package."""

    __tablename__ = "client_accounts"
    __table_args__ = (
        CheckConstraint("monthly_rate >= 0", name="client_accounts_rate_non_negative"),
    )

    id = Column("client_id", GUID(), primary_key=True, default=uuid.uuid4)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True, index=True)
    subscription_status = Column(
        SUBSCRIPTION_STATUS_ENUM,
        nullable=False,
        default=SubscriptionStatus.PENDING,
    )
    wallet_balance = Column(Numeric(12, 2), nullable=False, default=0)
    monthly_rate = Column(Numeric(12, 2), nullable=False, default=0)
    subscription_end_date = Column(UTCDateTime(), nullable=True)
    disconnection_scheduled_at = Column(UTCDateTime(), nullable=True)
    service_package_id = Column(
        GUID(),
        ForeignKey("service_packages.package_id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    service_package = relationship("ServicePackage", back_populates="clients")
    network_credential = relationship(
        "NetworkCredential",
        back_populates="client",
        uselist=False,
    )
    payments = relationship("ServicePayment", back_populates="client")
    wallet_transactions = relationship(
        "WalletTransaction",
        back_populates="client",
        order_by="WalletTransaction.created_at",
    )


Index(
    "client_accounts_status_end_idx",
    ClientAccount.subscription_status,
    ClientAccount.subscription_end_date,
)
