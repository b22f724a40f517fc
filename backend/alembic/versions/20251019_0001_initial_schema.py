"""Initial NetPulse schema: packages, accounts, credentials, payments and audit."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20251019_0001"
down_revision = None
branch_labels = None
depends_on = None


SQLITE_UUID_DEFAULT = sa.text(
    "lower(hex(randomblob(4)) || '-' || hex(randomblob(2)) || '-4' || "
    "substr(hex(randomblob(2)), 2) || '-' || substr('89ab', abs(random()) % 4 + 1, 1) || "
    "substr(hex(randomblob(2)), 2) || '-' || hex(randomblob(6)))"
)


def _dialect_settings():
    bind = op.get_bind()
    dialect = bind.dialect.name if bind else "sqlite"

    uuid_type = sa.String(length=36)
    uuid_default = SQLITE_UUID_DEFAULT
    json_type = sa.JSON()
    inet_type = sa.String(length=45)

    if dialect == "postgresql":
        uuid_type = postgresql.UUID(as_uuid=True)
        uuid_default = sa.text("gen_random_uuid()")
        json_type = postgresql.JSONB()
        inet_type = postgresql.INET()

    return uuid_type, uuid_default, json_type, inet_type


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    uuid_type, uuid_default, json_type, inet_type = _dialect_settings()

    op.create_table(
        "service_packages",
        sa.Column("package_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("speed", sa.String(length=32), nullable=False),
        sa.Column("monthly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("session_timeout", sa.Integer(), nullable=False, server_default="86400"),
        sa.Column("idle_timeout", sa.Integer(), nullable=False, server_default="1800"),
        sa.Column("billing_period_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.CheckConstraint("monthly_rate >= 0", name="service_packages_rate_non_negative"),
        sa.CheckConstraint("billing_period_days > 0", name="service_packages_period_positive"),
    )

    op.create_table(
        "client_accounts",
        sa.Column("client_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column(
            "subscription_status",
            sa.String(length=12),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("monthly_rate", sa.Numeric(12, 2), nullable=False, server_default="0"),
        _timestamp("subscription_end_date", nullable=True),
        _timestamp("disconnection_scheduled_at", nullable=True),
        sa.Column(
            "service_package_id",
            uuid_type,
            sa.ForeignKey("service_packages.package_id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("monthly_rate >= 0", name="client_accounts_rate_non_negative"),
    )
    op.create_index("ix_client_accounts_phone", "client_accounts", ["phone"])
    op.create_index(
        "client_accounts_status_end_idx",
        "client_accounts",
        ["subscription_status", "subscription_end_date"],
    )

    op.create_table(
        "network_credentials",
        sa.Column("credential_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("username", sa.String(length=120), nullable=False, unique=True),
        sa.Column("secret", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("download_kbps", sa.Integer(), nullable=False),
        sa.Column("upload_kbps", sa.Integer(), nullable=False),
        sa.Column("session_timeout_sec", sa.Integer(), nullable=False),
        sa.Column("idle_timeout_sec", sa.Integer(), nullable=False),
        sa.Column("group_name", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("sync_status", sa.String(length=7), nullable=False, server_default="pending"),
        _timestamp("last_synced_at", nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "access_routers",
        sa.Column("router_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("ip_address", inet_type, nullable=True),
        sa.Column(
            "connection_status",
            sa.String(length=20),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("sync_status", sa.String(length=32), nullable=True),
        _timestamp("last_sync_at", nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_diagnostics", json_type, nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "pending_charges",
        sa.Column("payment_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("checkout_request_id", sa.String(length=120), nullable=True, unique=True),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=9), nullable=False, server_default="pending"),
        sa.Column("status_message", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        _timestamp("resolved_at", nullable=True),
        sa.CheckConstraint("amount > 0", name="pending_charges_amount_positive"),
    )
    op.create_index("pending_charges_client_idx", "pending_charges", ["client_id"])

    op.create_table(
        "service_payments",
        sa.Column("payment_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(length=5), nullable=False, server_default="mpesa"),
        sa.Column("reference", sa.String(length=120), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=True, unique=True),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("paid_at"),
        sa.CheckConstraint("amount > 0", name="service_payments_amount_positive"),
    )
    op.create_index(
        "service_payments_client_idx", "service_payments", ["client_id", "paid_at"]
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("transaction_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("client_accounts.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_type", sa.String(length=6), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("reference", sa.String(length=120), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "wallet_transactions_client_idx", "wallet_transactions", ["client_id", "created_at"]
    )

    op.create_table(
        "unmatched_payments",
        sa.Column("unmatched_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        sa.Column("reference_number", sa.String(length=120), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("payer_name", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("received_at"),
    )
    op.create_index("unmatched_payments_received_idx", "unmatched_payments", ["received_at"])

    op.create_table(
        "sync_audit_entries",
        sa.Column("entry_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("client_id", uuid_type, nullable=True),
        sa.Column("router_id", uuid_type, nullable=True),
        sa.Column("action", sa.String(length=15), nullable=False),
        sa.Column("payload", json_type, nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="provisioner"),
        _timestamp("created_at"),
    )
    op.create_index(
        "sync_audit_entries_client_idx", "sync_audit_entries", ["client_id", "created_at"]
    )
    op.create_index("sync_audit_entries_router_idx", "sync_audit_entries", ["router_id"])

    op.create_table(
        "notification_logs",
        sa.Column("id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("client_id", uuid_type, nullable=True),
        sa.Column("notification_type", sa.String(length=17), nullable=False),
        sa.Column("delivery_status", sa.String(length=6), nullable=False),
        sa.Column("channel", sa.String(length=50), nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("notification_logs_client_idx", "notification_logs", ["client_id"])
    op.create_index("notification_logs_created_at_idx", "notification_logs", ["created_at"])

    op.create_table(
        "operational_metric_events",
        sa.Column("event_id", uuid_type, primary_key=True, server_default=uuid_default),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
        sa.Column("labels", json_type, nullable=False),
        sa.Column("details", json_type, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_operational_metric_events_event_type", "operational_metric_events", ["event_type"]
    )
    op.create_index(
        "ix_operational_metric_events_outcome", "operational_metric_events", ["outcome"]
    )
    op.create_index(
        "ix_operational_metric_events_created_at", "operational_metric_events", ["created_at"]
    )


def downgrade() -> None:
    for table_name in (
        "operational_metric_events",
        "notification_logs",
        "sync_audit_entries",
        "unmatched_payments",
        "wallet_transactions",
        "service_payments",
        "pending_charges",
        "access_routers",
        "network_credentials",
        "client_accounts",
        "service_packages",
    ):
        op.drop_table(table_name)
