# backend/alembic/versions/001_booking_escrow.py
"""Booking lifecycle and escrow - bookings, ledger, no-show timers, appeals

Revision ID: 001_booking_escrow
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the booking aggregate with its optimistic ``version`` column, the
append-only escrow ledger (releases and gateway transactions), the durable
no-show timers, charge appeals, platform configuration, and notifications.

Bookings are never deleted; ledger rows reference them with RESTRICT.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_booking_escrow"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = (
    "'pending', 'confirmed', 'in_progress', 'payment_pending', 'payment_processing', "
    "'payment_failed', 'completed', 'auto_release_pending', 'payment_released', 'cancelled'"
)
PAYMENT_STATUSES = "'unpaid', 'paid', 'processing', 'failed', 'released'"


def upgrade() -> None:
    """Create booking and escrow tables."""
    print("Creating booking and escrow tables...")

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("customer_id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(26), nullable=True),
        # Schedule and pricing snapshot
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("estimated_hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("platform_commission", sa.Numeric(10, 2), nullable=False),
        sa.Column("provider_earnings", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_address", sa.Text(), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        # Lifecycle
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        # Arrival
        sa.Column("provider_arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrival_lat", sa.Numeric(9, 6), nullable=True),
        sa.Column("arrival_lng", sa.Numeric(9, 6), nullable=True),
        sa.Column(
            "customer_confirmed_access", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        # No-show
        sa.Column("no_show_detected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("no_show_charge_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("no_show_charged_at", sa.DateTime(timezone=True), nullable=True),
        # Time tracking
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_hours_worked", sa.Numeric(12, 6), nullable=True),
        sa.Column("final_amount", sa.Numeric(18, 8), nullable=True),
        # Payment
        sa.Column("customer_payment_method_id", sa.String(255), nullable=True),
        sa.Column("provider_account_id", sa.String(255), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="unpaid"),
        # Decline / cancellation
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(f"status IN ({BOOKING_STATUSES})", name="ck_bookings_status"),
        sa.CheckConstraint(
            f"payment_status IN ({PAYMENT_STATUSES})", name="ck_bookings_payment_status"
        ),
        sa.CheckConstraint("hourly_rate > 0", name="ck_bookings_hourly_rate_positive"),
        sa.CheckConstraint("estimated_hours > 0", name="ck_bookings_estimated_hours_positive"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"])
    op.create_index("ix_bookings_booking_date", "bookings", ["booking_date"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_reference", "bookings", ["payment_reference"])
    op.create_index("ix_bookings_completed_at", "bookings", ["completed_at"])
    # Auto-release candidate scan
    op.create_index("ix_bookings_status_completed_at", "bookings", ["status", "completed_at"])

    op.create_table(
        "payment_releases",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("released_by", sa.String(26), nullable=False),
        sa.Column("release_type", sa.String(20), nullable=False),
        sa.Column("amount_released", sa.Numeric(10, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("transfer_reference", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "release_type IN ('full', 'admin_override', 'auto')",
            name="ck_payment_releases_release_type",
        ),
        sa.CheckConstraint(
            "amount_released >= 0", name="ck_payment_releases_amount_nonnegative"
        ),
    )
    op.create_index("ix_payment_releases_booking_id", "payment_releases", ["booking_id"])

    op.create_table(
        "escrow_transactions",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("source_reference", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "kind IN ('capture', 'no_show_charge', 'refund')", name="ck_escrow_transactions_kind"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'voided')",
            name="ck_escrow_transactions_status",
        ),
    )
    op.create_index("ix_escrow_transactions_booking_id", "escrow_transactions", ["booking_id"])
    op.create_index(
        "ix_escrow_transactions_source_reference", "escrow_transactions", ["source_reference"]
    )

    op.create_table(
        "no_show_timers",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("fires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("booking_id"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'fired', 'skipped')",
            name="ck_no_show_timers_status",
        ),
    )
    # Due-timer sweep
    op.create_index("ix_no_show_timers_status_fires_at", "no_show_timers", ["status", "fires_at"])

    op.create_table(
        "charge_appeals",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("customer_id", sa.String(26), nullable=False),
        sa.Column("reason", sa.String(30), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reviewer_id", sa.String(26), nullable=True),
        sa.Column("reviewer_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reference", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_charge_appeals_status"
        ),
    )
    op.create_index("ix_charge_appeals_booking_id", "charge_appeals", ["booking_id"])
    op.create_index("ix_charge_appeals_customer_id", "charge_appeals", ["customer_id"])
    op.create_index("ix_charge_appeals_status", "charge_appeals", ["status"])
    # At most one open appeal per booking
    op.create_index(
        "uq_charge_appeals_pending_booking",
        "charge_appeals",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "platform_config",
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("value_json", sa.JSON(), nullable=False),
        sa.Column("updated_by", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("quiet_hours_start", sa.String(5), nullable=True),
        sa.Column("quiet_hours_end", sa.String(5), nullable=True),
        sa.Column(
            "timezone", sa.String(64), nullable=False, server_default="America/New_York"
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("suppressed_reason", sa.String(50), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "category IN ('booking', 'payment', 'no_show', 'appeal', 'system')",
            name="ck_notifications_category",
        ),
    )
    op.create_index(
        "ix_notifications_user_created_at", "notifications", ["user_id", "created_at"]
    )

    print("Booking and escrow tables created successfully!")


def downgrade() -> None:
    """Drop booking and escrow tables."""
    print("Dropping booking and escrow tables...")

    op.drop_index("ix_notifications_user_created_at", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("notification_preferences")
    op.drop_table("platform_config")

    op.drop_index("uq_charge_appeals_pending_booking", table_name="charge_appeals")
    op.drop_index("ix_charge_appeals_status", table_name="charge_appeals")
    op.drop_index("ix_charge_appeals_customer_id", table_name="charge_appeals")
    op.drop_index("ix_charge_appeals_booking_id", table_name="charge_appeals")
    op.drop_table("charge_appeals")

    op.drop_index("ix_no_show_timers_status_fires_at", table_name="no_show_timers")
    op.drop_table("no_show_timers")

    op.drop_index("ix_escrow_transactions_source_reference", table_name="escrow_transactions")
    op.drop_index("ix_escrow_transactions_booking_id", table_name="escrow_transactions")
    op.drop_table("escrow_transactions")

    op.drop_index("ix_payment_releases_booking_id", table_name="payment_releases")
    op.drop_table("payment_releases")

    for index_name in (
        "ix_bookings_status_completed_at",
        "ix_bookings_completed_at",
        "ix_bookings_payment_reference",
        "ix_bookings_status",
        "ix_bookings_booking_date",
        "ix_bookings_provider_id",
        "ix_bookings_customer_id",
        "ix_bookings_id",
    ):
        op.drop_index(index_name, table_name="bookings")
    op.drop_table("bookings")

    print("Booking and escrow tables dropped.")
