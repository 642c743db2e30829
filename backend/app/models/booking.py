# backend/app/models/booking.py
"""
Booking model for CleanConnect platform.

A booking is the central aggregate of the marketplace: a customer books a
cleaner for a date/time and an estimated duration at an hourly rate.
Pricing inputs (hourly rate, commission rate) are snapshotted at creation
so later platform changes never alter existing bookings.

The booking is never deleted; it only moves into a terminal status
(``payment_released`` or ``cancelled``).
"""

from enum import Enum
import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting provider accept/decline
    CONFIRMED = "confirmed"  # Accepted (and, once paid, funds are in escrow)
    IN_PROGRESS = "in_progress"  # Provider started work
    PAYMENT_PENDING = "payment_pending"  # Payment intent created
    PAYMENT_PROCESSING = "payment_processing"  # Gateway still settling
    PAYMENT_FAILED = "payment_failed"  # Gateway declined
    COMPLETED = "completed"  # Work ended; funds held in escrow
    AUTO_RELEASE_PENDING = "auto_release_pending"  # Auto-release delay elapsed
    PAYMENT_RELEASED = "payment_released"  # Escrow released to provider
    CANCELLED = "cancelled"  # Declined or cancelled

    @classmethod
    def terminal(cls) -> frozenset["BookingStatus"]:
        return frozenset({cls.PAYMENT_RELEASED, cls.CANCELLED})


class PaymentStatus(str, Enum):
    """Customer payment state for the booking's escrow."""

    UNPAID = "unpaid"
    PAID = "paid"
    PROCESSING = "processing"
    FAILED = "failed"
    RELEASED = "released"


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in BookingStatus)
_PAYMENT_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PaymentStatus)


class Booking(Base):
    """
    Self-contained booking record between customer and cleaner.

    Design: the estimated ``total_price`` and the pro-rated ``final_amount``
    are both retained for audit; neither overwrites the other.
    """

    __tablename__ = "bookings"

    # Primary key
    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Parties
    customer_id = Column(String(26), nullable=False, index=True)
    provider_id = Column(String(26), nullable=True, index=True)

    # Schedule and pricing snapshot
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    estimated_hours = Column(Numeric(6, 2), nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)  # percent, e.g. 5.00
    platform_commission = Column(Numeric(10, 2), nullable=False)
    provider_earnings = Column(Numeric(10, 2), nullable=False)
    service_address = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)

    # Lifecycle
    status = Column(String(30), nullable=False, default=BookingStatus.PENDING.value, index=True)
    version = Column(Integer, nullable=False, default=1)

    # Arrival verification
    provider_arrived_at = Column(UTCDateTime, nullable=True)
    arrival_lat = Column(Numeric(9, 6), nullable=True)
    arrival_lng = Column(Numeric(9, 6), nullable=True)
    customer_confirmed_access = Column(Boolean, nullable=False, default=False)

    # No-show charge (immutable once set)
    no_show_detected = Column(Boolean, nullable=False, default=False)
    no_show_charge_amount = Column(Numeric(10, 2), nullable=True)
    no_show_charged_at = Column(UTCDateTime, nullable=True)

    # Execution
    actual_start_time = Column(UTCDateTime, nullable=True)
    actual_end_time = Column(UTCDateTime, nullable=True)
    actual_hours_worked = Column(Numeric(12, 6), nullable=True)
    final_amount = Column(Numeric(18, 8), nullable=True)

    # Payment
    customer_payment_method_id = Column(String(255), nullable=True)
    provider_account_id = Column(String(255), nullable=True)
    payment_reference = Column(String(255), nullable=True, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value)

    # Decline / cancellation
    declined_at = Column(UTCDateTime, nullable=True)
    declined_reason = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)
    accepted_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True, index=True)

    # Relationships
    appeals = relationship("ChargeAppeal", back_populates="booking", order_by="ChargeAppeal.created_at")
    releases = relationship("PaymentRelease", back_populates="booking", order_by="PaymentRelease.created_at")
    escrow_transactions = relationship(
        "EscrowTransaction", back_populates="booking", order_by="EscrowTransaction.created_at"
    )
    no_show_timer = relationship("NoShowTimer", back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_bookings_status"),
        CheckConstraint(
            f"payment_status IN ({_PAYMENT_STATUS_VALUES})", name="ck_bookings_payment_status"
        ),
        CheckConstraint("hourly_rate > 0", name="ck_bookings_hourly_rate_positive"),
        CheckConstraint("estimated_hours > 0", name="ck_bookings_estimated_hours_positive"),
        Index("ix_bookings_status_completed_at", "status", "completed_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in BookingStatus.terminal()}

    def __repr__(self) -> str:
        return f"<Booking {self.id} status={self.status} payment={self.payment_status}>"
