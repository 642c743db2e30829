"""
Escrow ledger models.

PaymentRelease rows record money released to the provider; EscrowTransaction
rows record gateway movements (capture, no-show charge, refund) together with
their outcome. Both are append-only: a row's amount never changes once written.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime


class ReleaseType(str, Enum):
    FULL = "full"  # customer-initiated
    ADMIN_OVERRIDE = "admin_override"
    AUTO = "auto"


class EscrowTransactionKind(str, Enum):
    CAPTURE = "capture"
    NO_SHOW_CHARGE = "no_show_charge"
    REFUND = "refund"


class EscrowTransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    VOIDED = "voided"


class PaymentRelease(Base):
    """Funds released from escrow to the provider's linked account."""

    __tablename__ = "payment_releases"
    __table_args__ = (
        CheckConstraint(
            "release_type IN ('full', 'admin_override', 'auto')",
            name="ck_payment_releases_release_type",
        ),
        CheckConstraint("amount_released >= 0", name="ck_payment_releases_amount_nonnegative"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    released_by = Column(String(26), nullable=False)
    release_type = Column(String(20), nullable=False)
    amount_released = Column(Numeric(10, 2), nullable=False)
    commission_amount = Column(Numeric(10, 2), nullable=False)
    transfer_reference = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)

    booking = relationship("Booking", back_populates="releases")

    def __repr__(self) -> str:
        return (
            f"<PaymentRelease booking={self.booking_id} type={self.release_type} "
            f"amount={self.amount_released}>"
        )


class EscrowTransaction(Base):
    """A gateway money movement for a booking and its capture outcome."""

    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('capture', 'no_show_charge', 'refund')", name="ck_escrow_transactions_kind"
        ),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'voided')",
            name="ck_escrow_transactions_status",
        ),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    kind = Column(String(20), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_reference = Column(String(255), nullable=True)
    # For refunds: the capture or charge reference the money came back from
    source_reference = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=EscrowTransactionStatus.PENDING.value)
    failure_reason = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)

    booking = relationship("Booking", back_populates="escrow_transactions")

    def __repr__(self) -> str:
        return f"<EscrowTransaction booking={self.booking_id} kind={self.kind} status={self.status}>"
