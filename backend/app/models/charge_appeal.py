"""Charge appeal: a customer's dispute against an applied no-show charge."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime


class AppealReason(str, Enum):
    """Closed set of reasons a customer may give for an appeal."""

    PRESENCE_CLAIMED = "was_present"
    PROVIDER_LATE = "cleaner_late"
    PROVIDER_NO_SHOW = "cleaner_no_show"
    EMERGENCY = "emergency"
    MISCOMMUNICATION = "miscommunication"
    TECHNICAL_ISSUE = "technical_issue"
    OTHER = "other"


class AppealStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChargeAppeal(Base):
    """Appeal state for a single no-show charge. Resolved exactly once."""

    __tablename__ = "charge_appeals"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_charge_appeals_status"
        ),
        # At most one open appeal per booking
        Index(
            "uq_charge_appeals_pending_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id = Column(String(26), nullable=False, index=True)

    reason = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=AppealStatus.PENDING.value, index=True)

    reviewer_id = Column(String(26), nullable=True)
    reviewer_notes = Column(Text, nullable=True)
    resolved_at = Column(UTCDateTime, nullable=True)
    refund_reference = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, nullable=False)

    booking = relationship("Booking", back_populates="appeals")

    def __repr__(self) -> str:
        return f"<ChargeAppeal {self.id} booking={self.booking_id} status={self.status}>"
