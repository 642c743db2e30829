"""Durable no-show timer: one deferred, single-fire action per booking."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime


class NoShowTimerStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"  # access confirmed before firing
    FIRED = "fired"  # no-show charge applied
    SKIPPED = "skipped"  # fired but re-check found nothing to do


class NoShowTimer(Base):
    """Persisted due-time for a booking's no-show check; survives restarts."""

    __tablename__ = "no_show_timers"
    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'fired', 'skipped')",
            name="ck_no_show_timers_status",
        ),
        Index("ix_no_show_timers_status_fires_at", "status", "fires_at"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    fires_at = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default=NoShowTimerStatus.SCHEDULED.value)
    created_at = Column(UTCDateTime, nullable=False)
    resolved_at = Column(UTCDateTime, nullable=True)

    booking = relationship("Booking", back_populates="no_show_timer")

    def __repr__(self) -> str:
        return f"<NoShowTimer booking={self.booking_id} status={self.status} fires_at={self.fires_at}>"
