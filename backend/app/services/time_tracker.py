# backend/app/services/time_tracker.py
"""
Work time tracking and pro-rated billing.

``final_amount = hourly_rate * actual_hours_worked`` with hours taken from the
recorded start and end to six decimals; the estimated ``total_price`` is kept
alongside it for comparison.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.constants import HOURS_QUANTUM
from ..core.exceptions import ForbiddenException, ValidationException
from ..core.money import quantize_money, to_decimal
from ..core.timezone_utils import ensure_utc, hours_between, utc_now
from ..models.booking import Booking, BookingStatus
from .base import BaseService, booking_mutex
from .booking_state_machine import BookingStateMachine
from .no_show_service import NoShowService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class TimeTracker(BaseService):
    def __init__(
        self,
        db: Session,
        state_machine: Optional[BookingStateMachine] = None,
        no_show_service: Optional[NoShowService] = None,
        notifier: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.notifier = notifier or NotificationService(db)
        self.state_machine = state_machine or BookingStateMachine(db, notifier=self.notifier)
        self.no_show_service = no_show_service or NoShowService(
            db,
            gateway=self.state_machine.gateway,
            notifier=self.notifier,
            settings_service=self.state_machine.settings_service,
        )

    @BaseService.measure_operation("start_work")
    def start_work(
        self, booking_id: str, provider_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Booking:
        """Record the actual start and move ``confirmed -> in_progress``."""
        now = now or utc_now()
        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.state_machine.load_for_update(booking_id)
                self.state_machine.require_status(booking, {BookingStatus.CONFIRMED}, "start work on")
                self._ensure_provider(booking, provider_id)
                # Work underway means the provider got in
                self.no_show_service.cancel_timer(booking.id, now)
                self.state_machine.transition(
                    booking,
                    BookingStatus.CONFIRMED,
                    BookingStatus.IN_PROGRESS,
                    "start_work",
                    actual_start_time=now,
                )
                self.notifier.notify(
                    booking.customer_id,
                    "Cleaning Started",
                    "Your cleaner has started the job.",
                    "booking",
                    {"booking_id": booking.id},
                )
        return booking

    @BaseService.measure_operation("end_work")
    def end_work(
        self, booking_id: str, provider_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Booking:
        """
        Record the actual end and move ``in_progress -> completed``.

        Hours are kept to the microhour and billed as stored, so a 90 minute
        job bills exactly 1.5 hours.
        """
        now = now or utc_now()
        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.state_machine.load_for_update(booking_id)
                self.state_machine.require_status(booking, {BookingStatus.IN_PROGRESS}, "end work on")
                self._ensure_provider(booking, provider_id)
                started = ensure_utc(booking.actual_start_time)
                if started is None:
                    raise ValidationException("Booking has no recorded start time")
                if now < started:
                    raise ValidationException(
                        "End time cannot be before the start time",
                        details={"actual_start_time": started.isoformat()},
                    )

                hours = hours_between(started, now).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
                final_amount = to_decimal(booking.hourly_rate) * hours
                self.state_machine.transition(
                    booking,
                    BookingStatus.IN_PROGRESS,
                    BookingStatus.COMPLETED,
                    "end_work",
                    actual_end_time=now,
                    actual_hours_worked=hours,
                    final_amount=final_amount,
                    completed_at=now,
                )
                self.notifier.notify(
                    booking.customer_id,
                    "Cleaning Completed",
                    f"Your cleaning is complete. Final amount: ${quantize_money(final_amount):.2f}. "
                    "Release payment when you're satisfied.",
                    "booking",
                    {"booking_id": booking.id, "actual_hours_worked": str(hours)},
                )
        self.log_operation("end_work", booking_id=booking_id, hours=str(hours))
        return booking

    @staticmethod
    def _ensure_provider(booking: Booking, provider_id: Optional[str]) -> None:
        if provider_id and booking.provider_id and booking.provider_id != provider_id:
            raise ForbiddenException("Only the assigned provider can track work time")
