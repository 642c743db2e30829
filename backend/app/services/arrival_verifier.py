# backend/app/services/arrival_verifier.py
"""
Arrival verification for CleanConnect bookings.

Records the provider's on-site arrival (timestamp plus GPS coordinates kept
as dispute evidence, no geofence) and whether the customer let them in.
An arrival without access starts the booking's no-show timer.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, InvalidStateException, ValidationException
from ..core.money import to_decimal
from ..core.timezone_utils import utc_now
from ..models.booking import Booking, BookingStatus
from .base import BaseService, booking_mutex
from .booking_state_machine import BookingStateMachine
from .config_service import PlatformSettingsService
from .no_show_service import NoShowService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


def _validate_coordinate(value: Any, name: str, bound: int) -> Decimal:
    try:
        coordinate = to_decimal(value)
    except (ArithmeticError, ValueError):
        raise ValidationException(f"{name} must be a number")
    if not coordinate.is_finite() or abs(coordinate) > bound:
        raise ValidationException(
            f"{name} must be between -{bound} and {bound}", details={name: str(value)}
        )
    return coordinate


class ArrivalVerifier(BaseService):
    def __init__(
        self,
        db: Session,
        state_machine: Optional[BookingStateMachine] = None,
        no_show_service: Optional[NoShowService] = None,
        notifier: Optional[NotificationService] = None,
        settings_service: Optional[PlatformSettingsService] = None,
    ):
        super().__init__(db)
        self.notifier = notifier or NotificationService(db)
        self.settings_service = settings_service or PlatformSettingsService(db)
        self.state_machine = state_machine or BookingStateMachine(
            db, notifier=self.notifier, settings_service=self.settings_service
        )
        self.no_show_service = no_show_service or NoShowService(
            db,
            gateway=self.state_machine.gateway,
            notifier=self.notifier,
            settings_service=self.settings_service,
        )

    @BaseService.measure_operation("record_arrival")
    def record_arrival(
        self,
        booking_id: str,
        latitude: Any,
        longitude: Any,
        customer_confirmed: bool = False,
        provider_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Record the provider's arrival.

        Coordinates are written on the first arrival only; later calls may
        still flip ``customer_confirmed_access``. Without access a single
        no-show timer is scheduled for the booking.
        """
        lat = _validate_coordinate(latitude, "latitude", 90)
        lng = _validate_coordinate(longitude, "longitude", 180)
        now = now or utc_now()
        timer = None

        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.state_machine.load_for_update(booking_id)
                self.state_machine.require_status(
                    booking, {BookingStatus.CONFIRMED}, "record arrival for"
                )
                if provider_id and booking.provider_id and booking.provider_id != provider_id:
                    raise ForbiddenException("Only the assigned provider can record arrival")

                first_arrival = booking.provider_arrived_at is None
                if first_arrival:
                    booking.provider_arrived_at = now
                    booking.arrival_lat = lat
                    booking.arrival_lng = lng
                booking.updated_at = now

                if customer_confirmed:
                    self._grant_access(booking, now)
                elif not booking.customer_confirmed_access:
                    timer = self.no_show_service.schedule_timer(booking, now)
                    if timer is not None:
                        grace = int((timer.fires_at - now).total_seconds() // 60)
                        self.notifier.notify(
                            booking.customer_id,
                            "Your Cleaner Has Arrived",
                            "Your cleaner is at the door. Please confirm access within "
                            f"{grace} minutes to avoid a no-show charge.",
                            "booking",
                            {"booking_id": booking.id, "fires_at": timer.fires_at.isoformat()},
                        )

        if timer is not None:
            self.no_show_service.dispatch_timer(timer)
        self.log_operation(
            "record_arrival",
            booking_id=booking_id,
            first_arrival=first_arrival,
            timer_scheduled=timer is not None,
        )
        return booking

    @BaseService.measure_operation("confirm_customer_access")
    def confirm_customer_access(
        self, booking_id: str, customer_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Booking:
        """
        Mark access granted and cancel the pending no-show timer.

        A no-show charge that already fired stays in place; only an approved
        appeal refunds it.
        """
        now = now or utc_now()
        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.state_machine.load_for_update(booking_id)
                if booking.is_terminal:
                    raise InvalidStateException(
                        f"Cannot confirm access for a booking in status {booking.status}",
                        current_status=booking.status,
                    )
                if booking.provider_arrived_at is None:
                    raise InvalidStateException(
                        "Provider arrival has not been recorded",
                        current_status=booking.status,
                        details={"booking_id": booking.id},
                    )
                if customer_id and booking.customer_id != customer_id:
                    raise ForbiddenException("Only the booking's customer can confirm access")
                if booking.customer_confirmed_access:
                    return booking
                self._grant_access(booking, now)
        return booking

    def _grant_access(self, booking: Booking, now: datetime) -> None:
        already = booking.customer_confirmed_access
        booking.customer_confirmed_access = True
        booking.updated_at = now
        self.no_show_service.cancel_timer(booking.id, now)
        if not already:
            self.notifier.notify(
                booking.provider_id,
                "Access Confirmed",
                "The customer confirmed access. You can start the job.",
                "booking",
                {"booking_id": booking.id},
            )
