from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import ForbiddenException, InvalidStateException, ValidationException
from app.models.booking import BookingStatus
from app.models.no_show_timer import NoShowTimer, NoShowTimerStatus
from tests._utils import OTHER_USER_ID, PROVIDER_ID

STARTED = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


class TestTimeTracker:
    def test_start_moves_to_in_progress(self, time_tracker, paid_booking):
        booking = time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=STARTED)
        assert booking.status == BookingStatus.IN_PROGRESS.value
        assert booking.actual_start_time == STARTED

    def test_start_requires_confirmed(self, time_tracker, booking_factory):
        with pytest.raises(InvalidStateException):
            time_tracker.start_work(booking_factory().id, PROVIDER_ID, now=STARTED)

    def test_start_by_other_provider_forbidden(self, time_tracker, paid_booking):
        with pytest.raises(ForbiddenException):
            time_tracker.start_work(paid_booking.id, OTHER_USER_ID, now=STARTED)

    def test_start_cancels_scheduled_timer(self, db, time_tracker, arrival_verifier, paid_booking):
        arrival_verifier.record_arrival(paid_booking.id, 40.0, -74.0, now=STARTED - timedelta(minutes=5))
        time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=STARTED)
        assert db.query(NoShowTimer).one().status == NoShowTimerStatus.CANCELLED.value

    def test_ninety_minutes_bills_one_and_a_half_hours(self, completed_booking):
        assert completed_booking.status == BookingStatus.COMPLETED.value
        assert completed_booking.actual_hours_worked == Decimal("1.5")
        assert completed_booking.final_amount == Decimal("37.5")
        assert completed_booking.completed_at == STARTED + timedelta(minutes=90)
        # the estimate stays for comparison
        assert completed_booking.total_price == Decimal("50.00")

    def test_partial_minutes_are_not_rounded(self, time_tracker, paid_booking):
        time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=STARTED)
        booking = time_tracker.end_work(
            paid_booking.id, PROVIDER_ID, now=STARTED + timedelta(minutes=100)
        )
        # 100 minutes at $25/hour
        assert booking.actual_hours_worked == Decimal("1.666667")
        assert booking.final_amount == Decimal("41.666675")

    def test_stored_amount_matches_stored_hours(self, db, time_tracker, paid_booking):
        time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=STARTED)
        time_tracker.end_work(paid_booking.id, PROVIDER_ID, now=STARTED + timedelta(minutes=20))

        db.expire_all()
        booking = db.get(type(paid_booking), paid_booking.id)
        assert booking.actual_hours_worked == Decimal("0.333333")
        assert booking.final_amount == Decimal("8.333325")
        assert booking.final_amount == booking.hourly_rate * booking.actual_hours_worked

    def test_end_before_start_rejected(self, time_tracker, paid_booking):
        time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=STARTED)
        with pytest.raises(ValidationException):
            time_tracker.end_work(paid_booking.id, PROVIDER_ID, now=STARTED - timedelta(seconds=1))

    def test_end_requires_in_progress(self, time_tracker, paid_booking):
        with pytest.raises(InvalidStateException):
            time_tracker.end_work(paid_booking.id, PROVIDER_ID, now=STARTED)
