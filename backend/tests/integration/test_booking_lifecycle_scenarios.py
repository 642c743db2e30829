"""
End-to-end booking lifecycles through the service layer.

These follow a booking from creation to its terminal state with all services
sharing one session and the in-memory gateway.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.core.enums import Actor, RoleName
from app.models.booking import BookingStatus, PaymentStatus
from app.models.charge_appeal import AppealStatus
from app.models.escrow import PaymentRelease
from app.models.notification import Notification
from tests._utils import ADMIN_ID, CUSTOMER_ID, PROVIDER_ID

ADMIN = Actor(id=ADMIN_ID, role=RoleName.ADMIN)
CUSTOMER = Actor(id=CUSTOMER_ID)
# 10:00 America/New_York on the booking date
TEN_AM = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


def test_no_show_charged_then_refunded_on_appeal(
    db, state_machine, arrival_verifier, no_show_service, appeal_service, gateway, booking_factory
):
    booking = booking_factory(hourly_rate=Decimal("25"), estimated_hours=Decimal("2"))
    assert booking.total_price == Decimal("50.00")
    state_machine.accept(booking.id, PROVIDER_ID)

    arrival_verifier.record_arrival(booking.id, 40.71, -74.0, provider_id=PROVIDER_ID, now=TEN_AM)
    charge = no_show_service.fire_timer(booking.id, now=TEN_AM + timedelta(minutes=15))

    booking = state_machine.get_booking(booking.id)
    assert charge.charge_amount == Decimal("25.00")
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.UNPAID.value
    charged_at = booking.no_show_charged_at

    appeal = appeal_service.submit_appeal(
        booking.id, CUSTOMER_ID, "cleaner_late", "The cleaner left before I reached the door"
    )
    resolved = appeal_service.resolve_appeal(appeal.id, ADMIN, "approved", "Cleaner left early")

    assert resolved.status == AppealStatus.APPROVED.value
    assert gateway.refunds[-1]["amount"] == Decimal("25.00")
    booking = state_machine.get_booking(booking.id)
    assert booking.no_show_detected is True
    assert booking.no_show_charge_amount == Decimal("25.00")
    assert booking.no_show_charged_at == charged_at

    titles = {
        n.title for n in db.query(Notification).filter(Notification.user_id == CUSTOMER_ID).all()
    }
    assert {"No-Show Charge Applied", "Appeal Approved"} <= titles


def test_worked_ninety_minutes_then_full_release(
    db, state_machine, time_tracker, ledger, paid_booking
):
    time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=TEN_AM)
    booking = time_tracker.end_work(paid_booking.id, PROVIDER_ID, now=TEN_AM + timedelta(minutes=90))

    assert booking.status == BookingStatus.COMPLETED.value
    assert booking.actual_hours_worked == Decimal("1.5")
    assert booking.final_amount == Decimal("1.5") * Decimal("25")

    release = ledger.release(booking.id, CUSTOMER)

    booking = state_machine.get_booking(booking.id)
    assert booking.status == BookingStatus.PAYMENT_RELEASED.value
    rows = db.query(PaymentRelease).filter_by(booking_id=booking.id).all()
    assert [r.id for r in rows] == [release.id]
    assert rows[0].release_type == "full"


def test_unreleased_booking_auto_releases_after_delay(
    db, state_machine, ledger, completed_booking
):
    completed_version = completed_booking.version
    before = ledger.evaluate_auto_release(now=completed_booking.completed_at + timedelta(hours=12))
    assert before.released == []
    assert state_machine.get_booking(completed_booking.id).status == BookingStatus.COMPLETED.value

    after = ledger.evaluate_auto_release(now=completed_booking.completed_at + timedelta(hours=25))

    assert after.released == [completed_booking.id]
    booking = state_machine.get_booking(completed_booking.id)
    assert booking.status == BookingStatus.PAYMENT_RELEASED.value
    # completed -> auto_release_pending -> payment_released
    assert booking.version == completed_version + 2
    (release,) = db.query(PaymentRelease).filter_by(booking_id=booking.id).all()
    assert release.release_type == "auto"


def test_declined_booking_is_terminal(state_machine, booking_factory):
    booking = booking_factory()
    state_machine.decline(booking.id, PROVIDER_ID, "No availability that day")

    booking = state_machine.get_booking(booking.id)
    assert booking.is_terminal
    assert booking.status == BookingStatus.CANCELLED.value
