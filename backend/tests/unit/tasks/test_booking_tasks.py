"""
Tests for the booking Celery tasks, called directly (no broker).

Each task opens its own session; here that session is the test session and
the process-wide gateway is the in-memory fake.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import GatewayFailureException, StateConflictException
from app.models.booking import Booking, BookingStatus
from app.models.escrow import EscrowTransaction, EscrowTransactionKind, EscrowTransactionStatus
from app.services import payment_gateway
from app.services.base import booking_mutex
from app.tasks import booking_tasks
from tests._utils import PROVIDER_ID

ARRIVED_AT = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def task_environment(monkeypatch, db, gateway):
    monkeypatch.setattr(booking_tasks, "_open_session", lambda: db)
    monkeypatch.setattr(payment_gateway, "_gateway", gateway)


@pytest.fixture
def arrived_booking(arrival_verifier, paid_booking):
    return arrival_verifier.record_arrival(
        paid_booking.id, 40.0, -74.0, provider_id=PROVIDER_ID, now=ARRIVED_AT
    )


def _no_show_charge(db, booking_id):
    return (
        db.query(EscrowTransaction)
        .filter(
            EscrowTransaction.booking_id == booking_id,
            EscrowTransaction.kind == EscrowTransactionKind.NO_SHOW_CHARGE.value,
        )
        .one()
    )


class TestFireNoShowTimer:
    def test_charges_due_timer(self, db, arrived_booking):
        result = booking_tasks.fire_no_show_timer(arrived_booking.id)

        assert result == {
            "booking_id": arrived_booking.id,
            "charged": True,
            "capture_status": EscrowTransactionStatus.SUCCEEDED.value,
        }
        assert db.get(Booking, arrived_booking.id).no_show_detected is True

    def test_second_fire_is_noop(self, arrived_booking):
        booking_tasks.fire_no_show_timer(arrived_booking.id)
        result = booking_tasks.fire_no_show_timer(arrived_booking.id)
        assert result["charged"] is False

    def test_failed_capture_reported_not_raised(self, db, gateway, arrived_booking):
        gateway.fail_capture = True

        result = booking_tasks.fire_no_show_timer(arrived_booking.id)

        assert result == {
            "booking_id": arrived_booking.id,
            "charged": True,
            "capture_status": "failed",
        }
        assert _no_show_charge(db, arrived_booking.id).status == "failed"

    def test_busy_booking_is_retried(self, arrived_booking):
        with booking_mutex(arrived_booking.id):
            # Called directly, Celery's retry re-raises the original error
            with pytest.raises(StateConflictException):
                booking_tasks.fire_no_show_timer(arrived_booking.id)


class TestPeriodicTasks:
    def test_sweep_fires_missed_timers(self, arrived_booking):
        result = booking_tasks.sweep_due_no_show_timers()

        assert (result["processed"], result["charged"], result["skipped"]) == (1, 1, 0)
        assert result["processed_at"]

    def test_auto_release(self, db, completed_booking):
        result = booking_tasks.evaluate_auto_release()

        assert result["evaluated"] == 1
        assert result["released"] == 1
        assert result["failed"] == []
        assert db.get(Booking, completed_booking.id).status == BookingStatus.PAYMENT_RELEASED.value

    def test_retry_failed_captures(self, db, gateway, no_show_service, arrived_booking):
        gateway.fail_capture = True
        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(arrived_booking.id, now=ARRIVED_AT + timedelta(minutes=20))
        gateway.fail_capture = False

        result = booking_tasks.retry_failed_no_show_captures()

        assert result["captured"] == [arrived_booking.id]
        assert _no_show_charge(db, arrived_booking.id).status == "succeeded"
