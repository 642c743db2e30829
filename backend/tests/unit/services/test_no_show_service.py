"""
Tests for NoShowService: the durable timer, the idempotent one-hour charge
and the failed-capture retry path.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import GatewayFailureException
from app.models.booking import BookingStatus
from app.models.escrow import EscrowTransaction, EscrowTransactionKind, EscrowTransactionStatus
from app.models.no_show_timer import NoShowTimer, NoShowTimerStatus
from app.services import no_show_service as no_show_module
from tests._utils import PROVIDER_ID

ARRIVED_AT = datetime(2026, 3, 5, 15, 2, tzinfo=timezone.utc)
AFTER_GRACE = ARRIVED_AT + timedelta(minutes=16)


def _charge_rows(db, booking_id):
    return (
        db.query(EscrowTransaction)
        .filter(
            EscrowTransaction.booking_id == booking_id,
            EscrowTransaction.kind == EscrowTransactionKind.NO_SHOW_CHARGE.value,
        )
        .all()
    )


@pytest.fixture
def arrived_booking(arrival_verifier, paid_booking):
    """Paid booking whose provider arrived and is waiting at the door."""
    return arrival_verifier.record_arrival(
        paid_booking.id, "40.712800", "-74.006000", False, PROVIDER_ID, now=ARRIVED_AT
    )


class TestTimer:
    def test_arrival_schedules_timer_after_grace(self, db, arrived_booking):
        timer = db.query(NoShowTimer).filter_by(booking_id=arrived_booking.id).one()
        assert timer.status == NoShowTimerStatus.SCHEDULED.value
        assert timer.fires_at == ARRIVED_AT + timedelta(minutes=15)

    def test_schedule_respects_custom_grace(self, db, no_show_service, paid_booking):
        timer = no_show_service.schedule_timer(paid_booking, ARRIVED_AT, grace_minutes=5)
        db.commit()
        assert timer.fires_at == ARRIVED_AT + timedelta(minutes=5)

    def test_second_schedule_is_noop(self, db, no_show_service, arrived_booking):
        assert no_show_service.schedule_timer(arrived_booking, AFTER_GRACE) is None
        assert db.query(NoShowTimer).count() == 1

    def test_dispatch_enqueues_eta_task(self, monkeypatch, db, no_show_service, arrived_booking):
        calls = []
        monkeypatch.setattr(
            no_show_module,
            "enqueue_task",
            lambda name, **kwargs: calls.append((name, kwargs)),
        )
        timer = db.query(NoShowTimer).one()

        no_show_service.dispatch_timer(timer)

        assert calls == [
            (
                "app.tasks.booking_tasks.fire_no_show_timer",
                {"kwargs": {"booking_id": arrived_booking.id}, "eta": timer.fires_at},
            )
        ]

    def test_dispatch_failure_is_logged_not_raised(self, monkeypatch, db, no_show_service, arrived_booking):
        def _boom(*args, **kwargs):
            raise RuntimeError("broker down")

        monkeypatch.setattr(no_show_module, "enqueue_task", _boom)
        no_show_service.dispatch_timer(db.query(NoShowTimer).one())

    def test_fire_before_due_does_nothing(self, db, no_show_service, arrived_booking):
        assert no_show_service.fire_timer(arrived_booking.id, now=ARRIVED_AT) is None
        assert db.query(NoShowTimer).one().status == NoShowTimerStatus.SCHEDULED.value

    def test_fire_after_access_confirmed_skips(
        self, db, no_show_service, arrival_verifier, arrived_booking
    ):
        arrival_verifier.confirm_customer_access(arrived_booking.id, now=ARRIVED_AT)
        assert no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE) is None

        timer = db.query(NoShowTimer).one()
        assert timer.status == NoShowTimerStatus.CANCELLED.value
        assert _charge_rows(db, arrived_booking.id) == []

    def test_fire_when_booking_moved_on_skips(self, db, no_show_service, arrived_booking):
        timer = db.query(NoShowTimer).one()
        # Work started without the timer being cancelled (e.g. by an older worker)
        db.query(type(arrived_booking)).filter_by(id=arrived_booking.id).update(
            {"status": BookingStatus.IN_PROGRESS.value}
        )
        db.commit()

        assert no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE) is None
        db.refresh(timer)
        assert timer.status == NoShowTimerStatus.SKIPPED.value


class TestCharge:
    def test_fire_charges_one_hour(self, db, no_show_service, gateway, arrived_booking):
        charge = no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)

        assert charge.charge_amount == Decimal("25.00")
        assert charge.already_charged is False
        assert charge.capture_status == EscrowTransactionStatus.SUCCEEDED.value

        booking = db.get(type(arrived_booking), arrived_booking.id)
        assert booking.no_show_detected is True
        assert booking.no_show_charge_amount == Decimal("25.00")
        assert booking.no_show_charged_at == AFTER_GRACE

        auth = gateway.authorizations[-1]
        assert auth["amount"] == Decimal("25.00")
        assert auth["platform_fee"] == Decimal("1.25")
        assert auth["metadata"]["charge_type"] == "no_show"

        (row,) = _charge_rows(db, arrived_booking.id)
        assert row.status == EscrowTransactionStatus.SUCCEEDED.value
        assert row.payment_reference == auth["reference"]
        assert db.query(NoShowTimer).one().status == NoShowTimerStatus.FIRED.value

    def test_second_charge_returns_existing(self, db, no_show_service, gateway, arrived_booking):
        first = no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)
        later = AFTER_GRACE + timedelta(hours=1)

        again = no_show_service.charge_no_show(arrived_booking.id, now=later)

        assert again.already_charged is True
        assert again.charge_amount == first.charge_amount
        assert again.charged_at == AFTER_GRACE
        assert len(_charge_rows(db, arrived_booking.id)) == 1
        # booking payment + one no-show authorization
        assert len(gateway.authorizations) == 2

    def test_failed_capture_keeps_charge_record(
        self, db, no_show_service, gateway, arrived_booking
    ):
        gateway.fail_capture = True

        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)

        booking = db.get(type(arrived_booking), arrived_booking.id)
        assert booking.no_show_detected is True
        assert booking.no_show_charge_amount == Decimal("25.00")
        (row,) = _charge_rows(db, arrived_booking.id)
        assert row.status == EscrowTransactionStatus.FAILED.value
        assert row.attempts == 1

    def test_retry_captures_failed_charge(self, db, no_show_service, gateway, arrived_booking):
        gateway.fail_capture = True
        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)

        gateway.fail_capture = False
        captured = no_show_service.retry_failed_captures(now=AFTER_GRACE + timedelta(minutes=5))

        assert captured == [arrived_booking.id]
        (row,) = _charge_rows(db, arrived_booking.id)
        assert row.status == EscrowTransactionStatus.SUCCEEDED.value
        assert row.attempts == 2
        assert row.failure_reason is None

    def test_retry_captures_the_original_hold(self, db, no_show_service, gateway, arrived_booking):
        gateway.fail_capture = True
        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)

        (row,) = _charge_rows(db, arrived_booking.id)
        held = gateway.authorizations[-1]["reference"]
        assert row.payment_reference == held

        gateway.fail_capture = False
        no_show_service.retry_failed_captures(now=AFTER_GRACE + timedelta(minutes=5))

        no_show_auths = [
            auth for auth in gateway.authorizations if auth["metadata"].get("charge_type") == "no_show"
        ]
        assert len(no_show_auths) == 1
        assert gateway.captures[-1] == held
        db.refresh(row)
        assert row.payment_reference == held
        assert row.status == EscrowTransactionStatus.SUCCEEDED.value

    def test_retry_stops_at_attempt_budget(self, db, no_show_service, gateway, arrived_booking):
        gateway.fail_capture = True
        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(arrived_booking.id, now=AFTER_GRACE)

        assert no_show_service.retry_failed_captures(max_attempts=3) == []
        assert no_show_service.retry_failed_captures(max_attempts=3) == []
        assert no_show_service.retry_failed_captures(max_attempts=3) == []

        (row,) = _charge_rows(db, arrived_booking.id)
        assert row.attempts == 3
        assert row.status == EscrowTransactionStatus.FAILED.value


class TestSweep:
    def test_sweep_fires_due_timers(self, no_show_service, arrived_booking):
        result = no_show_service.sweep_due_timers(now=AFTER_GRACE)
        assert (result.processed, result.charged, result.skipped) == (1, 1, 0)

        # Nothing left on the next pass
        again = no_show_service.sweep_due_timers(now=AFTER_GRACE + timedelta(minutes=1))
        assert again.processed == 0

    def test_sweep_ignores_future_timers(self, no_show_service, arrived_booking):
        result = no_show_service.sweep_due_timers(now=ARRIVED_AT + timedelta(minutes=1))
        assert result.processed == 0

    def test_sweep_counts_failed_capture_as_charged(self, no_show_service, gateway, arrived_booking):
        gateway.fail_capture = True
        result = no_show_service.sweep_due_timers(now=AFTER_GRACE)
        assert result.charged == 1
