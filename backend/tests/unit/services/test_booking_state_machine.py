"""
Unit tests for BookingStateMachine.

Covers the transition table, the guarded (status + version) write, creation
with its pricing snapshot, provider decisions, cancellation and the payment
callbacks.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.core.enums import Actor, RoleName
from app.core.exceptions import (
    AlreadyProcessedException,
    ForbiddenException,
    GatewayFailureException,
    InvalidStateException,
    StateConflictException,
    ValidationException,
)
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.escrow import EscrowTransaction, EscrowTransactionKind, EscrowTransactionStatus
from app.models.notification import Notification
from app.services.booking_state_machine import is_transition_allowed
from tests._utils import ADMIN_ID, CREATED_AT, CUSTOMER_ID, OTHER_USER_ID, PROVIDER_ID

ADMIN = Actor(id=ADMIN_ID, role=RoleName.ADMIN)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target,trigger",
        [
            ("pending", "confirmed", "accept"),
            ("pending", "cancelled", "decline"),
            ("confirmed", "payment_pending", "payment_intent"),
            ("payment_pending", "payment_processing", "payment_callback"),
            ("payment_processing", "payment_failed", "payment_callback"),
            ("payment_failed", "payment_pending", "payment_intent"),
            ("confirmed", "in_progress", "start_work"),
            ("in_progress", "completed", "end_work"),
            ("completed", "auto_release_pending", "auto_release_due"),
            ("auto_release_pending", "payment_released", "auto"),
            ("completed", "payment_released", "full"),
            ("in_progress", "cancelled", "admin_cancel"),
            ("payment_processing", "payment_released", "admin_override"),
        ],
    )
    def test_allowed_moves(self, current, target, trigger):
        assert is_transition_allowed(current, target, trigger) is True

    @pytest.mark.parametrize(
        "current,target,trigger",
        [
            ("pending", "in_progress", "start_work"),
            ("confirmed", "completed", "end_work"),
            ("completed", "payment_released", "auto"),
            ("pending", "confirmed", "decline"),
            ("payment_released", "cancelled", "admin_cancel"),
            ("cancelled", "payment_released", "admin_override"),
        ],
    )
    def test_rejected_moves(self, current, target, trigger):
        assert is_transition_allowed(current, target, trigger) is False


class TestGuardedTransition:
    def test_transition_bumps_version(self, db, state_machine, booking_factory):
        booking = booking_factory()
        assert booking.version == 1

        with state_machine.transaction():
            state_machine.transition(
                booking, BookingStatus.PENDING, BookingStatus.CONFIRMED, "accept"
            )

        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.version == 2

    def test_stale_version_raises_conflict(self, db, state_machine, booking_factory):
        booking = booking_factory()
        assert booking.version == 1
        # Another writer bumps the row behind this session's back
        db.execute(
            update(Booking)
            .where(Booking.id == booking.id)
            .values(version=Booking.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(StateConflictException):
            state_machine.transition(
                booking, BookingStatus.PENDING, BookingStatus.CONFIRMED, "accept"
            )
        assert booking.version == 1

    def test_mismatched_expected_status_raises_conflict(self, state_machine, booking_factory):
        booking = booking_factory()
        with pytest.raises(StateConflictException):
            state_machine.transition(
                booking, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, "start_work"
            )

    def test_illegal_move_raises_invalid_state(self, state_machine, booking_factory):
        booking = booking_factory()
        with pytest.raises(InvalidStateException):
            state_machine.transition(
                booking, BookingStatus.PENDING, BookingStatus.COMPLETED, "end_work"
            )
        assert booking.version == 1


class TestCreateBooking:
    def test_snapshots_pricing(self, booking_factory):
        booking = booking_factory(estimated_hours=Decimal("2"), hourly_rate=Decimal("25"))

        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.UNPAID.value
        assert booking.total_price == Decimal("50.00")
        assert booking.commission_rate == Decimal("5")
        assert booking.platform_commission == Decimal("2.50")
        assert booking.provider_earnings == Decimal("47.50")
        assert booking.no_show_detected is False
        assert booking.customer_confirmed_access is False

    def test_notifies_provider(self, db, booking_factory):
        booking = booking_factory()
        notes = db.query(Notification).filter(Notification.user_id == PROVIDER_ID).all()
        assert [n.title for n in notes] == ["New Booking Request"]
        assert notes[0].data["booking_id"] == booking.id

    def test_rejects_non_positive_hours(self, booking_factory):
        with pytest.raises(ValidationException):
            booking_factory(estimated_hours=Decimal("0"))

    @pytest.mark.parametrize("rate", [Decimal("14.99"), Decimal("200.01")])
    def test_rejects_rate_outside_bounds(self, booking_factory, rate):
        with pytest.raises(ValidationException):
            booking_factory(hourly_rate=rate)

    def test_rejects_start_inside_buffer(self, booking_factory):
        # 10:00 New York is 15:00 UTC; one hour ahead is inside the 2 hour buffer
        now = datetime(2026, 3, 5, 14, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationException):
            booking_factory(now=now)

    def test_commission_change_does_not_touch_existing_bookings(
        self, settings_service, booking_factory
    ):
        before = booking_factory()
        settings_service.update_settings({"commission_rate": 10.0}, updated_by=ADMIN_ID)
        after = booking_factory()

        assert before.commission_rate == Decimal("5")
        assert before.platform_commission == Decimal("2.50")
        assert after.commission_rate == Decimal("10")
        assert after.platform_commission == Decimal("5.00")


class TestProviderDecisions:
    def test_accept_confirms(self, state_machine, booking_factory):
        booking = state_machine.accept(booking_factory().id, PROVIDER_ID)
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.accepted_at is not None

    def test_accept_twice_is_invalid(self, state_machine, confirmed_booking):
        with pytest.raises(InvalidStateException):
            state_machine.accept(confirmed_booking.id, PROVIDER_ID)

    def test_accept_by_other_provider_rejected(self, state_machine, booking_factory):
        booking = booking_factory()
        with pytest.raises(ValidationException):
            state_machine.accept(booking.id, OTHER_USER_ID)

    def test_decline_requires_reason(self, state_machine, booking_factory):
        booking = booking_factory()
        with pytest.raises(ValidationException):
            state_machine.decline(booking.id, PROVIDER_ID, "   ")
        assert state_machine.get_booking(booking.id).status == BookingStatus.PENDING.value

    def test_decline_cancels_with_reason(self, state_machine, booking_factory):
        booking = state_machine.decline(booking_factory().id, PROVIDER_ID, "Fully booked")
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.declined_reason == "Fully booked"
        assert booking.cancelled_by_id == PROVIDER_ID


class TestCancellation:
    def test_customer_cancel_while_pending(self, state_machine, booking_factory):
        booking = state_machine.cancel_by_customer(booking_factory().id, CUSTOMER_ID, "Plans changed")
        assert booking.status == BookingStatus.CANCELLED.value

    def test_customer_cancel_after_confirm_is_invalid(self, state_machine, confirmed_booking):
        with pytest.raises(InvalidStateException):
            state_machine.cancel_by_customer(confirmed_booking.id, CUSTOMER_ID)

    def test_customer_cancel_by_stranger_forbidden(self, state_machine, booking_factory):
        with pytest.raises(ForbiddenException):
            state_machine.cancel_by_customer(booking_factory().id, OTHER_USER_ID)

    def test_admin_cancel_requires_admin(self, state_machine, confirmed_booking):
        with pytest.raises(ForbiddenException):
            state_machine.admin_cancel(
                confirmed_booking.id, Actor(id=CUSTOMER_ID), "Duplicate booking"
            )

    def test_admin_cancel_requires_reason(self, state_machine, confirmed_booking):
        with pytest.raises(ValidationException):
            state_machine.admin_cancel(confirmed_booking.id, ADMIN, "")

    def test_admin_cancel_refunds_captured_funds(self, db, state_machine, gateway, paid_booking):
        booking = state_machine.admin_cancel(paid_booking.id, ADMIN, "Customer moved away")

        assert booking.status == BookingStatus.CANCELLED.value
        assert gateway.refunds == [
            {
                "reference": "re_test_1",
                "payment_reference": paid_booking.payment_reference,
                "amount": Decimal("50.00"),
            }
        ]
        refund = (
            db.query(EscrowTransaction)
            .filter(EscrowTransaction.kind == EscrowTransactionKind.REFUND.value)
            .one()
        )
        assert refund.source_reference == paid_booking.payment_reference
        assert state_machine.escrow_balance(booking) == Decimal("0.00")

    def test_admin_cancel_refund_failure_leaves_booking(self, state_machine, gateway, paid_booking):
        gateway.fail_refund = True
        with pytest.raises(GatewayFailureException):
            state_machine.admin_cancel(paid_booking.id, ADMIN, "Customer moved away")
        assert state_machine.get_booking(paid_booking.id).status == BookingStatus.CONFIRMED.value

    def test_admin_cancel_terminal_is_invalid(self, state_machine, booking_factory):
        booking = state_machine.decline(booking_factory().id, PROVIDER_ID, "Unavailable")
        with pytest.raises(InvalidStateException):
            state_machine.admin_cancel(booking.id, ADMIN, "Cleanup")


class TestPayment:
    def test_payment_intent_authorizes_total(self, state_machine, gateway, confirmed_booking):
        booking = state_machine.create_payment_intent(confirmed_booking.id)

        assert booking.status == BookingStatus.PAYMENT_PENDING.value
        assert booking.payment_reference == "pi_test_1"
        auth = gateway.authorizations[0]
        assert auth["amount"] == Decimal("50.00")
        assert auth["platform_fee"] == Decimal("2.50")
        assert auth["provider_account"] == "acct_test_provider"
        assert auth["metadata"]["charge_type"] == "booking"

    def test_payment_intent_requires_confirmed(self, state_machine, booking_factory):
        with pytest.raises(InvalidStateException):
            state_machine.create_payment_intent(booking_factory().id)

    def test_authorize_failure_leaves_booking_confirmed(
        self, state_machine, gateway, confirmed_booking
    ):
        gateway.fail_authorize = True
        with pytest.raises(GatewayFailureException):
            state_machine.create_payment_intent(confirmed_booking.id)
        assert state_machine.get_booking(confirmed_booking.id).status == "confirmed"

    def test_success_captures_into_escrow(self, db, state_machine, gateway, paid_booking):
        assert paid_booking.status == BookingStatus.CONFIRMED.value
        assert paid_booking.payment_status == PaymentStatus.PAID.value
        assert gateway.captures == [paid_booking.payment_reference]
        assert state_machine.escrow_balance(paid_booking) == Decimal("50.00")

    def test_processing_then_success(self, state_machine, confirmed_booking):
        state_machine.create_payment_intent(confirmed_booking.id)
        booking = state_machine.record_payment_outcome(confirmed_booking.id, "processing")
        assert booking.status == BookingStatus.PAYMENT_PROCESSING.value
        assert booking.payment_status == PaymentStatus.PROCESSING.value

        booking = state_machine.record_payment_outcome(confirmed_booking.id, "succeeded")
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.payment_status == PaymentStatus.PAID.value

    def test_failure_then_retry(self, state_machine, gateway, confirmed_booking):
        state_machine.create_payment_intent(confirmed_booking.id)
        booking = state_machine.record_payment_outcome(
            confirmed_booking.id, "requires_payment_method"
        )
        assert booking.status == BookingStatus.PAYMENT_FAILED.value

        booking = state_machine.create_payment_intent(confirmed_booking.id)
        assert booking.status == BookingStatus.PAYMENT_PENDING.value
        assert booking.payment_reference == "pi_test_2"

    def test_capture_failure_records_failed_transaction(
        self, db, state_machine, gateway, confirmed_booking
    ):
        state_machine.create_payment_intent(confirmed_booking.id)
        gateway.fail_capture = True

        with pytest.raises(GatewayFailureException):
            state_machine.record_payment_outcome(confirmed_booking.id, "succeeded")

        booking = state_machine.get_booking(confirmed_booking.id)
        assert booking.status == BookingStatus.PAYMENT_PENDING.value
        capture = db.query(EscrowTransaction).one()
        assert capture.status == EscrowTransactionStatus.FAILED.value
        assert state_machine.escrow_balance(booking) == Decimal("0.00")

    def test_duplicate_success_is_already_processed(self, state_machine, paid_booking):
        with pytest.raises(AlreadyProcessedException):
            state_machine.record_payment_outcome(paid_booking.id, "succeeded")

    def test_unknown_gateway_status(self, state_machine, confirmed_booking):
        state_machine.create_payment_intent(confirmed_booking.id)
        with pytest.raises(ValidationException):
            state_machine.record_payment_outcome(confirmed_booking.id, "exploded")


class TestListing:
    def test_lists_as_customer_and_provider(self, state_machine, booking_factory):
        mine = booking_factory()
        booking_factory(customer_id=OTHER_USER_ID, provider_id=None, now=CREATED_AT)

        as_customer = state_machine.list_bookings(Actor(id=CUSTOMER_ID))
        as_provider = state_machine.list_bookings(Actor(id=PROVIDER_ID, role=RoleName.PROVIDER))

        assert [b.id for b in as_customer] == [mine.id]
        assert [b.id for b in as_provider] == [mine.id]

    def test_status_filter(self, state_machine, booking_factory):
        booking_factory()
        assert state_machine.list_bookings(Actor(id=CUSTOMER_ID), status="confirmed") == []
