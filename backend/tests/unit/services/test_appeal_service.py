from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.enums import Actor, RoleName
from app.core.exceptions import (
    AlreadyProcessedException,
    ForbiddenException,
    GatewayFailureException,
    InvalidStateException,
    ValidationException,
)
from app.models.charge_appeal import AppealStatus
from app.models.escrow import EscrowTransaction, EscrowTransactionKind, EscrowTransactionStatus
from tests._utils import ADMIN_ID, CUSTOMER_ID, OTHER_USER_ID

ADMIN = Actor(id=ADMIN_ID, role=RoleName.ADMIN)
ARRIVED_AT = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def charged_booking(arrival_verifier, no_show_service, paid_booking):
    """Paid booking with a captured $25 no-show charge."""
    arrival_verifier.record_arrival(paid_booking.id, 40.0, -74.0, now=ARRIVED_AT)
    no_show_service.fire_timer(paid_booking.id, now=ARRIVED_AT + timedelta(minutes=15))
    return paid_booking


@pytest.fixture
def pending_appeal(appeal_service, charged_booking):
    return appeal_service.submit_appeal(
        charged_booking.id, CUSTOMER_ID, "was_present", "I was home and the doorbell is broken"
    )


def _charge(db, booking_id):
    return (
        db.query(EscrowTransaction)
        .filter(
            EscrowTransaction.booking_id == booking_id,
            EscrowTransaction.kind == EscrowTransactionKind.NO_SHOW_CHARGE.value,
        )
        .one()
    )


class TestSubmitAppeal:
    def test_creates_pending_appeal(self, pending_appeal, charged_booking):
        assert pending_appeal.status == AppealStatus.PENDING.value
        assert pending_appeal.booking_id == charged_booking.id
        assert pending_appeal.reason == "was_present"

    def test_requires_no_show_charge(self, appeal_service, paid_booking):
        with pytest.raises(InvalidStateException):
            appeal_service.submit_appeal(paid_booking.id, CUSTOMER_ID, "other", "Never charged")

    def test_second_pending_appeal_rejected(self, appeal_service, pending_appeal, charged_booking):
        with pytest.raises(AlreadyProcessedException):
            appeal_service.submit_appeal(
                charged_booking.id, CUSTOMER_ID, "emergency", "Trying again"
            )

    def test_only_customer_may_appeal(self, appeal_service, charged_booking):
        with pytest.raises(ForbiddenException):
            appeal_service.submit_appeal(
                charged_booking.id, OTHER_USER_ID, "other", "Not my booking"
            )

    @pytest.mark.parametrize(
        "reason,description", [("not_a_reason", "Details"), ("other", "   ")]
    )
    def test_validates_input(self, appeal_service, charged_booking, reason, description):
        with pytest.raises(ValidationException):
            appeal_service.submit_appeal(charged_booking.id, CUSTOMER_ID, reason, description)


class TestResolveAppeal:
    def test_approval_refunds_charge(self, db, appeal_service, gateway, pending_appeal):
        charge = _charge(db, pending_appeal.booking_id)

        appeal = appeal_service.resolve_appeal(
            pending_appeal.id, ADMIN, "approved", "Doorbell camera shows the customer home"
        )

        assert appeal.status == AppealStatus.APPROVED.value
        assert appeal.reviewer_id == ADMIN_ID
        assert appeal.resolved_at is not None
        assert appeal.refund_reference == "re_test_1"
        assert gateway.refunds == [
            {
                "reference": "re_test_1",
                "payment_reference": charge.payment_reference,
                "amount": Decimal("25.00"),
            }
        ]
        refund = (
            db.query(EscrowTransaction)
            .filter(EscrowTransaction.kind == EscrowTransactionKind.REFUND.value)
            .one()
        )
        assert refund.source_reference == charge.payment_reference

    def test_approval_keeps_no_show_fields(self, db, appeal_service, pending_appeal):
        appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "approved", "Refunded")
        booking = appeal_service.state_machine.get_booking(pending_appeal.booking_id)
        assert booking.no_show_detected is True
        assert booking.no_show_charge_amount == Decimal("25.00")

    def test_approval_leaves_booking_escrow_alone(self, appeal_service, pending_appeal):
        appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "approved", "Refunded")
        booking = appeal_service.state_machine.get_booking(pending_appeal.booking_id)
        assert appeal_service.state_machine.escrow_balance(booking) == Decimal("50.00")

    def test_rejection_moves_no_money(self, appeal_service, gateway, pending_appeal):
        appeal = appeal_service.resolve_appeal(
            pending_appeal.id, ADMIN, "rejected", "Cleaner waited the full window"
        )
        assert appeal.status == AppealStatus.REJECTED.value
        assert appeal.reviewer_notes == "Cleaner waited the full window"
        assert gateway.refunds == []

    def test_resolve_twice_already_processed(self, appeal_service, pending_appeal):
        appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "rejected", "No")
        with pytest.raises(AlreadyProcessedException):
            appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "approved", "Changed my mind")

    def test_new_appeal_allowed_after_rejection(self, appeal_service, pending_appeal):
        appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "rejected", "No")
        second = appeal_service.submit_appeal(
            pending_appeal.booking_id, CUSTOMER_ID, "other", "New evidence attached"
        )
        assert second.status == AppealStatus.PENDING.value

    def test_requires_admin(self, appeal_service, pending_appeal):
        with pytest.raises(ForbiddenException):
            appeal_service.resolve_appeal(pending_appeal.id, Actor(id=CUSTOMER_ID), "approved", "Me")

    @pytest.mark.parametrize("decision,notes", [("maybe", "Notes"), ("approved", "")])
    def test_validates_input(self, appeal_service, pending_appeal, decision, notes):
        with pytest.raises(ValidationException):
            appeal_service.resolve_appeal(pending_appeal.id, ADMIN, decision, notes)

    def test_refund_failure_keeps_appeal_pending(self, appeal_service, gateway, pending_appeal):
        gateway.fail_refund = True
        with pytest.raises(GatewayFailureException):
            appeal_service.resolve_appeal(pending_appeal.id, ADMIN, "approved", "Refund it")
        assert appeal_service.get_appeal(pending_appeal.id).status == AppealStatus.PENDING.value

    def test_approval_voids_uncaptured_charge(
        self, db, appeal_service, arrival_verifier, no_show_service, gateway, paid_booking
    ):
        arrival_verifier.record_arrival(paid_booking.id, 40.0, -74.0, now=ARRIVED_AT)
        gateway.fail_capture = True
        with pytest.raises(GatewayFailureException):
            no_show_service.fire_timer(paid_booking.id, now=ARRIVED_AT + timedelta(minutes=15))
        appeal = appeal_service.submit_appeal(
            paid_booking.id, CUSTOMER_ID, "technical_issue", "App would not open the door code"
        )

        appeal_service.resolve_appeal(appeal.id, ADMIN, "approved", "Void the charge")

        assert gateway.refunds == []
        assert _charge(db, paid_booking.id).status == EscrowTransactionStatus.VOIDED.value
        gateway.fail_capture = False
        assert no_show_service.retry_failed_captures() == []


class TestListing:
    def test_filters(self, appeal_service, pending_appeal):
        assert [a.id for a in appeal_service.list_appeals(status="pending")] == [pending_appeal.id]
        assert appeal_service.list_appeals(status="approved") == []
        assert [
            a.id for a in appeal_service.list_appeals(booking_id=pending_appeal.booking_id)
        ] == [pending_appeal.id]

    def test_unknown_status(self, appeal_service):
        with pytest.raises(ValidationException):
            appeal_service.list_appeals(status="archived")
