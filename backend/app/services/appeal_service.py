# backend/app/services/appeal_service.py
"""
Appeal workflow for no-show charges.

A customer may dispute an applied no-show charge once at a time; a reviewer
resolves it exactly once. Approval refunds the charge through the gateway
(or voids it when the capture never went through). The booking's no-show
fields are never cleared: the ledger alone reflects the refund.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import Actor
from ..core.exceptions import (
    AlreadyProcessedException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from ..core.money import quantize_money
from ..core.timezone_utils import utc_now
from ..models.charge_appeal import AppealReason, AppealStatus, ChargeAppeal
from ..models.escrow import EscrowTransactionKind, EscrowTransactionStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService, booking_mutex
from .booking_state_machine import BookingStateMachine
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

RESOLUTION_DECISIONS = frozenset({AppealStatus.APPROVED.value, AppealStatus.REJECTED.value})


class AppealService(BaseService):
    def __init__(
        self,
        db: Session,
        state_machine: Optional[BookingStateMachine] = None,
        notifier: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.notifier = notifier or NotificationService(db)
        self.state_machine = state_machine or BookingStateMachine(db, notifier=self.notifier)
        self.appeal_repository = RepositoryFactory.create_charge_appeal_repository(db)
        self.escrow_repository = RepositoryFactory.create_escrow_repository(db)

    @BaseService.measure_operation("submit_appeal")
    def submit_appeal(
        self,
        booking_id: str,
        customer_id: str,
        reason: Any,
        description: Optional[str],
        now: Optional[datetime] = None,
    ) -> ChargeAppeal:
        """
        Open an appeal against the booking's no-show charge.

        Raises:
            InvalidStateException: The booking has no no-show charge
            AlreadyProcessedException: An appeal is already pending
        """
        try:
            reason_code = AppealReason(reason)
        except ValueError:
            raise ValidationException(
                f"Unknown appeal reason: {reason}",
                details={"allowed": [r.value for r in AppealReason]},
            )
        description = (description or "").strip()
        if not description:
            raise ValidationException("A description is required to submit an appeal")
        now = now or utc_now()

        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.state_machine.load_for_update(booking_id)
                if booking.customer_id != customer_id:
                    raise ForbiddenException("Only the booking's customer can appeal its charge")
                if not booking.no_show_detected or booking.no_show_charge_amount is None:
                    raise InvalidStateException(
                        "Booking has no no-show charge to appeal",
                        current_status=booking.status,
                        details={"booking_id": booking.id},
                    )
                existing = self.appeal_repository.get_pending_for_booking(booking.id)
                if existing is not None:
                    raise AlreadyProcessedException(
                        "An appeal for this booking is already pending",
                        details={"appeal_id": existing.id},
                    )

                appeal = self.appeal_repository.create(
                    booking_id=booking.id,
                    customer_id=customer_id,
                    reason=reason_code.value,
                    description=description,
                    status=AppealStatus.PENDING.value,
                    created_at=now,
                )
                self.notifier.notify(
                    settings.appeal_reviewer_user_id,
                    "New No-Show Appeal",
                    f"A customer appealed a ${quantize_money(booking.no_show_charge_amount):.2f} "
                    f"no-show charge ({reason_code.value}).",
                    "appeal",
                    {"booking_id": booking.id, "appeal_id": appeal.id},
                )

        self.log_operation("submit_appeal", appeal_id=appeal.id, booking_id=booking_id)
        return appeal

    @BaseService.measure_operation("resolve_appeal")
    def resolve_appeal(
        self,
        appeal_id: str,
        reviewer: Actor,
        decision: str,
        notes: Optional[str],
        now: Optional[datetime] = None,
    ) -> ChargeAppeal:
        """
        Approve or reject a pending appeal.

        Approval refunds the no-show charge first; if the refund fails the
        appeal stays pending and GatewayFailure propagates.
        """
        if not reviewer.is_admin:
            raise ForbiddenException("Admin privilege required to resolve appeals")
        notes = (notes or "").strip()
        if not notes:
            raise ValidationException("Reviewer notes are required to resolve an appeal")
        if decision not in RESOLUTION_DECISIONS:
            raise ValidationException(f"Decision must be one of {sorted(RESOLUTION_DECISIONS)}")
        now = now or utc_now()

        appeal = self.get_appeal(appeal_id)
        with booking_mutex(appeal.booking_id):
            appeal = self.appeal_repository.get_for_update(appeal_id)
            if appeal is None:
                raise NotFoundException(f"Appeal {appeal_id} not found", code="APPEAL_NOT_FOUND")
            if appeal.status != AppealStatus.PENDING.value:
                raise AlreadyProcessedException(
                    f"Appeal already {appeal.status}", details={"appeal_id": appeal.id}
                )
            booking = self.state_machine.load_for_update(appeal.booking_id)

            charge = None
            refund_reference: Optional[str] = None
            amount = quantize_money(booking.no_show_charge_amount)
            if decision == AppealStatus.APPROVED.value:
                charge = self.escrow_repository.get_latest(
                    booking.id, EscrowTransactionKind.NO_SHOW_CHARGE
                )
                if charge is not None:
                    self.db.refresh(charge)
                if charge is not None and charge.status == EscrowTransactionStatus.SUCCEEDED.value:
                    refund_reference = self.state_machine.gateway.refund(
                        charge.payment_reference, amount
                    )

            with self.transaction():
                if refund_reference:
                    self.escrow_repository.record_transaction(
                        booking_id=booking.id,
                        kind=EscrowTransactionKind.REFUND,
                        amount=amount,
                        payment_reference=refund_reference,
                        source_reference=charge.payment_reference,
                        status=EscrowTransactionStatus.SUCCEEDED,
                        created_at=now,
                    )
                elif charge is not None and charge.status in (
                    EscrowTransactionStatus.PENDING.value,
                    EscrowTransactionStatus.FAILED.value,
                ):
                    # Never captured: stop the retry task from collecting it
                    charge.status = EscrowTransactionStatus.VOIDED.value
                    charge.updated_at = now

                appeal.status = decision
                appeal.reviewer_id = reviewer.id
                appeal.reviewer_notes = notes
                appeal.resolved_at = now
                appeal.refund_reference = refund_reference

                if decision == AppealStatus.APPROVED.value:
                    self.notifier.notify(
                        appeal.customer_id,
                        "Appeal Approved",
                        f"Your appeal was approved. ${amount:.2f} will be refunded to your "
                        "payment method.",
                        "appeal",
                        {"booking_id": booking.id, "appeal_id": appeal.id},
                    )
                else:
                    self.notifier.notify(
                        appeal.customer_id,
                        "Appeal Rejected",
                        f"Your appeal was reviewed and rejected. Reviewer notes: {notes}",
                        "appeal",
                        {"booking_id": booking.id, "appeal_id": appeal.id},
                    )

        self.log_operation("resolve_appeal", appeal_id=appeal_id, decision=decision)
        return appeal

    def get_appeal(self, appeal_id: str) -> ChargeAppeal:
        appeal = self.appeal_repository.get_by_id(appeal_id, load_relationships=False)
        if appeal is None:
            raise NotFoundException(f"Appeal {appeal_id} not found", code="APPEAL_NOT_FOUND")
        return appeal

    def list_appeals(
        self, status: Optional[str] = None, booking_id: Optional[str] = None
    ) -> List[ChargeAppeal]:
        if status and status not in {s.value for s in AppealStatus}:
            raise ValidationException(f"Unknown appeal status: {status}")
        return self.appeal_repository.list_appeals(status=status, booking_id=booking_id)
