# backend/app/services/escrow_ledger_service.py
"""
Escrow Ledger Service for CleanConnect Platform

Source of truth for "has this booking been paid out". Handles:
- Customer (full), admin override and automatic releases
- The auto-release sweep over completed bookings
- Ledger reads: captured, released and refunded amounts

Captures are destination charges, so the transfer to the provider's
account happens at capture time; a release records the provider's share
and closes the booking. Time worked beyond the captured estimate is charged
as an additional capture; when fewer hours were worked than captured, the
excess goes back to the customer before the release is written.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import Actor
from ..core.exceptions import (
    AlreadyProcessedException,
    DomainException,
    ForbiddenException,
    GatewayFailureException,
    InvalidStateException,
    ValidationException,
)
from ..core.money import percent_of, quantize_money
from ..core.timezone_utils import utc_now
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.escrow import (
    EscrowTransactionKind,
    EscrowTransactionStatus,
    PaymentRelease,
    ReleaseType,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService, booking_mutex
from .booking_state_machine import BookingStateMachine
from .notification_service import NotificationService
from .payment_gateway import CAPTURE_SUCCEEDED

logger = logging.getLogger(__name__)


@dataclass
class AutoReleaseResult:
    evaluated: int = 0
    released: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class EscrowLedgerService(BaseService):
    """Release path and ledger reads for booking escrow."""

    def __init__(
        self,
        db: Session,
        state_machine: Optional[BookingStateMachine] = None,
        notifier: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.notifier = notifier or NotificationService(db)
        self.state_machine = state_machine or BookingStateMachine(db, notifier=self.notifier)
        self.escrow_repository = RepositoryFactory.create_escrow_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @property
    def gateway(self):
        return self.state_machine.gateway

    # ------------------------------------------------------------------ #
    # Release
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("release_payment")
    def release(
        self,
        booking_id: str,
        actor: Actor,
        release_type: Any = ReleaseType.FULL,
        now: Optional[datetime] = None,
    ) -> PaymentRelease:
        """
        Release escrowed funds to the provider.

        Raises:
            AlreadyProcessedException: The booking was already released
            ForbiddenException: Actor may not perform this release type
            InvalidStateException: Status does not permit this release type
        """
        try:
            release_type = ReleaseType(release_type)
        except ValueError:
            raise ValidationException(f"Unknown release type: {release_type}")

        with booking_mutex(booking_id):
            booking = self.state_machine.load_for_update(booking_id)
            return self._release_locked(booking, actor, release_type, now or utc_now())

    def _release_locked(
        self, booking: Booking, actor: Actor, release_type: ReleaseType, now: datetime
    ) -> PaymentRelease:
        if booking.payment_status == PaymentStatus.RELEASED.value or self.escrow_repository.list_releases(
            booking.id
        ):
            raise AlreadyProcessedException(
                "Payment already released", details={"booking_id": booking.id}
            )

        if release_type == ReleaseType.FULL:
            if booking.customer_id != actor.id and not actor.is_admin:
                raise ForbiddenException("Only the booking's customer can release payment")
            self.state_machine.require_status(booking, {BookingStatus.COMPLETED}, "release payment for")
        elif release_type == ReleaseType.ADMIN_OVERRIDE:
            if not actor.is_admin:
                raise ForbiddenException("Admin privilege required for override release")
            if booking.is_terminal:
                raise InvalidStateException(
                    f"Cannot release a booking in status {booking.status}",
                    current_status=booking.status,
                )
        else:
            self.state_machine.require_status(
                booking, {BookingStatus.AUTO_RELEASE_PENDING}, "auto-release"
            )

        captured = self.state_machine.escrow_balance(booking)
        if captured <= 0:
            raise InvalidStateException(
                "No captured payment is held for this booking",
                current_status=booking.status,
                details={"booking_id": booking.id, "payment_status": booking.payment_status},
            )

        billable = quantize_money(
            booking.final_amount if booking.final_amount is not None else booking.total_price
        )
        shortfall = billable - captured
        if shortfall > 0:
            self._capture_shortfall(booking, shortfall, now)
            captured += shortfall
        commission = percent_of(billable, booking.commission_rate)
        amount_released = billable - commission
        excess = captured - billable

        already_released = self.escrow_repository.released_total(booking.id)
        if already_released + amount_released > captured:
            raise InvalidStateException(
                "Release would exceed the captured amount",
                current_status=booking.status,
                details={"captured": str(captured), "released": str(already_released)},
            )

        refund_reference: Optional[str] = None
        if excess > 0:
            refund_reference = self.gateway.refund(booking.payment_reference, excess)

        current = BookingStatus(booking.status)
        with self.transaction():
            if refund_reference:
                self.escrow_repository.record_transaction(
                    booking_id=booking.id,
                    kind=EscrowTransactionKind.REFUND,
                    amount=excess,
                    payment_reference=refund_reference,
                    source_reference=booking.payment_reference,
                    status=EscrowTransactionStatus.SUCCEEDED,
                    created_at=now,
                )
            release = self.escrow_repository.create_release(
                booking_id=booking.id,
                released_by=actor.id,
                release_type=release_type.value,
                amount_released=amount_released,
                commission_amount=commission,
                transfer_reference=f"auto_{booking.payment_reference}",
                created_at=now,
            )
            # Every release type, auto included, ends in payment_released
            self.state_machine.transition(
                booking,
                current,
                BookingStatus.PAYMENT_RELEASED,
                release_type.value,
                payment_status=PaymentStatus.RELEASED.value,
            )
            self.notifier.notify(
                booking.provider_id,
                "Payment Released",
                f"${amount_released:.2f} has been released for your completed booking.",
                "payment",
                {"booking_id": booking.id, "release_type": release_type.value},
            )
            if excess > 0:
                self.notifier.notify(
                    booking.customer_id,
                    "Partial Refund Issued",
                    f"${excess:.2f} was refunded because the job took less time than estimated.",
                    "payment",
                    {"booking_id": booking.id, "refund_amount": str(excess)},
                )
            if shortfall > 0:
                self.notifier.notify(
                    booking.customer_id,
                    "Additional Time Charged",
                    f"${shortfall:.2f} was charged because the job took longer than estimated.",
                    "payment",
                    {"booking_id": booking.id, "charge_amount": str(shortfall)},
                )

        prometheus_metrics.record_escrow_release(release_type.value)
        self.log_operation(
            "release",
            booking_id=booking.id,
            release_type=release_type.value,
            amount=str(amount_released),
        )
        return release

    def _capture_shortfall(self, booking: Booking, amount: Decimal, now: datetime) -> None:
        """
        Charge the customer for time worked beyond the captured estimate.

        The hold is recorded as a pending ``capture`` transaction before it is
        captured, so a release retried after a failed capture reuses it.
        """
        transaction = self._open_shortfall_capture(booking, amount)
        try:
            if transaction is None:
                reference = self.gateway.authorize(
                    amount,
                    booking.customer_payment_method_id,
                    booking.provider_account_id,
                    percent_of(amount, booking.commission_rate),
                    {
                        "booking_id": booking.id,
                        "charge_type": "additional_time",
                        "idempotency_key": f"additional-time-{booking.id}-{amount}",
                    },
                )
                with self.transaction():
                    transaction = self.escrow_repository.record_transaction(
                        booking_id=booking.id,
                        kind=EscrowTransactionKind.CAPTURE,
                        amount=amount,
                        payment_reference=reference,
                        status=EscrowTransactionStatus.PENDING,
                        created_at=now,
                        attempts=0,
                    )
            status = self.gateway.capture(transaction.payment_reference)
            if status != CAPTURE_SUCCEEDED:
                raise GatewayFailureException(
                    f"Additional time capture returned status {status}",
                    operation="capture",
                    details={"payment_reference": transaction.payment_reference},
                )
        except GatewayFailureException as exc:
            if transaction is not None:
                with self.transaction():
                    transaction.status = EscrowTransactionStatus.FAILED.value
                    transaction.failure_reason = exc.message
                    transaction.attempts = int(transaction.attempts or 0) + 1
                    transaction.updated_at = now
            self.logger.error(
                f"Additional time capture failed for booking {booking.id}: {exc.message}",
                extra={"booking_id": booking.id, "amount": str(amount)},
            )
            raise

        with self.transaction():
            transaction.status = EscrowTransactionStatus.SUCCEEDED.value
            transaction.failure_reason = None
            transaction.attempts = int(transaction.attempts or 0) + 1
            transaction.updated_at = now

    def _open_shortfall_capture(self, booking: Booking, amount: Decimal):
        open_statuses = {EscrowTransactionStatus.PENDING.value, EscrowTransactionStatus.FAILED.value}
        for transaction in self.escrow_repository.list_transactions(booking.id):
            if (
                transaction.kind == EscrowTransactionKind.CAPTURE.value
                and transaction.status in open_statuses
                and transaction.payment_reference
                and transaction.payment_reference != booking.payment_reference
                and quantize_money(transaction.amount) == amount
            ):
                return transaction
        return None

    # ------------------------------------------------------------------ #
    # Auto-release
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("evaluate_auto_release")
    def evaluate_auto_release(self, now: Optional[datetime] = None) -> AutoReleaseResult:
        """
        Release completed bookings whose auto-release delay has elapsed.

        The delay is read from platform settings on every evaluation. Each
        booking is staged in ``auto_release_pending`` and then released with
        type ``auto``; a failure on one booking does not stop the sweep.
        """
        now = now or utc_now()
        hours = self.state_machine.settings_service.get_settings().auto_release_hours
        cutoff = now - timedelta(hours=hours)
        result = AutoReleaseResult()
        system = Actor.system()

        for candidate in self.booking_repository.get_bookings_for_auto_release(cutoff):
            result.evaluated += 1
            try:
                with booking_mutex(candidate.id):
                    booking = self.state_machine.load_for_update(candidate.id)
                    if self.state_machine.escrow_balance(booking) <= 0:
                        self.logger.info(
                            f"Booking {booking.id} has no captured funds; skipping auto-release"
                        )
                        continue
                    if booking.status == BookingStatus.COMPLETED.value:
                        with self.transaction():
                            self.state_machine.transition(
                                booking,
                                BookingStatus.COMPLETED,
                                BookingStatus.AUTO_RELEASE_PENDING,
                                "auto_release_due",
                            )
                    if booking.status != BookingStatus.AUTO_RELEASE_PENDING.value:
                        continue
                    self._release_locked(booking, system, ReleaseType.AUTO, now)
                    result.released.append(booking.id)
            except DomainException as exc:
                result.failed.append(candidate.id)
                self.logger.warning(
                    f"Auto-release failed for booking {candidate.id}: {exc.message}",
                    extra={"booking_id": candidate.id, "code": exc.code},
                )
        return result

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def captured_amount(self, booking_id: str) -> Decimal:
        booking = self.state_machine.get_booking(booking_id)
        return self.state_machine.escrow_balance(booking)

    def released_amount(self, booking_id: str) -> Decimal:
        self.state_machine.get_booking(booking_id)
        return self.escrow_repository.released_total(booking_id)

    def ledger_summary(self, booking_id: str) -> Dict[str, Any]:
        booking = self.state_machine.get_booking(booking_id)
        releases = self.escrow_repository.list_releases(booking_id)
        transactions = self.escrow_repository.list_transactions(booking_id)
        return {
            "booking_id": booking.id,
            "payment_status": booking.payment_status,
            "captured_amount": self.escrow_repository.succeeded_total(
                booking.id, EscrowTransactionKind.CAPTURE
            ),
            "released_amount": self.escrow_repository.released_total(booking.id),
            "refunded_amount": self.escrow_repository.succeeded_total(
                booking.id, EscrowTransactionKind.REFUND
            ),
            "no_show_charged_amount": self.escrow_repository.succeeded_total(
                booking.id, EscrowTransactionKind.NO_SHOW_CHARGE
            ),
            "releases": releases,
            "transactions": transactions,
        }
