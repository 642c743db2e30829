# backend/app/services/no_show_service.py
"""
No-show detection and charging for CleanConnect.

A provider who arrives and is not let in within the grace window converts the
booking into a charged no-show. The timer is a persisted due-time
(``no_show_timers``) fired either by its Celery ETA task or by the periodic
sweep; whichever gets there first wins and the other finds nothing to do.

The charge is one hour at the booking's hourly rate. Charge fields are
committed before the gateway is called, so a failed capture never erases the
no-show record; the capture outcome lives on a ``no_show_charge`` escrow
transaction that the retry task picks up.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import NO_SHOW_CHARGE_HOURS
from ..core.exceptions import (
    DomainException,
    GatewayFailureException,
    NotFoundException,
    StateConflictException,
)
from ..core.money import percent_of, quantize_money, to_decimal
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking, BookingStatus
from ..models.escrow import EscrowTransaction, EscrowTransactionKind, EscrowTransactionStatus
from ..models.no_show_timer import NoShowTimer, NoShowTimerStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..tasks.enqueue import enqueue_task
from .base import BaseService, booking_mutex
from .config_service import PlatformSettingsService
from .notification_service import NotificationService
from .payment_gateway import CAPTURE_SUCCEEDED, PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

FIRE_TIMER_TASK = "app.tasks.booking_tasks.fire_no_show_timer"

# Statuses in which a fired timer may still charge
CHARGEABLE_STATUSES = frozenset({BookingStatus.CONFIRMED.value})


@dataclass
class NoShowCharge:
    booking_id: str
    charge_amount: Decimal
    charged_at: datetime
    already_charged: bool
    capture_status: Optional[str] = None


@dataclass
class NoShowSweepResult:
    processed: int = 0
    charged: int = 0
    skipped: int = 0


class NoShowService(BaseService):
    """Durable no-show timer plus the idempotent charge path."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationService] = None,
        settings_service: Optional[PlatformSettingsService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.timer_repository = RepositoryFactory.create_no_show_timer_repository(db)
        self.escrow_repository = RepositoryFactory.create_escrow_repository(db)
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or NotificationService(db)
        self.settings_service = settings_service or PlatformSettingsService(db)

    # ------------------------------------------------------------------ #
    # Timer
    # ------------------------------------------------------------------ #

    def schedule_timer(
        self, booking: Booking, now: datetime, grace_minutes: Optional[int] = None
    ) -> Optional[NoShowTimer]:
        """
        Persist the booking's no-show due-time. Caller holds the booking mutex
        and commits.

        Returns the new timer, or None when one already exists (a booking gets
        a single timer for its lifetime).
        """
        if self.timer_repository.get_by_booking(booking.id) is not None:
            return None
        if grace_minutes is None:
            grace_minutes = self.settings_service.get_settings().no_show_grace_minutes
        return self.timer_repository.create(
            booking_id=booking.id,
            fires_at=now + timedelta(minutes=grace_minutes),
            status=NoShowTimerStatus.SCHEDULED.value,
            created_at=now,
        )

    def dispatch_timer(self, timer: NoShowTimer) -> None:
        """Queue the ETA task for a committed timer; the sweep covers any miss."""
        try:
            enqueue_task(
                FIRE_TIMER_TASK,
                kwargs={"booking_id": timer.booking_id},
                eta=ensure_utc(timer.fires_at),
            )
        except Exception as exc:
            self.logger.warning(
                "no_show_timer_enqueue_failed",
                extra={"booking_id": timer.booking_id, "error": str(exc)},
            )

    def cancel_timer(self, booking_id: str, now: datetime) -> bool:
        """Mark a scheduled timer cancelled. Caller holds the mutex and commits."""
        timer = self.timer_repository.get_by_booking(booking_id)
        if timer is None or timer.status != NoShowTimerStatus.SCHEDULED.value:
            return False
        timer.status = NoShowTimerStatus.CANCELLED.value
        timer.resolved_at = now
        return True

    @BaseService.measure_operation("fire_no_show_timer")
    def fire_timer(self, booking_id: str, now: Optional[datetime] = None) -> Optional[NoShowCharge]:
        """
        Fire a due timer.

        Re-reads the booking under its mutex and charges only if access is
        still unconfirmed and no charge exists. Timers that are not scheduled
        or not yet due are left alone.
        """
        now = now or utc_now()
        with booking_mutex(booking_id):
            timer = self.timer_repository.get_by_booking(booking_id)
            if timer is None or timer.status != NoShowTimerStatus.SCHEDULED.value:
                return None
            if ensure_utc(timer.fires_at) > now:
                return None

            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")

            if (
                booking.customer_confirmed_access
                or booking.no_show_detected
                or booking.status not in CHARGEABLE_STATUSES
            ):
                with self.transaction():
                    timer.status = NoShowTimerStatus.SKIPPED.value
                    timer.resolved_at = now
                self.logger.info(
                    f"No-show timer for booking {booking_id} skipped",
                    extra={
                        "booking_id": booking_id,
                        "status": booking.status,
                        "access_confirmed": booking.customer_confirmed_access,
                    },
                )
                return None

            return self._charge_locked(booking, now, timer=timer)

    @BaseService.measure_operation("sweep_no_show_timers")
    def sweep_due_timers(self, now: Optional[datetime] = None, limit: int = 100) -> NoShowSweepResult:
        """Fire every due timer; recovers timers whose ETA task was lost."""
        now = now or utc_now()
        result = NoShowSweepResult()
        for timer in self.timer_repository.get_due(now, limit=limit):
            result.processed += 1
            try:
                charge = self.fire_timer(timer.booking_id, now=now)
            except GatewayFailureException:
                # Charge recorded; the capture retry task owns it from here
                result.charged += 1
                continue
            except StateConflictException:
                self.logger.info(f"Booking {timer.booking_id} busy; timer left for next sweep")
                continue
            if charge is not None and not charge.already_charged:
                result.charged += 1
            else:
                result.skipped += 1
        if result.processed:
            self.log_operation(
                "sweep_due_timers",
                processed=result.processed,
                charged=result.charged,
                skipped=result.skipped,
            )
        return result

    # ------------------------------------------------------------------ #
    # Charge path
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("charge_no_show")
    def charge_no_show(self, booking_id: str, now: Optional[datetime] = None) -> NoShowCharge:
        """Idempotent: a booking already charged returns its existing charge."""
        with booking_mutex(booking_id):
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
            return self._charge_locked(booking, now or utc_now())

    def _charge_locked(
        self, booking: Booking, now: datetime, timer: Optional[NoShowTimer] = None
    ) -> NoShowCharge:
        if booking.no_show_detected:
            return self._existing_charge(booking)

        amount = quantize_money(to_decimal(booking.hourly_rate) * NO_SHOW_CHARGE_HOURS)
        with self.transaction():
            updated = self.booking_repository.mark_no_show(
                booking.id, charge_amount=amount, charged_at=now
            )
            if updated != 1:
                raise StateConflictException(
                    "No-show charge was recorded concurrently", details={"booking_id": booking.id}
                )
            if timer is not None:
                timer.status = NoShowTimerStatus.FIRED.value
                timer.resolved_at = now
            transaction = self.escrow_repository.record_transaction(
                booking_id=booking.id,
                kind=EscrowTransactionKind.NO_SHOW_CHARGE,
                amount=amount,
                payment_reference=None,
                status=EscrowTransactionStatus.PENDING,
                created_at=now,
                attempts=0,
            )
            self.notifier.notify(
                booking.customer_id,
                "No-Show Charge Applied",
                f"A no-show charge of ${amount:.2f} was applied because your cleaner could not "
                "access the property. If you believe this is a mistake, you can submit an appeal.",
                "no_show",
                {"booking_id": booking.id, "charge_amount": str(amount)},
            )
        self.db.refresh(booking)
        self.logger.info(
            f"No-show charge of {amount} recorded for booking {booking.id}",
            extra={"booking_id": booking.id, "amount": str(amount)},
        )

        capture_status = self._capture(booking, transaction, now)
        return NoShowCharge(
            booking_id=booking.id,
            charge_amount=amount,
            charged_at=now,
            already_charged=False,
            capture_status=capture_status,
        )

    def _capture(self, booking: Booking, transaction: EscrowTransaction, now: datetime) -> str:
        """
        Authorize and capture a recorded no-show charge.

        The authorization reference is committed on the escrow transaction as
        soon as the gateway returns it, and later attempts capture that same
        hold instead of authorizing again. The outcome is written to the
        escrow transaction either way; GatewayFailure is re-raised after the
        failure is committed.
        """
        amount = to_decimal(transaction.amount)
        attempt = int(transaction.attempts or 0) + 1
        reference = transaction.payment_reference
        try:
            if not reference:
                reference = self.gateway.authorize(
                    amount,
                    booking.customer_payment_method_id,
                    booking.provider_account_id,
                    percent_of(amount, booking.commission_rate),
                    {
                        "booking_id": booking.id,
                        "charge_type": "no_show",
                        "idempotency_key": f"no-show-{booking.id}-{attempt}",
                    },
                )
                with self.transaction():
                    transaction.payment_reference = reference
                    transaction.updated_at = now
            status = self.gateway.capture(reference)
            if status != CAPTURE_SUCCEEDED:
                raise GatewayFailureException(
                    f"No-show capture returned status {status}",
                    operation="capture",
                    details={"payment_reference": reference},
                )
        except GatewayFailureException as exc:
            with self.transaction():
                transaction.status = EscrowTransactionStatus.FAILED.value
                transaction.failure_reason = exc.message
                transaction.attempts = attempt
                transaction.updated_at = now
            prometheus_metrics.record_no_show_charge("capture_failed")
            self.logger.error(
                f"No-show capture failed for booking {booking.id}: {exc.message}",
                extra={"booking_id": booking.id, "attempt": attempt},
            )
            raise

        with self.transaction():
            transaction.payment_reference = reference
            transaction.status = EscrowTransactionStatus.SUCCEEDED.value
            transaction.failure_reason = None
            transaction.attempts = attempt
            transaction.updated_at = now
        prometheus_metrics.record_no_show_charge("captured")
        return EscrowTransactionStatus.SUCCEEDED.value

    def _existing_charge(self, booking: Booking) -> NoShowCharge:
        prometheus_metrics.record_no_show_charge("already_charged")
        latest = self.escrow_repository.get_latest(booking.id, EscrowTransactionKind.NO_SHOW_CHARGE)
        return NoShowCharge(
            booking_id=booking.id,
            charge_amount=quantize_money(booking.no_show_charge_amount),
            charged_at=booking.no_show_charged_at,
            already_charged=True,
            capture_status=latest.status if latest else None,
        )

    # ------------------------------------------------------------------ #
    # Capture retry
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("retry_failed_no_show_captures")
    def retry_failed_captures(
        self, now: Optional[datetime] = None, max_attempts: Optional[int] = None
    ) -> List[str]:
        """
        Retry failed no-show captures with remaining attempt budget.

        Returns ids of bookings whose charge was captured on this pass.
        """
        now = now or utc_now()
        max_attempts = max_attempts or settings.no_show_capture_max_attempts
        captured: List[str] = []
        for pending in self.escrow_repository.get_failed_no_show_charges(max_attempts):
            booking_id = pending.booking_id
            try:
                with booking_mutex(booking_id):
                    transaction = self.escrow_repository.get_by_id(pending.id, load_relationships=False)
                    if transaction is None:
                        continue
                    self.db.refresh(transaction)
                    if transaction.status != EscrowTransactionStatus.FAILED.value:
                        continue
                    booking = self.booking_repository.get_for_update(booking_id)
                    if booking is None:
                        continue
                    self._capture(booking, transaction, now)
                    captured.append(booking_id)
            except DomainException as exc:
                self.logger.warning(
                    f"No-show capture retry for booking {booking_id} failed: {exc.message}",
                    extra={"booking_id": booking_id},
                )
        return captured
