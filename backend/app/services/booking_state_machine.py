# backend/app/services/booking_state_machine.py
"""
Booking State Machine for CleanConnect Platform

Owns the booking's status field. Every status write goes through
``transition``, which checks the move against the transition table and
applies it with a conditional UPDATE on (status, version), so a writer that
read a stale booking fails with StateConflict instead of overwriting.

Public operations serialize on the per-booking mutex; helpers that take a
loaded booking assume the caller already holds it.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.enums import Actor
from ..core.exceptions import (
    AlreadyProcessedException,
    ForbiddenException,
    GatewayFailureException,
    InvalidStateException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from ..core.money import percent_of, quantize_money, to_decimal
from ..core.timezone_utils import local_to_utc, utc_now
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.escrow import EscrowTransactionKind, EscrowTransactionStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService, booking_mutex
from .config_service import PlatformSettingsService
from .notification_service import NotificationService
from .payment_gateway import CAPTURE_SUCCEEDED, PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

S = BookingStatus

# (from, to) -> triggers allowed to make that move
TRANSITIONS: Dict[Tuple[BookingStatus, BookingStatus], FrozenSet[str]] = {
    (S.PENDING, S.CONFIRMED): frozenset({"accept"}),
    (S.PENDING, S.CANCELLED): frozenset({"decline", "customer_cancel"}),
    (S.CONFIRMED, S.PAYMENT_PENDING): frozenset({"payment_intent"}),
    (S.PAYMENT_FAILED, S.PAYMENT_PENDING): frozenset({"payment_intent"}),
    (S.PAYMENT_PENDING, S.PAYMENT_PROCESSING): frozenset({"payment_callback"}),
    (S.PAYMENT_PENDING, S.PAYMENT_FAILED): frozenset({"payment_callback"}),
    (S.PAYMENT_PENDING, S.CONFIRMED): frozenset({"payment_callback"}),
    (S.PAYMENT_PROCESSING, S.CONFIRMED): frozenset({"payment_callback"}),
    (S.PAYMENT_PROCESSING, S.PAYMENT_FAILED): frozenset({"payment_callback"}),
    (S.CONFIRMED, S.IN_PROGRESS): frozenset({"start_work"}),
    (S.IN_PROGRESS, S.COMPLETED): frozenset({"end_work"}),
    (S.COMPLETED, S.AUTO_RELEASE_PENDING): frozenset({"auto_release_due"}),
    (S.COMPLETED, S.PAYMENT_RELEASED): frozenset({"full"}),
    (S.AUTO_RELEASE_PENDING, S.PAYMENT_RELEASED): frozenset({"auto"}),
}

# Targets reachable from any non-terminal status, and by which trigger
FROM_ANY_ACTIVE: Dict[BookingStatus, FrozenSet[str]] = {
    S.CANCELLED: frozenset({"admin_cancel"}),
    S.PAYMENT_RELEASED: frozenset({"admin_override"}),
}

FAILED_GATEWAY_STATUSES = frozenset({"failed", "requires_payment_method", "canceled"})


def is_transition_allowed(current: Any, target: Any, trigger: str) -> bool:
    current_status = BookingStatus(current)
    target_status = BookingStatus(target)
    if current_status in BookingStatus.terminal():
        return False
    if trigger in TRANSITIONS.get((current_status, target_status), frozenset()):
        return True
    return trigger in FROM_ANY_ACTIVE.get(target_status, frozenset())


class BookingStateMachine(BaseService):
    """
    Orchestrates the booking lifecycle.

    Handles:
    - Booking creation with a pricing snapshot
    - Provider accept/decline, customer and admin cancellation
    - Payment intent creation and gateway outcomes
    - The guarded transition primitive used by the other booking services
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationService] = None,
        settings_service: Optional[PlatformSettingsService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.escrow_repository = RepositoryFactory.create_escrow_repository(db)
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or NotificationService(db)
        self.settings_service = settings_service or PlatformSettingsService(db)

    # ------------------------------------------------------------------ #
    # Guarded transition
    # ------------------------------------------------------------------ #

    def transition(
        self,
        booking: Booking,
        expected: BookingStatus,
        target: BookingStatus,
        trigger: str,
        **fields: Any,
    ) -> Booking:
        """
        Move ``booking`` from ``expected`` to ``target``.

        Raises:
            InvalidStateException: The table does not allow this move
            StateConflictException: The stored status/version no longer match
        """
        expected = BookingStatus(expected)
        target = BookingStatus(target)
        if not is_transition_allowed(expected, target, trigger):
            prometheus_metrics.record_transition(expected.value, target.value, "invalid")
            raise InvalidStateException(
                f"Cannot move booking from {expected.value} to {target.value} ({trigger})",
                current_status=booking.status,
                details={"booking_id": booking.id, "target_status": target.value},
            )
        if booking.status != expected.value:
            prometheus_metrics.record_transition(expected.value, target.value, "conflict")
            raise StateConflictException(
                details={
                    "booking_id": booking.id,
                    "expected_status": expected.value,
                    "current_status": booking.status,
                }
            )

        fields.setdefault("updated_at", utc_now())
        updated = self.booking_repository.transition_status(
            booking.id,
            expected_status=expected.value,
            expected_version=booking.version,
            target_status=target.value,
            values=fields,
        )
        if updated != 1:
            prometheus_metrics.record_transition(expected.value, target.value, "conflict")
            raise StateConflictException(
                details={"booking_id": booking.id, "expected_status": expected.value}
            )

        self.db.refresh(booking)
        prometheus_metrics.record_transition(expected.value, target.value, "success")
        self.logger.info(
            f"Booking {booking.id} {expected.value} -> {target.value} ({trigger})",
            extra={"booking_id": booking.id, "trigger": trigger, "version": booking.version},
        )
        return booking

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def load_for_update(self, booking_id: str) -> Booking:
        """Fresh read of a booking; callers hold its mutex."""
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def list_bookings(self, actor: Actor, status: Optional[str] = None) -> List[Booking]:
        customer_bookings = self.booking_repository.get_customer_bookings(actor.id, status=status)
        provider_bookings = self.booking_repository.get_provider_bookings(actor.id, status=status)
        seen = {b.id for b in customer_bookings}
        return customer_bookings + [b for b in provider_bookings if b.id not in seen]

    def escrow_balance(self, booking: Booking) -> Decimal:
        """Booking payment captured into escrow, net of refunds against it."""
        if not booking.payment_reference:
            return Decimal("0.00")
        captured = self.escrow_repository.succeeded_total(booking.id, EscrowTransactionKind.CAPTURE)
        refunded = self.escrow_repository.refunded_total(booking.id, booking.payment_reference)
        return captured - refunded

    @staticmethod
    def require_status(
        booking: Booking, allowed: Iterable[BookingStatus], operation: str
    ) -> None:
        allowed_values = {BookingStatus(s).value for s in allowed}
        if booking.status not in allowed_values:
            raise InvalidStateException(
                f"Cannot {operation} a booking in status {booking.status}",
                current_status=booking.status,
                details={"booking_id": booking.id, "allowed": sorted(allowed_values)},
            )

    # ------------------------------------------------------------------ #
    # Creation and scheduling decisions
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        customer_id: str,
        *,
        booking_date: date,
        start_time: time,
        estimated_hours: Decimal,
        hourly_rate: Decimal,
        provider_id: Optional[str] = None,
        service_address: Optional[str] = None,
        special_instructions: Optional[str] = None,
        customer_payment_method_id: Optional[str] = None,
        provider_account_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Create a booking in ``pending``.

        Prices are snapshotted: ``total_price = hourly_rate * estimated_hours``
        and the platform commission rate in force now.
        """
        now = now or utc_now()
        hours = to_decimal(estimated_hours)
        rate = to_decimal(hourly_rate)
        if hours <= 0:
            raise ValidationException("Estimated hours must be positive")

        platform = self.settings_service.get_settings()
        min_rate = to_decimal(platform.min_hourly_rate)
        max_rate = to_decimal(platform.max_hourly_rate)
        if rate < min_rate or rate > max_rate:
            raise ValidationException(
                f"Hourly rate must be between {min_rate} and {max_rate}",
                details={"hourly_rate": str(rate)},
            )

        scheduled_start = local_to_utc(booking_date, start_time)
        earliest = now + timedelta(hours=platform.booking_buffer_hours)
        if scheduled_start < earliest:
            raise ValidationException(
                f"Bookings must start at least {platform.booking_buffer_hours} hours from now",
                details={"earliest_start": earliest.isoformat()},
            )

        total_price = quantize_money(rate * hours)
        commission_rate = to_decimal(platform.commission_rate)
        platform_commission = percent_of(total_price, commission_rate)

        with self.transaction():
            booking = self.booking_repository.create(
                customer_id=customer_id,
                provider_id=provider_id,
                booking_date=booking_date,
                start_time=start_time,
                estimated_hours=hours,
                hourly_rate=rate,
                total_price=total_price,
                commission_rate=commission_rate,
                platform_commission=platform_commission,
                provider_earnings=total_price - platform_commission,
                service_address=service_address,
                special_instructions=special_instructions,
                customer_payment_method_id=customer_payment_method_id,
                provider_account_id=provider_account_id,
                status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.UNPAID.value,
                version=1,
                created_at=now,
                updated_at=now,
            )
            if provider_id:
                self.notifier.notify(
                    provider_id,
                    "New Booking Request",
                    f"You have a new booking request for {booking_date.isoformat()}.",
                    "booking",
                    {"booking_id": booking.id},
                )

        self.log_operation("create_booking", booking_id=booking.id, customer_id=customer_id)
        return booking

    @BaseService.measure_operation("accept_booking")
    def accept(self, booking_id: str, provider_id: str) -> Booking:
        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.load_for_update(booking_id)
                self.require_status(booking, {S.PENDING}, "accept")
                self._ensure_provider(booking, provider_id)
                self.transition(
                    booking,
                    S.PENDING,
                    S.CONFIRMED,
                    "accept",
                    provider_id=provider_id,
                    accepted_at=utc_now(),
                )
                self.notifier.notify(
                    booking.customer_id,
                    "Booking Confirmed",
                    "Your cleaner has accepted your booking.",
                    "booking",
                    {"booking_id": booking.id},
                )
        return booking

    @BaseService.measure_operation("decline_booking")
    def decline(self, booking_id: str, provider_id: str, reason: Optional[str]) -> Booking:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("A reason is required to decline a booking")

        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.load_for_update(booking_id)
                self.require_status(booking, {S.PENDING}, "decline")
                self._ensure_provider(booking, provider_id)
                now = utc_now()
                self.transition(
                    booking,
                    S.PENDING,
                    S.CANCELLED,
                    "decline",
                    declined_at=now,
                    declined_reason=reason,
                    cancelled_at=now,
                    cancelled_by_id=provider_id,
                    cancellation_reason=reason,
                )
                self.notifier.notify(
                    booking.customer_id,
                    "Booking Declined",
                    f"Your booking was declined: {reason}",
                    "booking",
                    {"booking_id": booking.id},
                )
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_by_customer(
        self, booking_id: str, customer_id: str, reason: Optional[str] = None
    ) -> Booking:
        """Customer cancellation, permitted only before the provider confirms."""
        with booking_mutex(booking_id):
            with self.transaction():
                booking = self.load_for_update(booking_id)
                if booking.customer_id != customer_id:
                    raise ForbiddenException("Only the booking's customer can cancel it")
                self.require_status(booking, {S.PENDING}, "cancel")
                self.transition(
                    booking,
                    S.PENDING,
                    S.CANCELLED,
                    "customer_cancel",
                    cancelled_at=utc_now(),
                    cancelled_by_id=customer_id,
                    cancellation_reason=reason,
                )
                self.notifier.notify(
                    booking.provider_id,
                    "Booking Cancelled",
                    "The customer cancelled this booking.",
                    "booking",
                    {"booking_id": booking.id},
                )
        return booking

    @BaseService.measure_operation("admin_cancel_booking")
    def admin_cancel(self, booking_id: str, actor: Actor, reason: Optional[str]) -> Booking:
        """
        Administrative cancellation from any non-terminal status.

        Captured funds that were never released are refunded first; a refund
        failure leaves the booking untouched.
        """
        if not actor.is_admin:
            raise ForbiddenException("Admin privilege required to cancel this booking")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("A reason is required for administrative cancellation")

        with booking_mutex(booking_id):
            booking = self.load_for_update(booking_id)
            if booking.is_terminal:
                raise InvalidStateException(
                    f"Cannot cancel a booking in status {booking.status}",
                    current_status=booking.status,
                )
            current = BookingStatus(booking.status)

            refundable = self.escrow_balance(booking)
            refund_reference: Optional[str] = None
            if refundable > 0 and booking.payment_reference:
                refund_reference = self.gateway.refund(booking.payment_reference, refundable)

            with self.transaction():
                now = utc_now()
                if refund_reference:
                    self.escrow_repository.record_transaction(
                        booking_id=booking.id,
                        kind=EscrowTransactionKind.REFUND,
                        amount=refundable,
                        payment_reference=refund_reference,
                        source_reference=booking.payment_reference,
                        status=EscrowTransactionStatus.SUCCEEDED,
                        created_at=now,
                    )
                self.transition(
                    booking,
                    current,
                    S.CANCELLED,
                    "admin_cancel",
                    cancelled_at=now,
                    cancelled_by_id=actor.id,
                    cancellation_reason=reason,
                )
                for user_id in (booking.customer_id, booking.provider_id):
                    self.notifier.notify(
                        user_id,
                        "Booking Cancelled",
                        f"This booking was cancelled by {self._support_label()}: {reason}",
                        "booking",
                        {"booking_id": booking.id},
                    )
        return booking

    # ------------------------------------------------------------------ #
    # Payment
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(self, booking_id: str) -> Booking:
        """Authorize the booking total with the gateway and await its outcome."""
        with booking_mutex(booking_id):
            booking = self.load_for_update(booking_id)
            self.require_status(booking, {S.CONFIRMED, S.PAYMENT_FAILED}, "create a payment for")
            if booking.payment_status == PaymentStatus.PAID.value:
                raise AlreadyProcessedException(
                    "Booking is already paid", details={"booking_id": booking.id}
                )
            current = BookingStatus(booking.status)

            reference = self.gateway.authorize(
                to_decimal(booking.total_price),
                booking.customer_payment_method_id,
                booking.provider_account_id,
                to_decimal(booking.platform_commission),
                {
                    "booking_id": booking.id,
                    "charge_type": "booking",
                    "idempotency_key": f"booking-auth-{booking.id}-{booking.version}",
                },
            )

            with self.transaction():
                self.transition(
                    booking,
                    current,
                    S.PAYMENT_PENDING,
                    "payment_intent",
                    payment_reference=reference,
                    payment_status=PaymentStatus.UNPAID.value,
                )
        return booking

    @BaseService.measure_operation("record_payment_outcome")
    def record_payment_outcome(self, booking_id: str, gateway_status: str) -> Booking:
        """
        Apply a gateway callback to the booking.

        ``succeeded`` captures the hold into escrow and returns the booking to
        ``confirmed`` with ``payment_status = paid``.
        """
        with booking_mutex(booking_id):
            booking = self.load_for_update(booking_id)

            if gateway_status == "succeeded":
                if booking.payment_status == PaymentStatus.PAID.value:
                    raise AlreadyProcessedException(
                        "Payment already captured", details={"booking_id": booking.id}
                    )
                self.require_status(
                    booking, {S.PAYMENT_PENDING, S.PAYMENT_PROCESSING}, "confirm payment for"
                )
                return self._capture_booking_payment(booking)

            if gateway_status == "processing":
                self.require_status(booking, {S.PAYMENT_PENDING}, "mark payment processing for")
                with self.transaction():
                    self.transition(
                        booking,
                        S.PAYMENT_PENDING,
                        S.PAYMENT_PROCESSING,
                        "payment_callback",
                        payment_status=PaymentStatus.PROCESSING.value,
                    )
                return booking

            if gateway_status in FAILED_GATEWAY_STATUSES:
                self.require_status(
                    booking, {S.PAYMENT_PENDING, S.PAYMENT_PROCESSING}, "fail payment for"
                )
                with self.transaction():
                    self.transition(
                        booking,
                        BookingStatus(booking.status),
                        S.PAYMENT_FAILED,
                        "payment_callback",
                        payment_status=PaymentStatus.FAILED.value,
                    )
                    self.notifier.notify(
                        booking.customer_id,
                        "Payment Failed",
                        "We could not process your payment. Please update your payment method.",
                        "payment",
                        {"booking_id": booking.id, "gateway_status": gateway_status},
                    )
                return booking

        raise ValidationException(f"Unknown gateway status: {gateway_status}")

    def _capture_booking_payment(self, booking: Booking) -> Booking:
        amount = to_decimal(booking.total_price)
        reference = booking.payment_reference
        if not reference:
            raise InvalidStateException(
                "Booking has no payment reference to capture", current_status=booking.status
            )

        failure: Optional[GatewayFailureException] = None
        try:
            capture_status = self.gateway.capture(reference)
            if capture_status != CAPTURE_SUCCEEDED:
                failure = GatewayFailureException(
                    f"Capture returned status {capture_status}",
                    operation="capture",
                    details={"payment_reference": reference},
                )
        except GatewayFailureException as exc:
            failure = exc

        if failure is not None:
            with self.transaction():
                self.escrow_repository.record_transaction(
                    booking_id=booking.id,
                    kind=EscrowTransactionKind.CAPTURE,
                    amount=amount,
                    payment_reference=reference,
                    status=EscrowTransactionStatus.FAILED,
                    failure_reason=failure.message,
                    created_at=utc_now(),
                )
            raise failure

        with self.transaction():
            self.escrow_repository.record_transaction(
                booking_id=booking.id,
                kind=EscrowTransactionKind.CAPTURE,
                amount=amount,
                payment_reference=reference,
                status=EscrowTransactionStatus.SUCCEEDED,
                created_at=utc_now(),
            )
            self.transition(
                booking,
                BookingStatus(booking.status),
                S.CONFIRMED,
                "payment_callback",
                payment_status=PaymentStatus.PAID.value,
            )
            self.notifier.notify(
                booking.customer_id,
                "Payment Confirmed",
                f"${amount:.2f} is held securely until your cleaning is complete.",
                "payment",
                {"booking_id": booking.id},
            )
        return booking

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _ensure_provider(booking: Booking, provider_id: str) -> None:
        if booking.provider_id and booking.provider_id != provider_id:
            raise ValidationException(
                "Booking is assigned to a different provider",
                details={"booking_id": booking.id},
            )

    def _support_label(self) -> str:
        return f"support ({self.settings_service.get_settings().platform_email})"
