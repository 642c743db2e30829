# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. All booking services
built for one request share its session, notifier and gateway.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.appeal_service import AppealService
from ...services.arrival_verifier import ArrivalVerifier
from ...services.booking_state_machine import BookingStateMachine
from ...services.config_service import PlatformSettingsService
from ...services.escrow_ledger_service import EscrowLedgerService
from ...services.no_show_service import NoShowService
from ...services.notification_service import NotificationService
from ...services.payment_gateway import PaymentGateway, get_payment_gateway
from ...services.time_tracker import TimeTracker
from .database import get_db

logger = logging.getLogger(__name__)


def get_gateway() -> PaymentGateway:
    """Payment gateway for the request (overridden in tests)."""
    return get_payment_gateway()


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_platform_settings_service(db: Session = Depends(get_db)) -> PlatformSettingsService:
    return PlatformSettingsService(db)


def get_booking_state_machine(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationService = Depends(get_notification_service),
    settings_service: PlatformSettingsService = Depends(get_platform_settings_service),
) -> BookingStateMachine:
    """
    Get booking state machine with all dependencies.

    Args:
        db: Database session
        gateway: Payment gateway adapter
        notifier: Notification service
        settings_service: Platform settings reader

    Returns:
        BookingStateMachine instance
    """
    return BookingStateMachine(
        db, gateway=gateway, notifier=notifier, settings_service=settings_service
    )


def get_no_show_service(
    db: Session = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> NoShowService:
    return NoShowService(
        db,
        gateway=state_machine.gateway,
        notifier=state_machine.notifier,
        settings_service=state_machine.settings_service,
    )


def get_arrival_verifier(
    db: Session = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
    no_show_service: NoShowService = Depends(get_no_show_service),
) -> ArrivalVerifier:
    return ArrivalVerifier(
        db,
        state_machine=state_machine,
        no_show_service=no_show_service,
        notifier=state_machine.notifier,
        settings_service=state_machine.settings_service,
    )


def get_time_tracker(
    db: Session = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
    no_show_service: NoShowService = Depends(get_no_show_service),
) -> TimeTracker:
    return TimeTracker(
        db,
        state_machine=state_machine,
        no_show_service=no_show_service,
        notifier=state_machine.notifier,
    )


def get_escrow_ledger_service(
    db: Session = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> EscrowLedgerService:
    return EscrowLedgerService(db, state_machine=state_machine, notifier=state_machine.notifier)


def get_appeal_service(
    db: Session = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> AppealService:
    return AppealService(db, state_machine=state_machine, notifier=state_machine.notifier)
