# backend/app/repositories/factory.py
"""
Repository Factory for CleanConnect Platform

Services obtain their repositories here so tests and tasks can share one
session across the whole booking aggregate.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .charge_appeal_repository import ChargeAppealRepository
    from .escrow_repository import EscrowRepository
    from .no_show_timer_repository import NoShowTimerRepository
    from .notification_repository import NotificationRepository
    from .platform_config_repository import PlatformConfigRepository


class RepositoryFactory:
    """Creates the repositories behind the booking lifecycle services."""

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_charge_appeal_repository(db: Session) -> "ChargeAppealRepository":
        """Create repository for no-show charge appeals."""
        from .charge_appeal_repository import ChargeAppealRepository

        return ChargeAppealRepository(db)

    @staticmethod
    def create_escrow_repository(db: Session) -> "EscrowRepository":
        """Create repository for escrow releases and gateway transactions."""
        from .escrow_repository import EscrowRepository

        return EscrowRepository(db)

    @staticmethod
    def create_no_show_timer_repository(db: Session) -> "NoShowTimerRepository":
        """Create repository for durable no-show timers."""
        from .no_show_timer_repository import NoShowTimerRepository

        return NoShowTimerRepository(db)

    @staticmethod
    def create_notification_repository(db: Session) -> "NotificationRepository":
        """Create repository for notification inbox and preferences."""
        from .notification_repository import NotificationRepository

        return NotificationRepository(db)

    @staticmethod
    def create_platform_config_repository(db: Session) -> "PlatformConfigRepository":
        """Create repository for platform configuration records."""
        from .platform_config_repository import PlatformConfigRepository

        return PlatformConfigRepository(db)
