# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for CleanConnect Platform

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: ULID lookup, flush-only create, query error translation
- IRepository: Interface defining required methods for all repositories
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: Booking aggregate, guarded status transitions
- EscrowRepository: Releases and gateway transactions
- ChargeAppealRepository: No-show charge appeals
- NoShowTimerRepository: Durable no-show timers

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    booking = repository.get_by_id(booking_id)
"""

from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .charge_appeal_repository import ChargeAppealRepository
from .escrow_repository import EscrowRepository
from .factory import RepositoryFactory
from .no_show_timer_repository import NoShowTimerRepository
from .notification_repository import NotificationRepository
from .platform_config_repository import PlatformConfigRepository

__all__ = [
    "IRepository",
    "BaseRepository",
    "RepositoryFactory",
    "BookingRepository",
    "ChargeAppealRepository",
    "EscrowRepository",
    "NoShowTimerRepository",
    "NotificationRepository",
    "PlatformConfigRepository",
]
