"""
Database models for the CleanConnect platform.

The models are organized by functionality:
- Booking aggregate and its lifecycle enums
- Escrow ledger (releases and gateway transactions)
- No-show timers and charge appeals
- Platform configuration and notifications
"""

from .booking import Booking, BookingStatus, PaymentStatus
from .charge_appeal import AppealReason, AppealStatus, ChargeAppeal
from .escrow import (
    EscrowTransaction,
    EscrowTransactionKind,
    EscrowTransactionStatus,
    PaymentRelease,
    ReleaseType,
)
from .no_show_timer import NoShowTimer, NoShowTimerStatus
from .notification import Notification, NotificationPreference
from .platform_config import PlatformConfig

__all__ = [
    # Booking
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    # Escrow
    "PaymentRelease",
    "ReleaseType",
    "EscrowTransaction",
    "EscrowTransactionKind",
    "EscrowTransactionStatus",
    # No-show and appeals
    "NoShowTimer",
    "NoShowTimerStatus",
    "ChargeAppeal",
    "AppealReason",
    "AppealStatus",
    # Platform
    "PlatformConfig",
    "Notification",
    "NotificationPreference",
]
