"""
Pydantic schemas for the CleanConnect API.

Request models reject unknown fields; response models are built from ORM
rows and serialize money as JSON numbers.
"""

from .appeal import AppealCreate, AppealListResponse, AppealResolveRequest, AppealResponse
from .booking import (
    ArrivalRequest,
    BookingCancelRequest,
    BookingCreate,
    BookingDeclineRequest,
    BookingListResponse,
    BookingResponse,
    NoShowChargeResponse,
    NoShowSweepResponse,
    PaymentOutcomeRequest,
)
from .escrow import (
    EscrowTransactionResponse,
    LedgerSummaryResponse,
    PaymentReleaseResponse,
    ReleaseRequest,
)
from .main_responses import HealthResponse
from .platform_settings import PlatformSettings, PlatformSettingsResponse, PlatformSettingsUpdate

__all__ = [
    # Bookings
    "BookingCreate",
    "BookingDeclineRequest",
    "BookingCancelRequest",
    "PaymentOutcomeRequest",
    "ArrivalRequest",
    "BookingResponse",
    "BookingListResponse",
    "NoShowChargeResponse",
    "NoShowSweepResponse",
    # Escrow
    "ReleaseRequest",
    "PaymentReleaseResponse",
    "EscrowTransactionResponse",
    "LedgerSummaryResponse",
    # Appeals
    "AppealCreate",
    "AppealResolveRequest",
    "AppealResponse",
    "AppealListResponse",
    # Platform
    "PlatformSettings",
    "PlatformSettingsUpdate",
    "PlatformSettingsResponse",
    "HealthResponse",
]
