# backend/app/schemas/booking.py
"""
Booking schemas for CleanConnect platform.

Bookings are self-contained: date, start time, estimated hours and the
pricing snapshot (hourly rate, commission rate) all live on the record.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_REASON_LENGTH
from .base import Measure, Money, StandardizedModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    """Create a booking; the customer comes from the acting user."""

    provider_id: Optional[str] = Field(None, description="Cleaner to book, if already chosen")
    booking_date: date = Field(..., description="Date of the booking")
    start_time: time = Field(..., description="Local start time")
    estimated_hours: Decimal = Field(..., gt=0, le=24, description="Estimated duration in hours")
    hourly_rate: Decimal = Field(..., gt=0, description="Agreed hourly rate")
    service_address: Optional[str] = Field(None, max_length=500)
    special_instructions: Optional[str] = Field(None, max_length=1000)
    customer_payment_method_id: Optional[str] = Field(
        None, description="Stored gateway payment method used for charges"
    )
    provider_account_id: Optional[str] = Field(
        None, description="Provider's linked gateway account (transfer destination)"
    )


class BookingDeclineRequest(StrictRequestModel):
    reason: str = Field(..., max_length=MAX_REASON_LENGTH)

    @field_validator("reason")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class BookingCancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class PaymentOutcomeRequest(StrictRequestModel):
    """Gateway callback outcome for the booking's payment intent."""

    gateway_status: Literal[
        "succeeded", "processing", "failed", "requires_payment_method", "canceled"
    ]


class ArrivalRequest(StrictRequestModel):
    latitude: float = Field(..., description="Provider latitude at arrival")
    longitude: float = Field(..., description="Provider longitude at arrival")
    customer_confirmed: bool = False


class BookingResponse(StandardizedModel):
    id: str
    customer_id: str
    provider_id: Optional[str] = None
    booking_date: date
    start_time: time
    estimated_hours: Measure
    hourly_rate: Money
    total_price: Money
    commission_rate: Measure
    platform_commission: Money
    provider_earnings: Money
    service_address: Optional[str] = None
    special_instructions: Optional[str] = None
    status: str
    payment_status: str
    version: int

    provider_arrived_at: Optional[datetime] = None
    arrival_lat: Optional[Measure] = None
    arrival_lng: Optional[Measure] = None
    customer_confirmed_access: bool

    no_show_detected: bool
    no_show_charge_amount: Optional[Money] = None
    no_show_charged_at: Optional[datetime] = None

    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_hours_worked: Optional[Measure] = None
    final_amount: Optional[Money] = None

    payment_reference: Optional[str] = None
    declined_at: Optional[datetime] = None
    declined_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BookingListResponse(StandardizedModel):
    items: List[BookingResponse]
    total: int


class NoShowChargeResponse(StandardizedModel):
    booking_id: str
    charge_amount: Money
    charged_at: datetime
    already_charged: bool
    capture_status: Optional[str] = None


class NoShowSweepResponse(StandardizedModel):
    processed: int
    charged: int
    skipped: int
